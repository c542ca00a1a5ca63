from affiliate_core.models.db.enums import AffiliateStatus, UserStatus


def test_create_user_returns_api_key_once(client, user_factory, auth):
    admin = user_factory("admin")
    r = client.post(
        "/api/v1/users/",
        json={"name": "Asha", "email": "asha@example.com", "roles": ["mediator", "shopper"], "mediator_code": "MED-ASHA"},
        headers=auth(admin),
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["roles"] == ["mediator", "shopper"]
    assert body["api_key"]

    me = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {body['api_key']}"})
    assert me.status_code == 200
    assert "api_key" not in me.json()

    dup = client.post(
        "/api/v1/users/",
        json={"name": "Asha 2", "email": "asha@example.com", "roles": ["shopper"]},
        headers=auth(admin),
    )
    assert dup.status_code == 409


def test_mediator_requires_code(client, user_factory, auth):
    admin = user_factory("admin")
    r = client.post(
        "/api/v1/users/",
        json={"name": "No Code", "email": "nocode@example.com", "roles": ["mediator"]},
        headers=auth(admin),
    )
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_staff_only_routes_reject_shoppers(client, user_factory, auth):
    shopper = user_factory()
    r = client.patch(f"/api/v1/admin/users/{shopper.id}/status", json={"status": "suspended"}, headers=auth(shopper))
    assert r.status_code == 403
    assert client.get("/api/v1/admin/audit-logs", headers=auth(shopper)).status_code == 403


def test_suspend_via_api_runs_cascade_and_locks_out_user(client, user_factory, deal_factory, order_factory, auth):
    admin = user_factory("admin")
    mediator = user_factory("mediator", mediator_code="MED-API")
    deal = deal_factory(None, "MED-API")
    order = order_factory(user_factory(), deal=deal)

    r = client.patch(
        f"/api/v1/admin/users/{mediator.id}/status",
        json={"status": "suspended", "reason": "fake orders"},
        headers=auth(admin),
    )
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["changed"] is True
    assert [s["step"] for s in data["steps"]] == ["record_suspension", "mediator.deactivate_deals", "mediator.freeze_orders"]

    suspensions = client.get(f"/api/v1/admin/users/{mediator.id}/suspensions", headers=auth(admin)).json()
    assert [s["action"] for s in suspensions] == ["suspend"]
    assert suspensions[0]["reason"] == "fake orders"

    frozen = client.get(f"/api/v1/orders/{order.id}", headers=auth(admin)).json()
    assert frozen["frozen"] is True

    # The suspended account can no longer authenticate.
    assert client.get("/api/v1/users/me", headers=auth(mediator)).status_code == 401


def test_resaving_status_reports_unchanged(client, user_factory, auth):
    admin = user_factory("admin")
    shopper = user_factory()
    r = client.patch(f"/api/v1/admin/users/{shopper.id}/status", json={"status": "active"}, headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["message"] == "Status unchanged"
    assert r.json()["data"]["steps"] == []


def test_self_suspension_is_forbidden(client, user_factory, auth):
    admin = user_factory("admin")
    r = client.patch(f"/api/v1/admin/users/{admin.id}/status", json={"status": "suspended"}, headers=auth(admin))
    assert r.status_code == 403
    body = r.json()
    assert body["code"] == "CANNOT_SELF_SUSPEND"
    assert body["category"] == "authorization"
    assert client.get("/api/v1/users/me", headers=auth(admin)).json()["status"] == UserStatus.ACTIVE.value


def test_delete_user_blocked_by_wallet_balance(client, user_factory, fund_wallet, auth):
    admin = user_factory("admin")
    user = user_factory()
    fund_wallet(user, 2500)

    check = client.get(f"/api/v1/admin/users/{user.id}/deletable", headers=auth(admin)).json()
    assert check == {"allowed": False, "code": "WALLET_NOT_EMPTY", "message": "User wallet still holds funds"}

    r = client.delete(f"/api/v1/admin/users/{user.id}", headers=auth(admin))
    assert r.status_code == 409
    assert r.json()["code"] == "WALLET_NOT_EMPTY"
    assert r.json()["category"] == "resource_guard"
    assert client.get(f"/api/v1/users/{user.id}", headers=auth(admin)).json()["deleted_at"] is None

    wallet_delete = client.delete(f"/api/v1/admin/wallets/{user.id}", headers=auth(admin))
    assert wallet_delete.status_code == 409
    assert wallet_delete.json()["details"]["available_paise"] == 2500


def test_delete_empty_user(client, user_factory, auth):
    admin = user_factory("admin")
    user = user_factory()
    r = client.delete(f"/api/v1/admin/users/{user.id}", headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["data"]["user_id"] == user.id
    assert client.get(f"/api/v1/users/{user.id}", headers=auth(admin)).json()["deleted_at"] is not None

    again = client.delete(f"/api/v1/admin/users/{user.id}", headers=auth(admin))
    assert again.status_code == 409
    assert again.json()["code"] == "USER_ALREADY_DELETED"


def test_freeze_and_reactivate_order(client, user_factory, order_factory, auth):
    admin = user_factory("admin")
    order = order_factory(user_factory(), affiliate_status=AffiliateStatus.PENDING_COOLING)

    not_frozen = client.post(f"/api/v1/admin/orders/{order.id}/reactivate", headers=auth(admin))
    assert not_frozen.status_code == 409
    assert not_frozen.json()["code"] == "ORDER_NOT_FROZEN"

    for _ in range(2):
        r = client.post(f"/api/v1/admin/orders/{order.id}/freeze", json={"reason": "chargeback"}, headers=auth(admin))
        assert r.status_code == 200
        assert r.json()["affiliate_status"] == "Frozen_Disputed"

    blocked = client.post(f"/api/v1/orders/{order.id}/settle", json={"allow_early": True}, headers=auth(admin))
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "FROZEN"

    r = client.post(f"/api/v1/admin/orders/{order.id}/reactivate", json={"reason": "won dispute"}, headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["frozen"] is False
    assert r.json()["affiliate_status"] == "Pending_Cooling"

    disputes = client.get("/api/v1/admin/audit-logs", params={"action": "ORDER_DISPUTED"}, headers=auth(admin)).json()
    assert len(disputes) == 1
    assert disputes[0]["entity_id"] == str(order.id)


def test_resume_cascade_requires_suspended_user(client, user_factory, auth):
    admin = user_factory("admin")
    user = user_factory()
    r = client.post(f"/api/v1/admin/users/{user.id}/resume-cascade", headers=auth(admin))
    assert r.status_code == 409
    assert r.json()["code"] == "USER_NOT_SUSPENDED"


def test_unknown_user_suspensions(client, user_factory, auth):
    admin = user_factory("admin")
    r = client.get("/api/v1/admin/users/9999/suspensions", headers=auth(admin))
    assert r.status_code == 404
    assert r.json()["code"] == "USER_NOT_FOUND"
