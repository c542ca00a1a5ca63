def _order(order_factory, user_factory, **kw):
    buyer = user_factory(name="Asha")
    return buyer, order_factory(buyer, external_order_id="402-1", **kw)


def test_upload_extracts_then_serves_from_cache(client, auth, user_factory, order_factory, fake_provider):
    buyer, order = _order(order_factory, user_factory)

    r = client.post(f"/api/v1/proofs/orders/{order.id}/order", json={"image": "img://order"}, headers=auth(buyer))
    assert r.status_code == 200, r.text
    extraction = r.json()["data"]["extraction"]
    assert extraction["cached"] is False
    assert extraction["fields"]["order_id"] == "402-1"
    # Expectations are derived from the order itself.
    assert fake_provider.calls[0]["expectations"]["expected_order_id"] == "402-1"
    assert fake_provider.calls[0]["expectations"]["expected_amount_paise"] == 149900

    again = client.post(f"/api/v1/proofs/orders/{order.id}/order/extract", json={}, headers=auth(buyer))
    assert again.status_code == 200
    assert again.json()["cached"] is True
    assert again.json()["extracted_at"] == extraction["extracted_at"]
    assert len(fake_provider.calls) == 1

    status = client.get(f"/api/v1/proofs/orders/{order.id}/status", headers=auth(buyer)).json()["data"]
    assert status["order"]["extracted"] is True
    assert status["order"]["has_image"] is True
    assert status["review"]["extracted"] is False


def test_extraction_failure_keeps_upload(client, auth, user_factory, order_factory, fake_provider):
    buyer, order = _order(order_factory, user_factory)
    fake_provider.fail = True

    r = client.post(f"/api/v1/proofs/orders/{order.id}/order", json={"image": "img://order"}, headers=auth(buyer))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["extraction"] is None
    assert data["extraction_error"]["code"] == "EXTRACTION_FAILED"

    stored = client.get(f"/api/v1/orders/{order.id}", headers=auth(buyer)).json()
    assert stored["screenshots"]["order"] == "img://order"

    direct = client.post(f"/api/v1/proofs/orders/{order.id}/order/extract", json={}, headers=auth(buyer))
    assert direct.status_code == 502
    assert direct.json()["category"] == "external_dependency"


def test_rating_needs_product_and_buyer(client, auth, user_factory, order_factory, fake_provider):
    buyer, order = _order(order_factory, user_factory, screenshots={"rating": "img://rating"}, items=[{"price_paise": 100}])
    r = client.post(f"/api/v1/proofs/orders/{order.id}/rating/extract", json={}, headers=auth(buyer))
    assert r.status_code == 400
    assert r.json()["code"] == "MISSING_EXPECTATIONS"
    assert r.json()["details"]["missing"] == ["expected_product_name"]
    assert fake_provider.calls == []

    ok = client.post(
        f"/api/v1/proofs/orders/{order.id}/rating/extract",
        json={"expectations": {"expected_product_name": "Kettle"}},
        headers=auth(buyer),
    )
    assert ok.status_code == 200
    assert ok.json()["cached"] is False


def test_staff_clear_prewarm_and_stats(client, auth, user_factory, order_factory, fake_provider):
    admin = user_factory("admin")
    buyer, order = _order(order_factory, user_factory, screenshots={"order": "img://order"})

    assert client.delete(f"/api/v1/proofs/orders/{order.id}/order", headers=auth(buyer)).status_code == 403

    warm = client.post(
        "/api/v1/proofs/prewarm",
        json={"items": [{"order_id": order.id, "proof_type": "order"}, {"order_id": order.id, "proof_type": "review"}]},
        headers=auth(admin),
    ).json()["data"]
    assert (warm["extracted"], warm["skipped"], warm["failed"]) == (1, 1, 0)

    cleared = client.delete(f"/api/v1/proofs/orders/{order.id}/order", headers=auth(admin)).json()
    assert cleared["data"] == {"removed": True}

    r = client.post(f"/api/v1/proofs/orders/{order.id}/order/extract", json={}, headers=auth(buyer))
    assert r.json()["cached"] is False
    assert len(fake_provider.calls) == 2

    stats = client.get("/api/v1/proofs/stats", headers=auth(admin)).json()["data"]
    assert stats["extractions"] == 2
    assert stats["hits"] == 0


def test_other_users_cannot_extract(client, auth, user_factory, order_factory, fake_provider):
    _, order = _order(order_factory, user_factory, screenshots={"order": "img://order"})
    stranger = user_factory()
    r = client.post(f"/api/v1/proofs/orders/{order.id}/order/extract", json={}, headers=auth(stranger))
    assert r.status_code == 403
    assert fake_provider.calls == []
