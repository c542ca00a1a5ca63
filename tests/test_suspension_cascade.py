import pytest

from affiliate_core.errors import AuthorizationError, CascadePartialFailure, PreconditionFailed
from affiliate_core.models.db import AuditLog, Campaign, Deal, Order, Suspension, User
from affiliate_core.models.db.enums import AffiliateStatus, CampaignStatus, SuspensionAction, UserStatus
from affiliate_core.services import suspension_cascade


def _reload(db_session, model, pk):
    db_session.expire_all()
    return db_session.get(model, pk)


def _suspensions(db_session, user_id, action):
    return (
        db_session.query(Suspension)
        .filter(Suspension.target_user_id == user_id, Suspension.action == action)
        .count()
    )


def test_shopper_suspension_freezes_buyer_orders(db_session, user_factory, order_factory):
    admin = user_factory("admin")
    shopper = user_factory()
    open_order = order_factory(shopper, affiliate_status=AffiliateStatus.PENDING_COOLING)
    settled = order_factory(shopper, affiliate_status=AffiliateStatus.APPROVED_SETTLED)

    report = suspension_cascade.apply_status_change(db_session, shopper.id, UserStatus.SUSPENDED, admin.id, "chargebacks")

    assert report.changed is True
    assert report.applied == ["record_suspension", "shopper.freeze_orders"]
    order = _reload(db_session, Order, open_order.id)
    assert order.frozen is True
    assert order.frozen_reason == "USER_SUSPENDED"
    # Freeze is an overlay; the affiliate status is untouched.
    assert order.affiliate_status == AffiliateStatus.PENDING_COOLING
    assert _reload(db_session, Order, settled.id).frozen is False
    assert _reload(db_session, User, shopper.id).status == UserStatus.SUSPENDED


def test_mediator_and_shopper_roles_get_both_cascades(db_session, user_factory, deal_factory, order_factory):
    admin = user_factory("admin")
    dual = user_factory("mediator", "shopper", mediator_code="MED-D")
    deal = deal_factory(None, "MED-D")
    own_order = order_factory(dual)
    routed_order = order_factory(user_factory(), deal=deal)

    report = suspension_cascade.apply_status_change(db_session, dual.id, UserStatus.SUSPENDED, admin.id)

    assert report.applied == [
        "record_suspension",
        "shopper.freeze_orders",
        "mediator.deactivate_deals",
        "mediator.freeze_orders",
    ]
    assert _reload(db_session, Order, own_order.id).frozen is True
    assert _reload(db_session, Order, routed_order.id).frozen_reason == "MEDIATOR_SUSPENDED"
    assert _reload(db_session, Deal, deal.id).active is False
    assert _suspensions(db_session, dual.id, SuspensionAction.SUSPEND) == 1


def test_agency_suspension_reaches_every_mediator(db_session, user_factory, deal_factory, order_factory, realtime_events):
    admin = user_factory("admin")
    agency = user_factory("agency", mediator_code="AG-X")
    user_factory("mediator", mediator_code="MED-X1", parent_code="AG-X")
    user_factory("mediator", mediator_code="MED-X2", parent_code="AG-X")
    outside = deal_factory(None, "MED-OTHER")
    deals = [deal_factory(None, code) for code in ("MED-X1", "MED-X2", "AG-X")]
    orders = [order_factory(user_factory(), deal=d) for d in deals]

    report = suspension_cascade.apply_status_change(db_session, agency.id, UserStatus.SUSPENDED, admin.id)

    steps = {s["step"]: s["affected"] for s in report.steps}
    assert steps["agency.deactivate_deals"] == 3
    assert steps["agency.freeze_orders"] == 3
    assert all(not _reload(db_session, Deal, d.id).active for d in deals)
    assert all(_reload(db_session, Order, o.id).frozen_reason == "AGENCY_SUSPENDED" for o in orders)
    assert _reload(db_session, Deal, outside.id).active is True

    deal_events = [e for e in realtime_events if e.type == "deals.changed"]
    assert len(deal_events) == 1
    assert set(deal_events[0].audience.mediator_codes) == {"AG-X", "MED-X1", "MED-X2"}
    assert deal_events[0].audience.agency_codes == ["AG-X"]


def test_brand_suspension_pauses_campaigns(db_session, user_factory, campaign_factory, order_factory):
    admin = user_factory("admin")
    brand = user_factory("brand")
    active = campaign_factory(brand)
    done = campaign_factory(brand, status=CampaignStatus.COMPLETED)
    order = order_factory(user_factory(), brand=brand)

    suspension_cascade.apply_status_change(db_session, brand.id, UserStatus.SUSPENDED, admin.id)

    assert _reload(db_session, Campaign, active.id).status == CampaignStatus.PAUSED
    assert _reload(db_session, Campaign, done.id).status == CampaignStatus.COMPLETED
    assert _reload(db_session, Order, order.id).frozen_reason == "BRAND_SUSPENDED"


def test_unsuspend_does_not_reactivate_anything(db_session, user_factory, deal_factory, order_factory):
    admin = user_factory("admin")
    mediator = user_factory("mediator", mediator_code="MED-U")
    deals = [deal_factory(None, "MED-U") for _ in range(3)]
    order = order_factory(user_factory(), deal=deals[0])

    suspension_cascade.apply_status_change(db_session, mediator.id, UserStatus.SUSPENDED, admin.id)
    report = suspension_cascade.apply_status_change(db_session, mediator.id, UserStatus.ACTIVE, admin.id, "appeal won")

    assert report.applied == ["record_unsuspension"]
    assert all(_reload(db_session, Deal, d.id).active is False for d in deals)
    assert _reload(db_session, Order, order.id).frozen is True
    assert _suspensions(db_session, mediator.id, SuspensionAction.UNSUSPEND) == 1


def test_same_status_is_a_no_op(db_session, user_factory, order_factory):
    admin = user_factory("admin")
    shopper = user_factory(status=UserStatus.SUSPENDED)
    order = order_factory(shopper)

    report = suspension_cascade.apply_status_change(db_session, shopper.id, UserStatus.SUSPENDED, admin.id)

    assert report.changed is False
    assert report.steps == []
    assert _reload(db_session, Order, order.id).frozen is False
    assert db_session.query(Suspension).count() == 0


def test_self_suspension_rejected_without_side_effects(db_session, user_factory, deal_factory):
    ops = user_factory("ops", "mediator", mediator_code="MED-S")
    deal = deal_factory(None, "MED-S")

    with pytest.raises(AuthorizationError) as exc:
        suspension_cascade.apply_status_change(db_session, ops.id, UserStatus.SUSPENDED, ops.id)
    assert exc.value.code == "CANNOT_SELF_SUSPEND"

    assert _reload(db_session, User, ops.id).status == UserStatus.ACTIVE
    assert _reload(db_session, Deal, deal.id).active is True
    assert db_session.query(Suspension).count() == 0
    assert db_session.query(AuditLog).count() == 0


def test_partial_failure_is_reported_and_resumable(db_session, user_factory, deal_factory, order_factory, monkeypatch):
    admin = user_factory("admin")
    mediator = user_factory("mediator", mediator_code="MED-P")
    deal = deal_factory(None, "MED-P")
    order = order_factory(user_factory(), deal=deal)

    def _boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(suspension_cascade, "freeze_orders", _boom)
    with pytest.raises(CascadePartialFailure) as exc:
        suspension_cascade.apply_status_change(db_session, mediator.id, UserStatus.SUSPENDED, admin.id)
    assert exc.value.failed == "mediator.freeze_orders"
    assert exc.value.applied == ["record_suspension", "mediator.deactivate_deals"]
    assert exc.value.details["cause"] == "database went away"

    # Completed steps stay committed.
    assert _reload(db_session, User, mediator.id).status == UserStatus.SUSPENDED
    assert _reload(db_session, Deal, deal.id).active is False
    assert _reload(db_session, Order, order.id).frozen is False

    monkeypatch.undo()
    report = suspension_cascade.resume_cascade(db_session, mediator.id, admin.id)
    steps = {s["step"]: s["affected"] for s in report.steps}
    assert steps == {"mediator.deactivate_deals": 0, "mediator.freeze_orders": 1}
    assert _reload(db_session, Order, order.id).frozen is True
    assert _suspensions(db_session, mediator.id, SuspensionAction.SUSPEND) == 1


def test_failed_first_step_leaves_status_and_announces_nothing(db_session, user_factory, order_factory, realtime_events, monkeypatch):
    admin = user_factory("admin")
    shopper = user_factory()
    order = order_factory(shopper)

    def _boom(ctx, action):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(suspension_cascade, "_record_suspension", _boom)
    with pytest.raises(CascadePartialFailure) as exc:
        suspension_cascade.apply_status_change(db_session, shopper.id, UserStatus.SUSPENDED, admin.id)
    assert exc.value.applied == []

    assert _reload(db_session, User, shopper.id).status == UserStatus.ACTIVE
    assert _reload(db_session, Order, order.id).frozen is False
    assert [e for e in realtime_events if e.type == "users.changed"] == []


def test_later_step_failure_still_announces_committed_status(db_session, user_factory, deal_factory, realtime_events, monkeypatch):
    admin = user_factory("admin")
    mediator = user_factory("mediator", mediator_code="MED-R")
    deal_factory(None, "MED-R")

    def _boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(suspension_cascade, "freeze_orders", _boom)
    with pytest.raises(CascadePartialFailure):
        suspension_cascade.apply_status_change(db_session, mediator.id, UserStatus.SUSPENDED, admin.id)

    announced = [e.payload for e in realtime_events if e.type == "users.changed"]
    assert announced == [{"user_id": mediator.id, "status": "suspended"}]


def test_resume_requires_suspended_user(db_session, user_factory):
    user = user_factory()
    with pytest.raises(PreconditionFailed) as exc:
        suspension_cascade.resume_cascade(db_session, user.id, None)
    assert exc.value.code == "USER_NOT_SUSPENDED"
