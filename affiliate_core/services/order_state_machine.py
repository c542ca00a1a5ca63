"""Order lifecycle and affiliate settlement state machine.

Affiliate status edges::

    Unchecked -> Pending_Cooling -> {Approved_Settled | Rejected | Fraud_Alert | Cap_Exceeded}

Any status may be disputed into ``Frozen_Disputed`` (``freeze_order``); only
``reactivate_order`` brings it back, to the status recorded before the dispute.

``frozen`` is an overlay on top of the status. While set, verification,
settlement and payment-status changes fail with ``FROZEN``. Cascade freezes
(``freeze_orders``) set the overlay without touching the affiliate status.
Those writers claim the row with a conditional UPDATE first, so a freeze
committed by another session between read and write is never overwritten.

Entering ``Approved_Settled`` moves money through the wallet ledger and sets
``payment_status=Paid`` in the same transaction; any failure rolls all of it back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, insert, update
from sqlalchemy.orm import Session

from affiliate_core.config import SETTLEMENT_SETTINGS
from affiliate_core.errors import ConflictError, NotFound, PreconditionFailed, ValidationFailed
from affiliate_core.models.db.campaigns import Deal
from affiliate_core.models.db.enums import (
    AffiliateStatus,
    DealType,
    PaymentStatus,
    ProofType,
    UserStatus,
    WalletBucket,
)
from affiliate_core.models.db.orders import Order, OrderEvent
from affiliate_core.models.db.users import User
from affiliate_core.services import lineage, wallet_ledger
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.utils import ensure_utc, get_logger, utc_now
from affiliate_core.utils.time import days_from_now

logger = get_logger(__name__)

CLOSED_STATUSES = frozenset(AffiliateStatus(s) for s in SETTLEMENT_SETTINGS["closed_affiliate_statuses"])  # type: ignore[union-attr]

TRANSITIONS: Dict[AffiliateStatus, frozenset[AffiliateStatus]] = {
    AffiliateStatus.UNCHECKED: frozenset({AffiliateStatus.PENDING_COOLING}),
    AffiliateStatus.PENDING_COOLING: frozenset({
        AffiliateStatus.APPROVED_SETTLED,
        AffiliateStatus.REJECTED,
        AffiliateStatus.FRAUD_ALERT,
        AffiliateStatus.CAP_EXCEEDED,
    }),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
}

REQUIRED_PROOFS: Dict[DealType, tuple[ProofType, ...]] = {
    DealType.DISCOUNT: (ProofType.ORDER,),
    DealType.REVIEW: (ProofType.ORDER, ProofType.REVIEW),
    DealType.RATING: (ProofType.ORDER, ProofType.RATING),
}


@dataclass
class OrderSelector:
    """Set-based filter for bulk freezes. Never a single order id."""

    user_id: Optional[int] = None
    brand_user_id: Optional[int] = None
    mediator_codes: Sequence[str] = field(default_factory=tuple)

    def is_empty(self) -> bool:
        return self.user_id is None and self.brand_user_id is None and not self.mediator_codes

    def conditions(self) -> List[Any]:
        conds: List[Any] = []
        if self.user_id is not None:
            conds.append(Order.user_id == self.user_id)
        if self.brand_user_id is not None:
            conds.append(Order.brand_user_id == self.brand_user_id)
        if self.mediator_codes:
            conds.append(Order.mediator_code.in_(list(self.mediator_codes)))
        return conds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "brand_user_id": self.brand_user_id,
            "mediator_codes": list(self.mediator_codes),
        }


@dataclass
class FreezeResult:
    frozen_order_ids: List[int]
    reason: str

    @property
    def count(self) -> int:
        return len(self.frozen_order_ids)


# ------------------------------- Helpers -------------------------------- #

def get_order(session: Session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if order is None or order.deleted_at is not None:
        raise NotFound("ORDER_NOT_FOUND", "Order not found", {"order_id": order_id})
    return order


def _event(session: Session, order: Order, event_type: str, actor_user_id: Optional[int], **details: Any) -> None:
    session.add(OrderEvent(
        order_id=order.id,
        type=event_type,
        actor_user_id=actor_user_id,
        details={k: v for k, v in details.items() if v is not None},
    ))


def _ensure_not_frozen(order: Order, operation: str) -> None:
    if order.frozen:
        raise PreconditionFailed(
            "FROZEN",
            "Order is frozen and requires explicit reactivation",
            {"order_id": order.id, "operation": operation, "frozen_reason": order.frozen_reason},
        )


def _claim_order(session: Session, order: Order, operation: str) -> None:
    """Take the order row for this transaction before writing anything else.

    The UPDATE only matches while the row is still unfrozen and in the state
    this session read, so a freeze committed by another session after the
    read fails the operation instead of being overwritten.
    """
    affiliate_status, payment_status = order.affiliate_status, order.payment_status
    stmt = (
        update(Order)
        .where(
            Order.id == order.id,
            Order.deleted_at.is_(None),
            Order.frozen.is_(False),
            Order.affiliate_status == affiliate_status,
            Order.payment_status == payment_status,
        )
        .values(updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount == 1:
        return
    session.rollback()
    _ensure_not_frozen(order, operation)
    raise ConflictError(
        "CONCURRENT_MODIFICATION",
        "Order was modified concurrently; re-read and retry",
        {"order_id": order.id, "operation": operation, "expected_affiliate_status": affiliate_status.value},
    )


def _notify_order(order: Order, extra_user_ids: Iterable[int] = ()) -> None:
    publish_realtime(
        "orders.changed",
        payload={"order_id": order.id, "affiliate_status": order.affiliate_status.value, "frozen": order.frozen},
        user_ids=[order.user_id, order.brand_user_id, *extra_user_ids],
        mediator_codes=[order.mediator_code] if order.mediator_code else [],
        roles=["admin", "ops"],
    )


def _commit(session: Session, order: Order) -> Order:
    order.updated_at = utc_now()
    session.commit()
    session.refresh(order)
    return order


def _buyer_commission(order: Order) -> int:
    return sum(int(i.get("commission_paise", 0)) * int(i.get("quantity", 1)) for i in order.items or [])


# ------------------------------- Creation ------------------------------- #

def create_order(
    session: Session,
    *,
    user_id: int,
    items: List[Dict[str, Any]],
    deal_id: Optional[int] = None,
    buyer_name: Optional[str] = None,
    external_order_id: Optional[str] = None,
    screenshots: Optional[Dict[str, str]] = None,
    actor_user_id: Optional[int] = None,
) -> Order:
    buyer = session.get(User, user_id)
    if buyer is None or buyer.deleted_at is not None:
        raise NotFound("USER_NOT_FOUND", "Buyer not found", {"user_id": user_id})
    if buyer.status != UserStatus.ACTIVE:
        raise PreconditionFailed("USER_NOT_ACTIVE", "Buyer account is not active", {"user_id": user_id})
    if not items:
        raise ValidationFailed("INVALID_ITEMS", "An order needs at least one item")

    deal: Optional[Deal] = None
    if deal_id is not None:
        deal = session.get(Deal, deal_id)
        if deal is None or deal.deleted_at is not None:
            raise NotFound("DEAL_NOT_FOUND", "Deal not found", {"deal_id": deal_id})
        if not deal.active:
            raise PreconditionFailed("DEAL_INACTIVE", "Deal is not active", {"deal_id": deal_id})

    normalized: List[Dict[str, Any]] = []
    for raw in items:
        quantity = raw.get("quantity", 1)
        price = raw.get("price_paise")
        commission = raw.get("commission_paise", deal.commission_paise if deal else 0)
        for name, value, minimum in (("quantity", quantity, 1), ("price_paise", price, 0), ("commission_paise", commission, 0)):
            if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
                raise ValidationFailed("INVALID_ITEMS", f"Item {name} must be an integer >= {minimum}", {"item": raw})
        normalized.append({
            "product_id": str(raw.get("product_id") or ""),
            "title": str(raw.get("title") or ""),
            "quantity": quantity,
            "price_paise": price,
            "commission_paise": commission,
        })

    try:
        order = Order(
            user_id=buyer.id,
            brand_user_id=deal.campaign.brand_user_id if deal and deal.campaign else None,
            deal_id=deal.id if deal else None,
            mediator_code=deal.mediator_code if deal else buyer.parent_code,
            buyer_name=buyer_name or buyer.name,
            external_order_id=external_order_id,
            items=normalized,
            total_paise=sum(i["price_paise"] * i["quantity"] for i in normalized),
            screenshots=dict(screenshots or {}),
            verification={},
        )
        session.add(order)
        session.flush()
        _event(session, order, "ORDER_CREATED", actor_user_id or buyer.id, total_paise=order.total_paise)
        write_audit_log(
            session,
            action="ORDER_CREATED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id or buyer.id,
            details={"deal_id": order.deal_id, "total_paise": order.total_paise, "mediator_code": order.mediator_code},
        )
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    logger.info("Order created", order_id=order.id, user_id=buyer.id, deal_id=order.deal_id, total_paise=order.total_paise)
    _notify_order(order)
    return order


# -------------------------------- Freeze -------------------------------- #

def freeze_orders(
    session: Session,
    selector: OrderSelector,
    reason: str,
    actor_user_id: Optional[int],
) -> FreezeResult:
    """Freeze every open, non-frozen order matching ``selector`` in one UPDATE.

    Idempotent: orders that are already frozen are not matched again, and no
    audit row is written when nothing changed.
    """
    if selector.is_empty():
        raise ValidationFailed("EMPTY_SELECTOR", "Freeze selector must filter by user, brand or mediator codes")
    now = utc_now()
    sample = int(SETTLEMENT_SETTINGS["audit_order_id_sample"])  # type: ignore[arg-type]
    stmt = (
        update(Order)
        .where(
            *selector.conditions(),
            Order.deleted_at.is_(None),
            Order.frozen.is_(False),
            Order.affiliate_status.notin_(list(CLOSED_STATUSES)),
        )
        .values(frozen=True, frozen_at=now, frozen_reason=reason, updated_at=now)
        .returning(Order.id)
        .execution_options(synchronize_session="fetch")
    )
    try:
        frozen_ids = sorted(row[0] for row in session.execute(stmt))
        if frozen_ids:
            session.execute(
                insert(OrderEvent),
                [
                    {"order_id": oid, "type": "WORKFLOW_FROZEN", "actor_user_id": actor_user_id, "details": {"reason": reason}, "at": now}
                    for oid in frozen_ids
                ],
            )
            write_audit_log(
                session,
                action="ORDERS_FROZEN",
                entity_type="Order",
                actor_user_id=actor_user_id,
                details={
                    "reason": reason,
                    "selector": selector.to_dict(),
                    "frozen_count": len(frozen_ids),
                    # Per-order history lives in the WORKFLOW_FROZEN events.
                    "order_ids_sample": frozen_ids[:sample],
                },
            )
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Orders frozen", reason=reason, selector=selector.to_dict(), frozen_count=len(frozen_ids))
    return FreezeResult(frozen_order_ids=frozen_ids, reason=reason)


def freeze_order(session: Session, order_id: int, reason: str, actor_user_id: Optional[int]) -> Order:
    """Dispute a single order into ``Frozen_Disputed``; a no-op when already frozen."""
    order = get_order(session, order_id)
    if order.frozen:
        logger.info("Order already frozen", order_id=order.id, frozen_reason=order.frozen_reason)
        return order
    try:
        now = utc_now()
        previous = order.affiliate_status
        order.pre_freeze_affiliate_status = previous
        order.affiliate_status = AffiliateStatus.FROZEN_DISPUTED
        order.frozen = True
        order.frozen_at = now
        order.frozen_reason = reason
        _event(session, order, "WORKFLOW_FROZEN", actor_user_id, reason=reason, previous_status=previous.value)
        write_audit_log(
            session,
            action="ORDER_DISPUTED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            details={"reason": reason, "previous_status": previous.value},
        )
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    logger.info("Order disputed", order_id=order.id, previous_status=previous.value, reason=reason)
    _notify_order(order)
    return order


def reactivate_order(session: Session, order_id: int, actor_user_id: Optional[int], reason: Optional[str] = None) -> Order:
    order = get_order(session, order_id)
    if not order.frozen:
        raise PreconditionFailed("ORDER_NOT_FROZEN", "Order is not frozen", {"order_id": order.id})
    try:
        restored = order.affiliate_status
        if order.affiliate_status == AffiliateStatus.FROZEN_DISPUTED:
            restored = order.pre_freeze_affiliate_status or AffiliateStatus.UNCHECKED
        previous_reason = order.frozen_reason
        order.affiliate_status = restored
        order.pre_freeze_affiliate_status = None
        order.frozen = False
        order.frozen_at = None
        order.frozen_reason = None
        order.reactivated_at = utc_now()
        order.reactivated_by = actor_user_id
        _event(session, order, "WORKFLOW_REACTIVATED", actor_user_id, reason=reason, frozen_reason=previous_reason)
        write_audit_log(
            session,
            action="ORDER_REACTIVATED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            details={"reason": reason, "frozen_reason": previous_reason, "affiliate_status": restored.value},
        )
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    logger.info("Order reactivated", order_id=order.id, affiliate_status=restored.value)
    _notify_order(order)
    return order


# ------------------------------ Transitions ----------------------------- #

def _ensure_lineage_active(session: Session, order: Order) -> None:
    if not order.mediator_code:
        return
    if not lineage.is_mediator_active(session, order.mediator_code):
        raise PreconditionFailed(
            "MEDIATOR_SUSPENDED",
            "Order's mediator is not active",
            {"order_id": order.id, "mediator_code": order.mediator_code},
        )
    agency_code = lineage.get_agency_code_for_mediator_code(session, order.mediator_code)
    if agency_code and not lineage.is_agency_active(session, agency_code):
        raise PreconditionFailed(
            "AGENCY_SUSPENDED",
            "Order's agency is not active",
            {"order_id": order.id, "agency_code": agency_code},
        )


def _settle_money(session: Session, order: Order, actor_user_id: Optional[int]) -> Dict[str, int]:
    commission = _buyer_commission(order)
    deal = order.deal
    payout = deal.payout_paise if deal is not None else commission
    if commission > payout:
        raise PreconditionFailed(
            "INVALID_ECONOMICS",
            "Buyer commission exceeds the deal payout",
            {"order_id": order.id, "commission_paise": commission, "payout_paise": payout},
        )
    if payout > 0 and order.brand_user_id is None:
        raise PreconditionFailed("MISSING_BRAND", "Order has no brand to charge", {"order_id": order.id})

    margin = payout - commission
    mediator: Optional[User] = None
    if margin > 0 and order.mediator_code:
        mediator = session.query(User).filter(User.mediator_code == order.mediator_code, User.deleted_at.is_(None)).first()
    if mediator is None:
        # No mediator account to receive the margin; the brand is charged only the commission.
        margin = 0
    charge = commission + margin

    key = f"order:{order.id}:settle"
    common = {"txn_type": "order_settlement", "order_id": order.id, "actor_user_id": actor_user_id}
    if charge > 0:
        wallet_ledger.debit(session, order.brand_user_id, WalletBucket.AVAILABLE, charge, idempotency_key=f"{key}:brand", **common)  # type: ignore[arg-type]
    if commission > 0:
        wallet_ledger.credit(session, order.user_id, WalletBucket.AVAILABLE, commission, idempotency_key=f"{key}:buyer", **common)
    if mediator is not None and margin > 0:
        wallet_ledger.credit(session, mediator.id, WalletBucket.AVAILABLE, margin, idempotency_key=f"{key}:mediator", **common)
    return {"charged_paise": charge, "commission_paise": commission, "margin_paise": margin}


def transition_affiliate_status(
    session: Session,
    order_id: int,
    next_status: AffiliateStatus,
    actor_user_id: Optional[int],
    reason: Optional[str] = None,
) -> Order:
    next_status = AffiliateStatus(next_status)
    if next_status == AffiliateStatus.FROZEN_DISPUTED:
        return freeze_order(session, order_id, reason or "DISPUTED", actor_user_id)

    order = get_order(session, order_id)
    _ensure_not_frozen(order, "transition_affiliate_status")
    current = order.affiliate_status
    if next_status not in TRANSITIONS.get(current, frozenset()):
        raise PreconditionFailed(
            "INVALID_TRANSITION",
            f"Cannot move affiliate status from {current.value} to {next_status.value}",
            {"order_id": order.id, "from": current.value, "to": next_status.value},
        )
    if next_status == AffiliateStatus.APPROVED_SETTLED:
        _ensure_lineage_active(session, order)

    settlement: Dict[str, int] = {}
    try:
        _claim_order(session, order, "transition_affiliate_status")
        if next_status == AffiliateStatus.APPROVED_SETTLED:
            settlement = _settle_money(session, order, actor_user_id)
            order.payment_status = PaymentStatus.PAID
            order.settled_at = utc_now()
            order.settled_by = actor_user_id
        elif next_status == AffiliateStatus.PENDING_COOLING and order.expected_settlement_at is None:
            order.expected_settlement_at = days_from_now(int(SETTLEMENT_SETTINGS["cooling_period_days"]))  # type: ignore[arg-type]
        order.affiliate_status = next_status
        _event(session, order, "AFFILIATE_STATUS_CHANGED", actor_user_id, **{"from": current.value, "to": next_status.value, "reason": reason})
        write_audit_log(
            session,
            action="ORDER_SETTLED" if next_status == AffiliateStatus.APPROVED_SETTLED else "ORDER_AFFILIATE_STATUS_UPDATED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            details={"from": current.value, "to": next_status.value, "reason": reason, **settlement},
        )
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    logger.info("Affiliate status changed", order_id=order.id, previous=current.value, status=next_status.value, **settlement)
    _notify_order(order)
    return order


def settle_order(session: Session, order_id: int, actor_user_id: Optional[int], *, allow_early: bool = False) -> Order:
    """Close a cooled order: ``Cap_Exceeded`` if the deal cap is used up, else ``Approved_Settled``."""
    order = get_order(session, order_id)
    _ensure_not_frozen(order, "settle_order")
    if order.affiliate_status != AffiliateStatus.PENDING_COOLING:
        raise PreconditionFailed(
            "INVALID_TRANSITION",
            "Only orders in Pending_Cooling can be settled",
            {"order_id": order.id, "affiliate_status": order.affiliate_status.value},
        )
    due = ensure_utc(order.expected_settlement_at)
    if not allow_early and due is not None and due > utc_now():
        raise PreconditionFailed(
            "COOLING_PERIOD_ACTIVE",
            "Cooling period has not elapsed",
            {"order_id": order.id, "expected_settlement_at": due.isoformat()},
        )

    deal = order.deal
    if deal is not None and deal.settlement_cap is not None:
        settled = (
            session.query(func.count(Order.id))
            .filter(Order.deal_id == deal.id, Order.affiliate_status == AffiliateStatus.APPROVED_SETTLED)
            .scalar()
        ) or 0
        if settled >= deal.settlement_cap:
            logger.info("Deal settlement cap reached", order_id=order.id, deal_id=deal.id, cap=deal.settlement_cap)
            return transition_affiliate_status(session, order.id, AffiliateStatus.CAP_EXCEEDED, actor_user_id, reason="CAP_REACHED")
    return transition_affiliate_status(session, order.id, AffiliateStatus.APPROVED_SETTLED, actor_user_id)


def update_payment_status(session: Session, order_id: int, payment_status: PaymentStatus, actor_user_id: Optional[int]) -> Order:
    payment_status = PaymentStatus(payment_status)
    order = get_order(session, order_id)
    _ensure_not_frozen(order, "update_payment_status")
    current = order.payment_status
    if current == payment_status:
        return order
    if payment_status not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        raise PreconditionFailed(
            "INVALID_TRANSITION",
            f"Cannot move payment status from {current.value} to {payment_status.value}",
            {"order_id": order.id},
        )
    if order.affiliate_status == AffiliateStatus.APPROVED_SETTLED:
        raise PreconditionFailed(
            "INVALID_TRANSITION",
            "Settled orders must stay Paid",
            {"order_id": order.id, "payment_status": current.value},
        )
    try:
        _claim_order(session, order, "update_payment_status")
        order.payment_status = payment_status
        _event(session, order, "PAYMENT_STATUS_CHANGED", actor_user_id, **{"from": current.value, "to": payment_status.value})
        write_audit_log(
            session,
            action="ORDER_PAYMENT_STATUS_UPDATED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            details={"from": current.value, "to": payment_status.value},
        )
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    _notify_order(order)
    return order


# ----------------------------- Verification ----------------------------- #

def required_proofs(order: Order) -> tuple[ProofType, ...]:
    deal_type = order.deal.deal_type if order.deal is not None else DealType.DISCOUNT
    return REQUIRED_PROOFS.get(deal_type, (ProofType.ORDER,))


def submit_proof(session: Session, order_id: int, proof_type: ProofType, image_ref: str, actor_user_id: Optional[int]) -> Order:
    """Attach a proof image; replacing an image drops its cached extraction and verification."""
    # Local import: the cache module imports this one for order lookups.
    from affiliate_core.services.proof_extraction_cache import delete_extraction

    proof_type = ProofType(proof_type)
    if not image_ref:
        raise ValidationFailed("MISSING_IMAGE", "Proof image is required", {"proof_type": proof_type.value})
    order = get_order(session, order_id)
    previous = (order.screenshots or {}).get(proof_type.value)
    replaced = previous is not None and previous != image_ref
    try:
        order.screenshots = {**(order.screenshots or {}), proof_type.value: image_ref}
        if replaced:
            delete_extraction(session, order.id, proof_type)
            order.verification = {k: v for k, v in (order.verification or {}).items() if k != proof_type.value}
        _event(session, order, "PROOF_SUBMITTED", actor_user_id, proof_type=proof_type.value, replaced=replaced)
        write_audit_log(
            session,
            action="ORDER_PROOF_SUBMITTED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            details={"proof_type": proof_type.value, "replaced": replaced},
        )
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    logger.info("Proof submitted", order_id=order.id, proof_type=proof_type.value, replaced=replaced)
    return order


def verify_proof(session: Session, order_id: int, proof_type: ProofType, actor_user_id: Optional[int]) -> Order:
    """Mark one proof verified; move to Pending_Cooling once every required proof is."""
    proof_type = ProofType(proof_type)
    order = get_order(session, order_id)
    _ensure_not_frozen(order, "verify_proof")
    if proof_type.value not in (order.screenshots or {}):
        raise PreconditionFailed("PROOF_MISSING", "No proof uploaded for this type", {"order_id": order.id, "proof_type": proof_type.value})
    if order.affiliate_status not in (AffiliateStatus.UNCHECKED, AffiliateStatus.PENDING_COOLING):
        raise PreconditionFailed(
            "INVALID_TRANSITION",
            "Proofs can only be verified before settlement",
            {"order_id": order.id, "affiliate_status": order.affiliate_status.value},
        )
    try:
        _claim_order(session, order, "verify_proof")
        now = utc_now()
        order.verification = {
            **(order.verification or {}),
            proof_type.value: {"verified_at": now.isoformat(), "verified_by": actor_user_id},
        }
        _event(session, order, "PROOF_VERIFIED", actor_user_id, proof_type=proof_type.value)
        write_audit_log(
            session,
            action="ORDER_PROOF_VERIFIED",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            details={"proof_type": proof_type.value},
        )
        missing = [p.value for p in required_proofs(order) if p.value not in order.verification]
        if not missing and order.affiliate_status == AffiliateStatus.UNCHECKED:
            order.affiliate_status = AffiliateStatus.PENDING_COOLING
            order.expected_settlement_at = days_from_now(int(SETTLEMENT_SETTINGS["cooling_period_days"]), now)  # type: ignore[arg-type]
            _event(session, order, "AFFILIATE_STATUS_CHANGED", actor_user_id, **{"from": AffiliateStatus.UNCHECKED.value, "to": AffiliateStatus.PENDING_COOLING.value})
        _commit(session, order)
    except Exception:
        session.rollback()
        raise
    logger.info("Proof verified", order_id=order.id, proof_type=proof_type.value, affiliate_status=order.affiliate_status.value)
    _notify_order(order)
    return order


__all__ = [
    "CLOSED_STATUSES",
    "TRANSITIONS",
    "OrderSelector",
    "FreezeResult",
    "get_order",
    "create_order",
    "freeze_orders",
    "freeze_order",
    "reactivate_order",
    "transition_affiliate_status",
    "settle_order",
    "update_payment_status",
    "required_proofs",
    "submit_proof",
    "verify_proof",
]
