"""Guards for destructive administrative operations (user and deal deletion).

A user may be soft-deleted only when, checked in this order:
1. they hold no privileged role            -> CANNOT_DELETE_PRIVILEGED
2. no live campaign they own is unfinished -> USER_HAS_CAMPAIGNS
3. no active deal carries their code(s)    -> USER_HAS_DEALS
4. no open order references them as buyer, brand, mediator or (for
   agencies) through any mediator beneath them -> USER_HAS_ORDERS
5. no payout is requested/processing       -> USER_HAS_PAYOUTS
6. their wallet is empty                   -> WALLET_NOT_EMPTY

Each failure carries its own code so the caller can present a specific
remediation. Deletion tombstones the user and the wallet in one transaction.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from affiliate_core.config import PRIVILEGED_ROLES
from affiliate_core.errors import AuthorizationError, ConflictError, NotFound, ResourceGuardError
from affiliate_core.models.db.campaigns import Campaign, Deal
from affiliate_core.models.db.enums import CampaignStatus, UserRole
from affiliate_core.models.db.orders import Order
from affiliate_core.models.db.users import User
from affiliate_core.services import lineage, wallet_ledger
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.order_state_machine import CLOSED_STATUSES
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.services.wallet_ledger import DeletionCheck
from affiliate_core.utils import get_logger, utc_now

logger = get_logger(__name__)


def _load_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("USER_NOT_FOUND", "User not found", {"user_id": user_id})
    if user.deleted_at is not None:
        raise ConflictError("USER_ALREADY_DELETED", "User is already deleted", {"user_id": user_id})
    return user


def _owned_codes(session: Session, user: User) -> List[str]:
    codes: List[str] = []
    if user.mediator_code:
        codes.append(user.mediator_code)
    if user.has_role(UserRole.AGENCY) and user.mediator_code:
        codes.extend(lineage.list_mediator_codes_for_agency(session, user.mediator_code))
    return sorted(set(codes))


def can_delete_user(session: Session, user_id: int) -> DeletionCheck:
    user = _load_user(session, user_id)

    if any(user.has_role(r) for r in PRIVILEGED_ROLES):
        return DeletionCheck(False, "CANNOT_DELETE_PRIVILEGED", "Admin and ops accounts cannot be deleted")

    has_campaigns = (
        session.query(Campaign.id)
        .filter(
            Campaign.brand_user_id == user.id,
            Campaign.deleted_at.is_(None),
            Campaign.status != CampaignStatus.COMPLETED,
        )
        .first()
    )
    if has_campaigns:
        return DeletionCheck(False, "USER_HAS_CAMPAIGNS", "User owns campaigns that are not completed")

    codes = _owned_codes(session, user)
    if codes:
        has_deals = (
            session.query(Deal.id)
            .filter(Deal.mediator_code.in_(codes), Deal.deleted_at.is_(None), Deal.active.is_(True))
            .first()
        )
        if has_deals:
            return DeletionCheck(False, "USER_HAS_DEALS", "User has active deals")

    order_refs = [Order.user_id == user.id, Order.brand_user_id == user.id]
    if codes:
        order_refs.append(Order.mediator_code.in_(codes))
    has_orders = (
        session.query(Order.id)
        .filter(
            or_(*order_refs),
            Order.deleted_at.is_(None),
            Order.affiliate_status.notin_(list(CLOSED_STATUSES)),
        )
        .first()
    )
    if has_orders:
        return DeletionCheck(False, "USER_HAS_ORDERS", "User is referenced by orders that are not settled")

    if wallet_ledger.has_open_payouts(session, user.id):
        return DeletionCheck(False, "USER_HAS_PAYOUTS", "User has pending payouts")

    wallet = wallet_ledger.get_wallet(session, user.id)
    if wallet is not None and not wallet.is_empty:
        return DeletionCheck(False, "WALLET_NOT_EMPTY", "User wallet still holds funds")

    return DeletionCheck(True)


def delete_user(session: Session, user_id: int, *, actor_user_id: Optional[int]) -> User:
    check = can_delete_user(session, user_id)
    if not check.allowed:
        logger.warning("User deletion blocked", user_id=user_id, code=check.code, actor_user_id=actor_user_id)
        error_cls = AuthorizationError if check.code == "CANNOT_DELETE_PRIVILEGED" else ResourceGuardError
        raise error_cls(check.code or "DELETE_BLOCKED", check.message or "User cannot be deleted", {"user_id": user_id})

    user = _load_user(session, user_id)
    now = utc_now()
    try:
        wallet = wallet_ledger.get_wallet(session, user.id)
        if wallet is not None:
            wallet.deleted_at = now
            wallet.deleted_by = actor_user_id
            write_audit_log(
                session,
                action="WALLET_DELETED",
                entity_type="Wallet",
                entity_id=wallet.id,
                actor_user_id=actor_user_id,
                details={"owner_user_id": user.id, "via": "user_delete"},
            )
        user.deleted_at = now
        user.deleted_by = actor_user_id
        write_audit_log(
            session,
            action="USER_DELETED",
            entity_type="User",
            entity_id=user.id,
            actor_user_id=actor_user_id,
            details={"roles": list(user.roles or []), "wallet_id": wallet.id if wallet else None},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(user)
    logger.info("User deleted", user_id=user.id, actor_user_id=actor_user_id)
    publish_realtime("users.changed", payload={"user_id": user.id, "deleted": True}, roles=["admin", "ops"], user_ids=[user.id])
    return user


def delete_deal(session: Session, deal_id: int, *, actor_user_id: Optional[int]) -> Deal:
    deal = session.get(Deal, deal_id)
    if deal is None:
        raise NotFound("DEAL_NOT_FOUND", "Deal not found", {"deal_id": deal_id})
    if deal.deleted_at is not None:
        raise ConflictError("DEAL_ALREADY_DELETED", "Deal is already deleted", {"deal_id": deal_id})
    order_count = session.query(Order.id).filter(Order.deal_id == deal.id, Order.deleted_at.is_(None)).count()
    if order_count:
        raise ResourceGuardError(
            "DEAL_HAS_ORDERS",
            "Deal has orders and cannot be deleted",
            {"deal_id": deal.id, "order_count": order_count},
        )
    try:
        deal.active = False
        deal.deleted_at = utc_now()
        deal.updated_at = deal.deleted_at
        write_audit_log(
            session,
            action="DEAL_DELETED",
            entity_type="Deal",
            entity_id=deal.id,
            actor_user_id=actor_user_id,
            details={"mediator_code": deal.mediator_code},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(deal)
    agency_code = lineage.get_agency_code_for_mediator_code(session, deal.mediator_code)
    publish_realtime(
        "deals.changed",
        payload={"deal_id": deal.id, "deleted": True},
        roles=["admin", "ops"],
        mediator_codes=[deal.mediator_code],
        parent_codes=[agency_code] if agency_code else [],
    )
    return deal


__all__ = ["DeletionCheck", "can_delete_user", "delete_user", "delete_deal"]
