"""Suspension cascade engine.

Turns one account status change into the role-specific downstream effects:

* shopper  -> freeze orders where the user is the buyer (``USER_SUSPENDED``)
* mediator -> deactivate deals under the mediator code, freeze orders routed
  through it (``MEDIATOR_SUSPENDED``)
* agency   -> resolve every mediator code under the agency, deactivate their
  deals and freeze their orders with one bulk filter (``AGENCY_SUSPENDED``)
* brand    -> pause active/draft campaigns, freeze brand orders (``BRAND_SUSPENDED``)

Roles are an explicit capability table; a user holding several roles gets
the union of the handlers. The cascade is edge-triggered: saving the same
status again does nothing. Leaving ``suspended`` only records an unsuspend
entry. Frozen orders, deals and campaigns stay as they are until staff
reactivate them one by one.

Every step commits on its own. If a step raises, earlier steps stay applied
and the caller receives ``CascadePartialFailure`` naming them; re-running
(``resume_cascade``) is safe because every step is idempotent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from affiliate_core.config import REALTIME_SETTINGS
from affiliate_core.errors import AuthorizationError, CascadePartialFailure, ConflictError, NotFound, PreconditionFailed
from affiliate_core.models.db.campaigns import Campaign, Deal
from affiliate_core.models.db.enums import CampaignStatus, SuspensionAction, UserRole, UserStatus
from affiliate_core.models.db.suspensions import Suspension
from affiliate_core.models.db.users import User
from affiliate_core.services import lineage
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.order_state_machine import OrderSelector, freeze_orders
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.utils import get_logger, utc_now

logger = get_logger(__name__)

STAFF_ROLES = list(REALTIME_SETTINGS["staff_roles"])


@dataclass
class CascadeReport:
    user_id: int
    previous_status: str
    new_status: str
    changed: bool
    steps: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def applied(self) -> List[str]:
        return [s["step"] for s in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed": self.changed,
            "steps": list(self.steps),
        }


@dataclass
class CascadeContext:
    session: Session
    user: User
    actor_user_id: Optional[int]
    reason: Optional[str]
    report: CascadeReport

    def run(self, step: str, fn: Callable[[], int]) -> int:
        try:
            affected = fn()
        except Exception as e:
            self.session.rollback()
            logger.error(
                "Cascade step failed",
                user_id=self.report.user_id,
                step=step,
                applied_steps=self.report.applied,
                error=str(e),
                exc_info=True,
            )
            raise CascadePartialFailure(
                f"Suspension cascade failed at step '{step}'",
                applied=self.report.applied,
                failed=step,
                cause=str(e),
            ) from e
        self.report.steps.append({"step": step, "affected": affected})
        logger.info("Cascade step applied", user_id=self.report.user_id, step=step, affected=affected)
        return affected


# ------------------------------ Bulk steps ------------------------------ #

def _deactivate_deals(session: Session, codes: List[str], reason: str, actor_user_id: Optional[int]) -> List[int]:
    if not codes:
        return []
    now = utc_now()
    stmt = (
        update(Deal)
        .where(Deal.mediator_code.in_(codes), Deal.active.is_(True), Deal.deleted_at.is_(None))
        .values(active=False, updated_at=now)
        .returning(Deal.id)
        .execution_options(synchronize_session="fetch")
    )
    deal_ids = sorted(row[0] for row in session.execute(stmt))
    if deal_ids:
        write_audit_log(
            session,
            action="DEALS_DEACTIVATED",
            entity_type="Deal",
            actor_user_id=actor_user_id,
            details={"reason": reason, "mediator_codes": codes, "deal_count": len(deal_ids), "deal_ids": deal_ids},
        )
    session.commit()
    return deal_ids


def _pause_campaigns(session: Session, brand_user_id: int, reason: str, actor_user_id: Optional[int]) -> List[int]:
    now = utc_now()
    stmt = (
        update(Campaign)
        .where(
            Campaign.brand_user_id == brand_user_id,
            Campaign.status.in_([CampaignStatus.ACTIVE, CampaignStatus.DRAFT]),
            Campaign.deleted_at.is_(None),
        )
        .values(status=CampaignStatus.PAUSED, updated_at=now)
        .returning(Campaign.id)
        .execution_options(synchronize_session="fetch")
    )
    campaign_ids = sorted(row[0] for row in session.execute(stmt))
    if campaign_ids:
        write_audit_log(
            session,
            action="CAMPAIGNS_PAUSED",
            entity_type="Campaign",
            actor_user_id=actor_user_id,
            details={"reason": reason, "brand_user_id": brand_user_id, "campaign_count": len(campaign_ids), "campaign_ids": campaign_ids},
        )
    session.commit()
    return campaign_ids


def _freeze(ctx: CascadeContext, selector: OrderSelector, reason: str) -> int:
    result = freeze_orders(ctx.session, selector, reason, ctx.actor_user_id)
    if result.count:
        publish_realtime(
            "orders.changed",
            payload={"reason": reason, "frozen_count": result.count},
            roles=STAFF_ROLES,
            user_ids=[selector.user_id, selector.brand_user_id],
            mediator_codes=selector.mediator_codes,
        )
    return result.count


def _deals_changed(codes: List[str], parent_codes: List[str], reason: str, count: int) -> None:
    if count:
        publish_realtime(
            "deals.changed",
            payload={"reason": reason, "deactivated_count": count},
            roles=STAFF_ROLES,
            mediator_codes=codes,
            parent_codes=parent_codes,
            agency_codes=parent_codes,
        )


# ---------------------------- Role handlers ----------------------------- #

def _suspend_shopper(ctx: CascadeContext) -> None:
    ctx.run("shopper.freeze_orders", lambda: _freeze(ctx, OrderSelector(user_id=ctx.user.id), "USER_SUSPENDED"))


def _suspend_mediator(ctx: CascadeContext) -> None:
    code = ctx.user.mediator_code
    if not code:
        logger.warning("Mediator has no code; nothing to cascade", user_id=ctx.user.id)
        return
    parents = [ctx.user.parent_code] if ctx.user.parent_code else []

    def _deals() -> int:
        deal_ids = _deactivate_deals(ctx.session, [code], "MEDIATOR_SUSPENDED", ctx.actor_user_id)
        _deals_changed([code], parents, "MEDIATOR_SUSPENDED", len(deal_ids))
        return len(deal_ids)

    ctx.run("mediator.deactivate_deals", _deals)
    ctx.run("mediator.freeze_orders", lambda: _freeze(ctx, OrderSelector(mediator_codes=[code]), "MEDIATOR_SUSPENDED"))


def _suspend_agency(ctx: CascadeContext) -> None:
    agency_code = ctx.user.mediator_code
    if not agency_code:
        logger.warning("Agency has no code; nothing to cascade", user_id=ctx.user.id)
        return
    codes = lineage.list_mediator_codes_for_agency(ctx.session, agency_code)
    # Deals and orders can also sit directly on the agency's own code.
    codes = sorted(set(codes) | {agency_code})

    def _deals() -> int:
        deal_ids = _deactivate_deals(ctx.session, codes, "AGENCY_SUSPENDED", ctx.actor_user_id)
        _deals_changed(codes, [agency_code], "AGENCY_SUSPENDED", len(deal_ids))
        return len(deal_ids)

    ctx.run("agency.deactivate_deals", _deals)
    ctx.run("agency.freeze_orders", lambda: _freeze(ctx, OrderSelector(mediator_codes=codes), "AGENCY_SUSPENDED"))


def _suspend_brand(ctx: CascadeContext) -> None:
    def _campaigns() -> int:
        campaign_ids = _pause_campaigns(ctx.session, ctx.user.id, "BRAND_SUSPENDED", ctx.actor_user_id)
        if campaign_ids:
            publish_realtime(
                "campaigns.changed",
                payload={"reason": "BRAND_SUSPENDED", "paused_count": len(campaign_ids)},
                roles=STAFF_ROLES,
                user_ids=[ctx.user.id],
            )
        return len(campaign_ids)

    ctx.run("brand.pause_campaigns", _campaigns)
    ctx.run("brand.freeze_orders", lambda: _freeze(ctx, OrderSelector(brand_user_id=ctx.user.id), "BRAND_SUSPENDED"))


# Execution order is the table order.
SUSPEND_HANDLERS: Dict[UserRole, Callable[[CascadeContext], None]] = {
    UserRole.SHOPPER: _suspend_shopper,
    UserRole.MEDIATOR: _suspend_mediator,
    UserRole.AGENCY: _suspend_agency,
    UserRole.BRAND: _suspend_brand,
}


def _run_role_handlers(ctx: CascadeContext) -> None:
    roles = ctx.user.role_set
    for role, handler in SUSPEND_HANDLERS.items():
        if role in roles:
            handler(ctx)


def _record_suspension(ctx: CascadeContext, action: SuspensionAction) -> int:
    ctx.session.add(Suspension(
        target_user_id=ctx.user.id,
        action=action,
        reason=ctx.reason,
        admin_user_id=ctx.actor_user_id,
    ))
    write_audit_log(
        ctx.session,
        action="USER_SUSPENDED" if action == SuspensionAction.SUSPEND else "USER_UNSUSPENDED",
        entity_type="User",
        entity_id=ctx.user.id,
        actor_user_id=ctx.actor_user_id,
        details={"reason": ctx.reason, "roles": list(ctx.user.roles or [])},
    )
    # Also commits any pending status change on the user row.
    ctx.session.commit()
    return 1


def _commit_status(session: Session) -> int:
    session.commit()
    return 0


def _guard_self_suspend(user: User, new_status: UserStatus, actor_user_id: Optional[int]) -> None:
    if actor_user_id is not None and actor_user_id == user.id and new_status == UserStatus.SUSPENDED:
        logger.warning("Self-suspension rejected", user_id=user.id)
        raise AuthorizationError("CANNOT_SELF_SUSPEND", "You cannot suspend your own account", {"user_id": user.id})


# ------------------------------ Public API ------------------------------ #

def on_status_change(
    session: Session,
    user: User,
    previous_status: UserStatus,
    new_status: UserStatus,
    actor_user_id: Optional[int],
    reason: Optional[str] = None,
) -> CascadeReport:
    previous_status = UserStatus(previous_status)
    new_status = UserStatus(new_status)
    _guard_self_suspend(user, new_status, actor_user_id)
    report = CascadeReport(user.id, previous_status.value, new_status.value, changed=previous_status != new_status)
    if not report.changed:
        logger.info("Status unchanged; cascade skipped", user_id=user.id, status=new_status.value)
        return report

    ctx = CascadeContext(session, user, actor_user_id, reason, report)
    if new_status == UserStatus.SUSPENDED:
        ctx.run("record_suspension", lambda: _record_suspension(ctx, SuspensionAction.SUSPEND))
        _run_role_handlers(ctx)
    elif previous_status == UserStatus.SUSPENDED:
        ctx.run("record_unsuspension", lambda: _record_suspension(ctx, SuspensionAction.UNSUSPEND))
    else:
        ctx.run("commit_status", lambda: _commit_status(session))
    return report


def _publish_user_status(user_id: int, status: UserStatus) -> None:
    publish_realtime(
        "users.changed",
        payload={"user_id": user_id, "status": status.value},
        roles=STAFF_ROLES,
        user_ids=[user_id],
    )


def _load_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("USER_NOT_FOUND", "User not found", {"user_id": user_id})
    if user.deleted_at is not None:
        raise ConflictError("USER_ALREADY_DELETED", "User is deleted", {"user_id": user_id})
    return user


def apply_status_change(
    session: Session,
    user_id: int,
    new_status: UserStatus,
    actor_user_id: Optional[int],
    reason: Optional[str] = None,
) -> CascadeReport:
    """Persist a new account status and run the cascade for the edge it crosses."""
    new_status = UserStatus(new_status)
    user = _load_user(session, user_id)
    _guard_self_suspend(user, new_status, actor_user_id)
    previous = user.status
    if previous == new_status:
        return on_status_change(session, user, previous, new_status, actor_user_id, reason)

    user.status = new_status
    user.updated_at = utc_now()
    write_audit_log(
        session,
        action="USER_STATUS_UPDATED",
        entity_type="User",
        entity_id=user.id,
        actor_user_id=actor_user_id,
        details={"from": previous.value, "to": new_status.value, "reason": reason},
    )
    try:
        report = on_status_change(session, user, previous, new_status, actor_user_id, reason)
    except CascadePartialFailure as e:
        # The first step commits the status; without it nothing changed.
        if e.applied:
            _publish_user_status(user_id, new_status)
        raise
    _publish_user_status(user_id, new_status)
    publish_realtime(
        "notifications.changed",
        payload={"user_id": user_id},
        user_ids=[user_id],
    )
    logger.info(
        "User status changed",
        user_id=user_id,
        previous=previous.value,
        status=new_status.value,
        steps=report.applied,
        actor_user_id=actor_user_id,
    )
    return report


def resume_cascade(session: Session, user_id: int, actor_user_id: Optional[int], reason: Optional[str] = None) -> CascadeReport:
    """Re-run the role handlers for a suspended user after a partial failure."""
    user = _load_user(session, user_id)
    if user.status != UserStatus.SUSPENDED:
        raise PreconditionFailed("USER_NOT_SUSPENDED", "Only suspended users have a cascade to resume", {"user_id": user_id})
    report = CascadeReport(user.id, UserStatus.SUSPENDED.value, UserStatus.SUSPENDED.value, changed=False)
    ctx = CascadeContext(session, user, actor_user_id, reason, report)
    _run_role_handlers(ctx)
    logger.info("Cascade resumed", user_id=user_id, steps=report.applied)
    return report


__all__ = [
    "CascadeReport",
    "SUSPEND_HANDLERS",
    "on_status_change",
    "apply_status_change",
    "resume_cascade",
]
