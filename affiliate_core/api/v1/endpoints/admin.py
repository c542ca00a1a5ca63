"""
Staff endpoints: account status with suspension cascade, guarded deletions,
order disputes and the audit trail.

Domain errors raised by the services propagate to the application-level
``CoreError`` handler, which renders the ``{success, code, message, details}``
envelope with the matching HTTP status.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
import time
from affiliate_core.api.deps import get_db, require_admin, get_pagination_params
from affiliate_core.errors import NotFound
from affiliate_core.models.db import Suspension, User
from affiliate_core.models.schemas.admin import AuditLogRead, DeletionCheckRead
from affiliate_core.models.schemas.base import ResponseBase
from affiliate_core.models.schemas.orders import FreezeRequest, OrderRead, ReactivateRequest
from affiliate_core.models.schemas.users import SuspensionRead, UserStatusUpdate
from affiliate_core.services import deletion_guard, order_state_machine, suspension_cascade, wallet_ledger
from affiliate_core.services.audit import list_audit_logs
from affiliate_core.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.patch(
    "/users/{user_id}/status",
    response_model=ResponseBase,
    summary="Change account status",
    description="Suspending runs the role cascade: deals deactivated, campaigns paused, open orders frozen"
)
async def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "User status change requested",
        user_id=user_id,
        status=payload.status.value,
        admin_id=admin.id,
        request_id=request_id
    )

    report = suspension_cascade.apply_status_change(db, user_id, payload.status, admin.id, payload.reason)

    duration_ms = (time.time() - start_time) * 1000
    log_performance(
        operation="update_user_status",
        duration_ms=duration_ms,
        additional_data={"user_id": user_id, "steps": report.applied}
    )
    return ResponseBase(
        message="Status updated" if report.changed else "Status unchanged",
        data=report.to_dict(),
    )


@router.post(
    "/users/{user_id}/resume-cascade",
    response_model=ResponseBase,
    summary="Re-run the suspension cascade after a partial failure"
)
async def resume_user_cascade(
    user_id: int,
    payload: Optional[ReactivateRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    reason = payload.reason if payload else None
    report = suspension_cascade.resume_cascade(db, user_id, admin.id, reason)
    return ResponseBase(message="Cascade resumed", data=report.to_dict())


@router.get(
    "/users/{user_id}/suspensions",
    response_model=List[SuspensionRead],
    summary="Suspension history for an account"
)
async def list_user_suspensions(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> List[SuspensionRead]:
    if db.get(User, user_id) is None:
        raise NotFound("USER_NOT_FOUND", "User not found", {"user_id": user_id})
    rows = (
        db.query(Suspension)
        .filter(Suspension.target_user_id == user_id)
        .order_by(Suspension.id.asc())
        .all()
    )
    return [SuspensionRead.model_validate(r) for r in rows]


@router.get(
    "/users/{user_id}/deletable",
    response_model=DeletionCheckRead,
    summary="Dry-run of the user deletion guard"
)
async def check_user_deletable(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> DeletionCheckRead:
    check = deletion_guard.can_delete_user(db, user_id)
    return DeletionCheckRead(**check.to_dict())


@router.delete(
    "/users/{user_id}",
    response_model=ResponseBase,
    summary="Soft-delete an account",
    description="Blocked while the user has live campaigns, deals, open orders, pending payouts or wallet funds"
)
async def delete_user(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    user = deletion_guard.delete_user(db, user_id, actor_user_id=admin.id)
    logger.info("User deleted", user_id=user.id, admin_id=admin.id, request_id=request_id)
    return ResponseBase(message="User deleted", data={"user_id": user.id, "deleted_at": user.deleted_at.isoformat() if user.deleted_at else None})


@router.delete(
    "/wallets/{user_id}",
    response_model=ResponseBase,
    summary="Soft-delete an empty wallet"
)
async def delete_wallet(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    wallet = wallet_ledger.delete_wallet(db, user_id, actor_user_id=admin.id)
    return ResponseBase(message="Wallet deleted", data={"wallet_id": wallet.id, "owner_user_id": wallet.owner_user_id})


@router.delete(
    "/deals/{deal_id}",
    response_model=ResponseBase,
    summary="Soft-delete a deal with no orders"
)
async def delete_deal(
    deal_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    deal = deletion_guard.delete_deal(db, deal_id, actor_user_id=admin.id)
    return ResponseBase(message="Deal deleted", data={"deal_id": deal.id})


@router.post(
    "/orders/{order_id}/freeze",
    response_model=OrderRead,
    summary="Dispute an order (Frozen_Disputed)"
)
async def freeze_order(
    order_id: int,
    payload: FreezeRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OrderRead:
    order = order_state_machine.freeze_order(db, order_id, payload.reason, admin.id)
    return OrderRead.model_validate(order)


@router.post(
    "/orders/{order_id}/reactivate",
    response_model=OrderRead,
    summary="Lift a freeze from an order"
)
async def reactivate_order(
    order_id: int,
    payload: Optional[ReactivateRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OrderRead:
    order = order_state_machine.reactivate_order(db, order_id, admin.id, payload.reason if payload else None)
    return OrderRead.model_validate(order)


@router.get(
    "/audit-logs",
    response_model=List[AuditLogRead],
    summary="Audit history"
)
async def get_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    actor_user_id: Optional[int] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> List[AuditLogRead]:
    rows = list_audit_logs(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        skip=pagination["offset"],
        limit=pagination["limit"],
    )
    return [AuditLogRead.model_validate(r) for r in rows]
