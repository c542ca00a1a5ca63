"""
Order endpoints: creation by buyers, read access for the parties to an order,
and the staff-driven affiliate lifecycle (verification, cooling, settlement).
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, status, Request
from sqlalchemy.orm import Session
import time
from affiliate_core.api.deps import get_db, get_current_user, require_admin, ensure_order_access
from affiliate_core.models.db import OrderEvent, User
from affiliate_core.models.schemas.orders import (
    OrderCreate,
    OrderRead,
    OrderEventRead,
    AffiliateStatusUpdate,
    PaymentStatusUpdate,
    SettleRequest,
    ProofVerify,
)
from affiliate_core.services import order_state_machine
from affiliate_core.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/",
    response_model=OrderRead,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="The authenticated user is the buyer. Orders start Unchecked with payment Pending."
)
async def create_order(
    order_data: OrderCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> OrderRead:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Order creation started",
        user_id=current_user.id,
        deal_id=order_data.deal_id,
        item_count=len(order_data.items),
        request_id=request_id
    )

    items = [item.model_dump(exclude_none=True) for item in order_data.items]
    order = order_state_machine.create_order(
        db,
        user_id=current_user.id,
        items=items,
        deal_id=order_data.deal_id,
        buyer_name=order_data.buyer_name,
        external_order_id=order_data.external_order_id,
        screenshots=order_data.screenshots,
        actor_user_id=current_user.id,
    )

    duration_ms = (time.time() - start_time) * 1000
    log_performance(
        operation="create_order",
        duration_ms=duration_ms,
        additional_data={"order_id": order.id}
    )
    return OrderRead.model_validate(order)


@router.get(
    "/{order_id}",
    response_model=OrderRead,
    summary="Get an order"
)
async def read_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> OrderRead:
    order = order_state_machine.get_order(db, order_id)
    ensure_order_access(db, order, current_user)
    return OrderRead.model_validate(order)


@router.get(
    "/{order_id}/events",
    response_model=List[OrderEventRead],
    summary="Order event timeline"
)
async def read_order_events(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[OrderEventRead]:
    order = order_state_machine.get_order(db, order_id)
    ensure_order_access(db, order, current_user)
    events = db.query(OrderEvent).filter(OrderEvent.order_id == order.id).order_by(OrderEvent.id.asc()).all()
    return [OrderEventRead.model_validate(e) for e in events]


@router.post(
    "/{order_id}/affiliate-status",
    response_model=OrderRead,
    summary="Move an order along the affiliate lifecycle (staff only)"
)
async def update_affiliate_status(
    order_id: int,
    payload: AffiliateStatusUpdate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OrderRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info(
        "Affiliate status change requested",
        order_id=order_id,
        status=payload.status.value,
        admin_id=admin.id,
        request_id=request_id
    )
    order = order_state_machine.transition_affiliate_status(db, order_id, payload.status, admin.id, payload.reason)
    return OrderRead.model_validate(order)


@router.post(
    "/{order_id}/settle",
    response_model=OrderRead,
    summary="Settle an order after its cooling period (staff only)"
)
async def settle_order(
    order_id: int,
    payload: Optional[SettleRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OrderRead:
    start_time = time.time()
    order = order_state_machine.settle_order(db, order_id, admin.id, allow_early=bool(payload and payload.allow_early))
    log_performance(
        operation="settle_order",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"order_id": order.id, "affiliate_status": order.affiliate_status.value}
    )
    return OrderRead.model_validate(order)


@router.patch(
    "/{order_id}/payment-status",
    response_model=OrderRead,
    summary="Record a payment status change (staff only)"
)
async def update_payment_status(
    order_id: int,
    payload: PaymentStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OrderRead:
    order = order_state_machine.update_payment_status(db, order_id, payload.status, admin.id)
    return OrderRead.model_validate(order)


@router.post(
    "/{order_id}/verify",
    response_model=OrderRead,
    summary="Verify one uploaded proof (staff only)"
)
async def verify_proof(
    order_id: int,
    payload: ProofVerify,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OrderRead:
    order = order_state_machine.verify_proof(db, order_id, payload.proof_type, admin.id)
    return OrderRead.model_validate(order)
