"""
Wallet endpoints: balances, manual ledger adjustments and the payout lifecycle.

Ledger movements only flush; these handlers own the commit so a credit and its
audit row land together.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import time
from affiliate_core.api.deps import get_db, get_current_user, require_admin, is_staff, get_pagination_params
from affiliate_core.errors import NotFound
from affiliate_core.models.db import User, WalletTransaction
from affiliate_core.models.schemas.wallets import (
    WalletRead,
    LedgerMovement,
    WalletTransactionRead,
    PayoutCreate,
    PayoutStatusUpdate,
    PayoutRead,
)
from affiliate_core.services import payouts, wallet_ledger
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


def _ensure_self_or_staff(user_id: int, current_user: User) -> None:
    if current_user.id != user_id and not is_staff(current_user):
        logger.warning("Wallet access denied", user_id=user_id, requested_by=current_user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied for this wallet"
        )


def _load_wallet(db: Session, user_id: int):
    wallet = wallet_ledger.get_wallet(db, user_id)
    if wallet is None:
        raise NotFound("WALLET_NOT_FOUND", "Wallet not found", {"owner_user_id": user_id})
    return wallet


@router.post(
    "/payouts",
    response_model=PayoutRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request a payout",
    description="Moves the amount from available to locked until the payout completes"
)
async def request_payout(
    payload: PayoutCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> PayoutRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    _ensure_self_or_staff(payload.beneficiary_user_id, current_user)
    logger.info(
        "Payout requested",
        beneficiary_user_id=payload.beneficiary_user_id,
        amount_paise=payload.amount_paise,
        requested_by=current_user.id,
        request_id=request_id
    )
    payout = payouts.request_payout(
        db,
        payload.beneficiary_user_id,
        payload.amount_paise,
        actor_user_id=current_user.id,
        idempotency_key=payload.idempotency_key,
    )
    return PayoutRead.model_validate(payout)


@router.post(
    "/payouts/{payout_id}/status",
    response_model=PayoutRead,
    summary="Advance a payout (staff only)"
)
async def update_payout_status(
    payout_id: int,
    payload: PayoutStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> PayoutRead:
    payout = payouts.update_payout_status(
        db,
        payout_id,
        payload.status,
        actor_user_id=admin.id,
        failure_code=payload.failure_code,
        provider_ref=payload.provider_ref,
    )
    return PayoutRead.model_validate(payout)


@router.get(
    "/{user_id}",
    response_model=WalletRead,
    summary="Wallet balances"
)
async def read_wallet(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> WalletRead:
    _ensure_self_or_staff(user_id, current_user)
    return WalletRead.model_validate(_load_wallet(db, user_id))


@router.get(
    "/{user_id}/transactions",
    response_model=List[WalletTransactionRead],
    summary="Ledger lines, newest first"
)
async def read_wallet_transactions(
    user_id: int,
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[WalletTransactionRead]:
    _ensure_self_or_staff(user_id, current_user)
    wallet = _load_wallet(db, user_id)
    rows = (
        db.query(WalletTransaction)
        .filter(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.id.desc())
        .offset(pagination["offset"])
        .limit(pagination["limit"])
        .all()
    )
    return [WalletTransactionRead.model_validate(r) for r in rows]


async def _adjust(direction: str, user_id: int, payload: LedgerMovement, admin: User, db: Session) -> WalletRead:
    start_time = time.time()
    movement = wallet_ledger.credit if direction == "credit" else wallet_ledger.debit
    try:
        txn = movement(
            db,
            user_id,
            payload.bucket,
            payload.amount_paise,
            txn_type=f"manual_{direction}",
            idempotency_key=payload.idempotency_key,
            expected_version=payload.expected_version,
            actor_user_id=admin.id,
            details={"note": payload.note} if payload.note else None,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    wallet = _load_wallet(db, user_id)
    publish_realtime(
        "wallets.changed",
        # A replayed idempotency key reports the original line id.
        payload={"owner_user_id": user_id, "direction": direction, "amount_paise": payload.amount_paise, "txn_id": txn.id},
        user_ids=[user_id],
        roles=["admin", "ops"],
    )
    log_performance(
        operation=f"wallet_{direction}",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"owner_user_id": user_id, "bucket": payload.bucket.value}
    )
    return WalletRead.model_validate(wallet)


@router.post(
    "/{user_id}/credit",
    response_model=WalletRead,
    summary="Manual credit (staff only)"
)
async def credit_wallet(
    user_id: int,
    payload: LedgerMovement,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> WalletRead:
    if db.get(User, user_id) is None:
        raise NotFound("USER_NOT_FOUND", "User not found", {"user_id": user_id})
    return await _adjust("credit", user_id, payload, admin, db)


@router.post(
    "/{user_id}/debit",
    response_model=WalletRead,
    summary="Manual debit (staff only)"
)
async def debit_wallet(
    user_id: int,
    payload: LedgerMovement,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> WalletRead:
    return await _adjust("debit", user_id, payload, admin, db)
