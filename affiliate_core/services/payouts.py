"""Payout lifecycle on top of the wallet ledger.

requested  -> processing -> paid
requested | processing   -> failed | canceled

Requesting locks the amount (available -> locked). Paying drains the locked
bucket. Failing or cancelling releases it back to available. Terminal payouts
cannot change again (``PAYOUT_ALREADY_PROCESSED``).
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from affiliate_core.errors import ConflictError, NotFound, PreconditionFailed
from affiliate_core.models.db.enums import PayoutStatus, UserStatus, WalletBucket
from affiliate_core.models.db.users import User
from affiliate_core.models.db.wallets import Payout
from affiliate_core.services import wallet_ledger
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.utils import get_logger, utc_now

logger = get_logger(__name__)

_ALLOWED = {
    PayoutStatus.REQUESTED: {PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED, PayoutStatus.CANCELED},
    PayoutStatus.PROCESSING: {PayoutStatus.PAID, PayoutStatus.FAILED, PayoutStatus.CANCELED},
}


def _notify(payout: Payout) -> None:
    publish_realtime(
        "wallets.changed",
        payload={"payout_id": payout.id, "status": payout.status.value},
        user_ids=[payout.beneficiary_user_id],
        roles=["admin", "ops"],
    )


def request_payout(
    session: Session,
    beneficiary_user_id: int,
    amount_paise: int,
    *,
    actor_user_id: Optional[int],
    idempotency_key: Optional[str] = None,
) -> Payout:
    user = session.get(User, beneficiary_user_id)
    if user is None or user.deleted_at is not None:
        raise NotFound("USER_NOT_FOUND", "User not found", {"user_id": beneficiary_user_id})
    if user.status != UserStatus.ACTIVE:
        raise PreconditionFailed("USER_NOT_ACTIVE", "Payouts are blocked for inactive accounts", {"user_id": user.id})
    wallet = wallet_ledger.get_wallet(session, beneficiary_user_id)
    if wallet is None:
        raise NotFound("WALLET_NOT_FOUND", "Wallet not found", {"owner_user_id": beneficiary_user_id})

    try:
        payout = Payout(
            beneficiary_user_id=beneficiary_user_id,
            wallet_id=wallet.id,
            amount_paise=amount_paise,
            status=PayoutStatus.REQUESTED,
        )
        # Validate and lock before the payout row is flushed so a bad amount never persists.
        wallet_ledger.move(
            session,
            beneficiary_user_id,
            WalletBucket.AVAILABLE,
            WalletBucket.LOCKED,
            amount_paise,
            txn_type="payout_request",
            idempotency_key=idempotency_key,
            actor_user_id=actor_user_id,
        )
        session.add(payout)
        session.flush()
        write_audit_log(
            session,
            action="PAYOUT_REQUESTED",
            entity_type="Payout",
            entity_id=payout.id,
            actor_user_id=actor_user_id,
            details={"beneficiary_user_id": beneficiary_user_id, "amount_paise": amount_paise},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(payout)
    logger.info("Payout requested", payout_id=payout.id, user_id=beneficiary_user_id, amount_paise=amount_paise)
    _notify(payout)
    return payout


def update_payout_status(
    session: Session,
    payout_id: int,
    new_status: PayoutStatus,
    *,
    actor_user_id: Optional[int],
    failure_code: Optional[str] = None,
    provider_ref: Optional[str] = None,
) -> Payout:
    payout = session.get(Payout, payout_id)
    if payout is None:
        raise NotFound("PAYOUT_NOT_FOUND", "Payout not found", {"payout_id": payout_id})
    new_status = PayoutStatus(new_status)
    previous = payout.status
    if previous == new_status:
        return payout
    if previous not in _ALLOWED:
        raise ConflictError(
            "PAYOUT_ALREADY_PROCESSED",
            f"Payout is already {previous.value}",
            {"payout_id": payout.id, "status": previous.value},
        )
    if new_status not in _ALLOWED[previous]:
        raise PreconditionFailed(
            "INVALID_TRANSITION",
            f"Cannot move payout from {previous.value} to {new_status.value}",
            {"payout_id": payout.id},
        )

    try:
        key = f"payout:{payout.id}:{new_status.value}"
        if new_status == PayoutStatus.PAID:
            wallet_ledger.debit(
                session,
                payout.beneficiary_user_id,
                WalletBucket.LOCKED,
                payout.amount_paise,
                txn_type="payout_paid",
                idempotency_key=key,
                payout_id=payout.id,
                actor_user_id=actor_user_id,
            )
        elif new_status in (PayoutStatus.FAILED, PayoutStatus.CANCELED):
            wallet_ledger.move(
                session,
                payout.beneficiary_user_id,
                WalletBucket.LOCKED,
                WalletBucket.AVAILABLE,
                payout.amount_paise,
                txn_type="payout_release",
                idempotency_key=key,
                payout_id=payout.id,
                actor_user_id=actor_user_id,
            )
        payout.status = new_status
        payout.failure_code = failure_code
        if provider_ref:
            payout.provider_ref = provider_ref
        if new_status != PayoutStatus.PROCESSING:
            payout.processed_at = utc_now()
        write_audit_log(
            session,
            action="PAYOUT_STATUS_UPDATED",
            entity_type="Payout",
            entity_id=payout.id,
            actor_user_id=actor_user_id,
            details={"from": previous.value, "to": new_status.value, "failure_code": failure_code},
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(payout)
    logger.info("Payout status updated", payout_id=payout.id, previous=previous.value, status=new_status.value)
    _notify(payout)
    return payout


__all__ = ["request_payout", "update_payout_status"]
