"""Three-bucket wallet ledger (available / pending / locked).

Balance movements (``credit``, ``debit``, ``move``) flush but never commit: the
caller owns the transaction, which lets settlement apply a status change and
several movements atomically. Each movement writes one ``WalletTransaction``
line and one audit row in the same session.

Rules:
1. Amounts are positive integers in paise (``INVALID_AMOUNT`` otherwise).
2. No bucket may go negative (``INSUFFICIENT_FUNDS``); the table carries CHECK
   constraints as a backstop.
3. Every mutation bumps ``Wallet.version``. A caller-supplied
   ``expected_version`` that no longer matches, or a concurrent writer detected
   at flush time, raises ``CONCURRENT_MODIFICATION``; callers re-read and retry.
4. An ``idempotency_key`` that was already applied returns the original ledger
   line without moving money again.
5. ``available`` may not exceed ``WALLET_SETTINGS['max_balance_paise']``.

Wallet deletion is a soft delete that requires all buckets at zero and no
payout in ``requested``/``processing``.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from affiliate_core.config import WALLET_SETTINGS
from affiliate_core.errors import ConflictError, NotFound, ResourceGuardError, ValidationFailed
from affiliate_core.models.db.enums import LedgerDirection, PayoutStatus, WalletBucket
from affiliate_core.models.db.wallets import Payout, Wallet, WalletTransaction
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.utils import get_logger, utc_now

logger = get_logger(__name__)

OPEN_PAYOUT_STATUSES = (PayoutStatus.REQUESTED, PayoutStatus.PROCESSING)


@dataclass
class DeletionCheck:
    allowed: bool
    code: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "code": self.code, "message": self.message}


def _validate_amount(amount_paise: Any) -> int:
    # bool is an int subclass; reject it explicitly.
    if isinstance(amount_paise, bool) or not isinstance(amount_paise, int) or amount_paise <= 0:
        raise ValidationFailed(
            "INVALID_AMOUNT",
            "Amount must be a positive integer number of paise",
            {"amount_paise": amount_paise},
        )
    return amount_paise


def _flush(session: Session, wallet: Wallet) -> None:
    wallet_id = wallet.id
    try:
        session.flush()
    except StaleDataError as e:
        session.rollback()
        logger.warning("Wallet write lost a version race", wallet_id=wallet_id, error=str(e))
        raise ConflictError(
            "CONCURRENT_MODIFICATION",
            "Wallet was modified concurrently; reload and retry",
            {"wallet_id": wallet_id},
        ) from e
    except IntegrityError as e:
        session.rollback()
        logger.warning("Wallet write rejected by constraint", wallet_id=wallet_id, error=str(e))
        raise ConflictError(
            "CONCURRENT_MODIFICATION",
            "Wallet write conflicted with another transaction; reload and retry",
            {"wallet_id": wallet_id},
        ) from e


def get_wallet(session: Session, owner_user_id: int) -> Optional[Wallet]:
    return (
        session.query(Wallet)
        .filter(Wallet.owner_user_id == owner_user_id, Wallet.deleted_at.is_(None))
        .one_or_none()
    )


def ensure_wallet(session: Session, owner_user_id: int) -> Wallet:
    """Return the owner's live wallet, creating it on first earning event."""
    wallet = get_wallet(session, owner_user_id)
    if wallet is not None:
        return wallet
    wallet = Wallet(
        owner_user_id=owner_user_id,
        currency=str(WALLET_SETTINGS["currency"]),
        available_paise=0,
        pending_paise=0,
        locked_paise=0,
    )
    session.add(wallet)
    try:
        session.flush()
    except IntegrityError as e:
        # Another request created the live wallet between our read and insert.
        session.rollback()
        raise ConflictError(
            "CONCURRENT_MODIFICATION",
            "Wallet was created concurrently; reload and retry",
            {"owner_user_id": owner_user_id},
        ) from e
    logger.info("Wallet created", owner_user_id=owner_user_id, wallet_id=wallet.id)
    return wallet


def _replayed(
    session: Session,
    idempotency_key: str,
    *,
    wallet: Wallet,
    direction: LedgerDirection,
    amount_paise: int,
) -> Optional[WalletTransaction]:
    existing = session.query(WalletTransaction).filter(WalletTransaction.idempotency_key == idempotency_key).one_or_none()
    if existing is None:
        return None
    if existing.wallet_id != wallet.id or existing.direction != direction or existing.amount_paise != amount_paise:
        raise ConflictError(
            "IDEMPOTENCY_KEY_REUSED",
            "Idempotency key was already used for a different ledger movement",
            {"idempotency_key": idempotency_key},
        )
    logger.info("Ledger movement replayed", idempotency_key=idempotency_key, wallet_id=wallet.id)
    return existing


def _apply(
    session: Session,
    wallet: Wallet,
    *,
    direction: LedgerDirection,
    bucket: WalletBucket,
    amount_paise: int,
    txn_type: str,
    idempotency_key: str,
    order_id: Optional[int],
    payout_id: Optional[int],
    actor_user_id: Optional[int],
    details: Optional[Dict[str, Any]],
) -> WalletTransaction:
    current = wallet.balance(bucket)
    if direction == LedgerDirection.DEBIT:
        if current < amount_paise:
            raise ResourceGuardError(
                "INSUFFICIENT_FUNDS",
                f"Insufficient {bucket.value} balance",
                {"wallet_id": wallet.id, "bucket": bucket.value, "balance_paise": current, "amount_paise": amount_paise},
            )
        new_balance = current - amount_paise
    else:
        new_balance = current + amount_paise
        limit = int(WALLET_SETTINGS["max_balance_paise"])
        if bucket == WalletBucket.AVAILABLE and new_balance > limit:
            raise ResourceGuardError(
                "BALANCE_LIMIT_EXCEEDED",
                "Wallet balance limit exceeded",
                {"wallet_id": wallet.id, "limit_paise": limit, "would_be_paise": new_balance},
            )

    setattr(wallet, f"{bucket.value}_paise", new_balance)
    wallet.updated_at = utc_now()
    txn = WalletTransaction(
        idempotency_key=idempotency_key,
        wallet_id=wallet.id,
        type=txn_type,
        bucket=bucket,
        direction=direction,
        amount_paise=amount_paise,
        balance_after_paise=new_balance,
        order_id=order_id,
        payout_id=payout_id,
        details=dict(details or {}),
    )
    session.add(txn)
    write_audit_log(
        session,
        action="WALLET_CREDIT" if direction == LedgerDirection.CREDIT else "WALLET_DEBIT",
        entity_type="Wallet",
        entity_id=wallet.id,
        actor_user_id=actor_user_id,
        details={
            "owner_user_id": wallet.owner_user_id,
            "bucket": bucket.value,
            "amount_paise": amount_paise,
            "type": txn_type,
            "idempotency_key": idempotency_key,
            "order_id": order_id,
            "payout_id": payout_id,
        },
    )
    _flush(session, wallet)
    return txn


def _movement(
    session: Session,
    direction: LedgerDirection,
    owner_user_id: int,
    bucket: WalletBucket,
    amount_paise: int,
    *,
    txn_type: str,
    idempotency_key: Optional[str],
    expected_version: Optional[int],
    order_id: Optional[int],
    payout_id: Optional[int],
    actor_user_id: Optional[int],
    details: Optional[Dict[str, Any]],
) -> WalletTransaction:
    amount_paise = _validate_amount(amount_paise)
    bucket = WalletBucket(bucket)
    if direction == LedgerDirection.CREDIT:
        wallet = ensure_wallet(session, owner_user_id)
    else:
        wallet = get_wallet(session, owner_user_id)
        if wallet is None:
            raise NotFound("WALLET_NOT_FOUND", "Wallet not found", {"owner_user_id": owner_user_id})

    if idempotency_key:
        replay = _replayed(session, idempotency_key, wallet=wallet, direction=direction, amount_paise=amount_paise)
        if replay is not None:
            return replay
    if expected_version is not None and wallet.version != expected_version:
        raise ConflictError(
            "CONCURRENT_MODIFICATION",
            "Wallet version changed; reload and retry",
            {"wallet_id": wallet.id, "expected_version": expected_version, "current_version": wallet.version},
        )

    txn = _apply(
        session,
        wallet,
        direction=direction,
        bucket=bucket,
        amount_paise=amount_paise,
        txn_type=txn_type,
        idempotency_key=idempotency_key or f"{txn_type}:{uuid.uuid4().hex}",
        order_id=order_id,
        payout_id=payout_id,
        actor_user_id=actor_user_id,
        details=details,
    )
    logger.info(
        "Ledger movement applied",
        direction=direction.value,
        wallet_id=wallet.id,
        owner_user_id=owner_user_id,
        bucket=bucket.value,
        amount_paise=amount_paise,
        version=wallet.version,
        type=txn_type,
    )
    return txn


def credit(
    session: Session,
    owner_user_id: int,
    bucket: WalletBucket,
    amount_paise: int,
    *,
    txn_type: str = "adjustment",
    idempotency_key: Optional[str] = None,
    expected_version: Optional[int] = None,
    order_id: Optional[int] = None,
    payout_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> WalletTransaction:
    """Add ``amount_paise`` to one bucket, creating the wallet if needed."""
    return _movement(
        session,
        LedgerDirection.CREDIT,
        owner_user_id,
        bucket,
        amount_paise,
        txn_type=txn_type,
        idempotency_key=idempotency_key,
        expected_version=expected_version,
        order_id=order_id,
        payout_id=payout_id,
        actor_user_id=actor_user_id,
        details=details,
    )


def debit(
    session: Session,
    owner_user_id: int,
    bucket: WalletBucket,
    amount_paise: int,
    *,
    txn_type: str = "adjustment",
    idempotency_key: Optional[str] = None,
    expected_version: Optional[int] = None,
    order_id: Optional[int] = None,
    payout_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> WalletTransaction:
    """Remove ``amount_paise`` from one bucket of an existing wallet."""
    return _movement(
        session,
        LedgerDirection.DEBIT,
        owner_user_id,
        bucket,
        amount_paise,
        txn_type=txn_type,
        idempotency_key=idempotency_key,
        expected_version=expected_version,
        order_id=order_id,
        payout_id=payout_id,
        actor_user_id=actor_user_id,
        details=details,
    )


def move(
    session: Session,
    owner_user_id: int,
    from_bucket: WalletBucket,
    to_bucket: WalletBucket,
    amount_paise: int,
    *,
    txn_type: str,
    idempotency_key: Optional[str] = None,
    payout_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
) -> tuple[WalletTransaction, WalletTransaction]:
    """Shift funds between two buckets of the same wallet."""
    key = idempotency_key or f"{txn_type}:{uuid.uuid4().hex}"
    out_line = debit(
        session,
        owner_user_id,
        from_bucket,
        amount_paise,
        txn_type=txn_type,
        idempotency_key=f"{key}:out",
        payout_id=payout_id,
        actor_user_id=actor_user_id,
    )
    in_line = credit(
        session,
        owner_user_id,
        to_bucket,
        amount_paise,
        txn_type=txn_type,
        idempotency_key=f"{key}:in",
        payout_id=payout_id,
        actor_user_id=actor_user_id,
    )
    return out_line, in_line


def has_open_payouts(session: Session, owner_user_id: int) -> bool:
    return (
        session.query(Payout.id)
        .filter(Payout.beneficiary_user_id == owner_user_id, Payout.status.in_(OPEN_PAYOUT_STATUSES))
        .first()
        is not None
    )


def can_delete_wallet(session: Session, owner_user_id: int) -> DeletionCheck:
    wallet = get_wallet(session, owner_user_id)
    if wallet is None:
        return DeletionCheck(False, "WALLET_NOT_FOUND", "Wallet not found")
    if not wallet.is_empty:
        return DeletionCheck(
            False,
            "WALLET_NOT_EMPTY",
            "Wallet still holds funds; settle or withdraw before deleting",
        )
    if has_open_payouts(session, owner_user_id):
        return DeletionCheck(False, "PAYOUT_PENDING", "Wallet owner has a payout in progress")
    return DeletionCheck(True)


def delete_wallet(session: Session, owner_user_id: int, *, actor_user_id: Optional[int]) -> Wallet:
    """Soft-delete (tombstone) an empty wallet and commit."""
    wallet = get_wallet(session, owner_user_id)
    if wallet is None:
        tombstone = (
            session.query(Wallet)
            .filter(Wallet.owner_user_id == owner_user_id)
            .order_by(Wallet.id.desc())
            .first()
        )
        if tombstone is not None:
            raise ConflictError("WALLET_ALREADY_DELETED", "Wallet is already deleted", {"wallet_id": tombstone.id})
        raise NotFound("WALLET_NOT_FOUND", "Wallet not found", {"owner_user_id": owner_user_id})

    check = can_delete_wallet(session, owner_user_id)
    if not check.allowed:
        logger.warning("Wallet deletion blocked", owner_user_id=owner_user_id, code=check.code)
        raise ResourceGuardError(
            check.code or "WALLET_NOT_EMPTY",
            check.message or "Wallet cannot be deleted",
            {
                "wallet_id": wallet.id,
                "available_paise": wallet.available_paise,
                "pending_paise": wallet.pending_paise,
                "locked_paise": wallet.locked_paise,
            },
        )

    wallet.deleted_at = utc_now()
    wallet.deleted_by = actor_user_id
    write_audit_log(
        session,
        action="WALLET_DELETED",
        entity_type="Wallet",
        entity_id=wallet.id,
        actor_user_id=actor_user_id,
        details={"owner_user_id": owner_user_id},
    )
    _flush(session, wallet)
    session.commit()
    session.refresh(wallet)

    publish_realtime(
        "wallets.changed",
        payload={"owner_user_id": owner_user_id, "wallet_id": wallet.id},
        user_ids=[owner_user_id],
        roles=["admin", "ops"],
    )
    return wallet


__all__ = [
    "DeletionCheck",
    "OPEN_PAYOUT_STATUSES",
    "get_wallet",
    "ensure_wallet",
    "credit",
    "debit",
    "move",
    "has_open_payouts",
    "can_delete_wallet",
    "delete_wallet",
]
