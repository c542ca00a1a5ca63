from __future__ import annotations
"""SQLAlchemy models for the three-bucket wallet ledger and payouts.

``version`` is the optimistic concurrency token: SQLAlchemy adds it to the
WHERE clause of every UPDATE and bumps it, so a writer holding stale state
fails instead of overwriting.
"""
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, String, DateTime, Enum, JSON, ForeignKey, CheckConstraint, Index, text
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
from sqlalchemy.sql import func
from affiliate_core.database import Base
from .enums import WalletBucket, LedgerDirection, PayoutStatus

class Wallet(Base):
    __tablename__ = "wallets"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    owner_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    available_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    owner: Mapped["User"] = relationship("User", foreign_keys="Wallet.owner_user_id")
    transactions: Mapped[list["WalletTransaction"]] = relationship(
        "WalletTransaction", back_populates="wallet", order_by="WalletTransaction.id"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("available_paise >= 0", name="wallet_available_non_negative"),
        CheckConstraint("pending_paise >= 0", name="wallet_pending_non_negative"),
        CheckConstraint("locked_paise >= 0", name="wallet_locked_non_negative"),
        # One live wallet per owner; tombstoned wallets are kept for the audit chain.
        Index(
            "uq_wallet_live_owner",
            "owner_user_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    def balance(self, bucket: WalletBucket) -> int:
        return int(getattr(self, f"{bucket.value}_paise") or 0)

    @property
    def is_empty(self) -> bool:
        return not (self.available_paise or self.pending_paise or self.locked_paise)


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    idempotency_key: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    bucket: Mapped[WalletBucket] = mapped_column(Enum(WalletBucket), nullable=False)
    direction: Mapped[LedgerDirection] = mapped_column(Enum(LedgerDirection), nullable=False)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    order_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    payout_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("payouts.id"), nullable=True, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount_paise > 0", name="txn_amount_positive"),
    )


class Payout(Base):
    __tablename__ = "payouts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    beneficiary_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PayoutStatus] = mapped_column(Enum(PayoutStatus), default=PayoutStatus.REQUESTED, index=True)
    provider_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    failure_code: Mapped[str | None] = mapped_column(String, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_paise > 0", name="payout_amount_positive"),
    )
