from __future__ import annotations
"""SQLAlchemy models for buyer orders and their append-only event log.

Freeze is an overlay (``frozen`` + reason/timestamp) on top of the affiliate
status; ``pre_freeze_affiliate_status`` records what a dispute freeze
replaced so reactivation can restore it.
"""
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, String, DateTime, Boolean, Enum, JSON, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Deal
    from .proof_extractions import ProofExtraction
from sqlalchemy.sql import func
from affiliate_core.database import Base
from .enums import OrderStatus, PaymentStatus, AffiliateStatus

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    brand_user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    deal_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("deals.id"), nullable=True, index=True)
    # Mediator code the order was routed through.
    mediator_code: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    buyer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    external_order_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # [{product_id, title, quantity, price_paise, commission_paise}]
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    total_paise: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.ORDERED, index=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING, index=True)
    affiliate_status: Mapped[AffiliateStatus] = mapped_column(Enum(AffiliateStatus), default=AffiliateStatus.UNCHECKED, index=True)
    pre_freeze_affiliate_status: Mapped[AffiliateStatus | None] = mapped_column(Enum(AffiliateStatus), nullable=True)

    frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    frozen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    frozen_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    reactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reactivated_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    # proof type -> image reference; proof type -> {verified_at, verified_by}
    screenshots: Mapped[dict[str, str]] = mapped_column(JSON, default=dict, nullable=False)
    verification: Mapped[dict[str, dict[str, Any]]] = mapped_column(JSON, default=dict, nullable=False)

    expected_settlement_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    deal: Mapped["Deal | None"] = relationship("Deal", back_populates="orders")
    events: Mapped[list["OrderEvent"]] = relationship(
        "OrderEvent", back_populates="order", order_by="OrderEvent.id", cascade="all, delete-orphan"
    )
    extractions: Mapped[list["ProofExtraction"]] = relationship(
        "ProofExtraction", back_populates="order", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total_paise >= 0", name="order_total_non_negative"),
    )


class OrderEvent(Base):
    __tablename__ = "order_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    order: Mapped["Order"] = relationship("Order", back_populates="events")
