from __future__ import annotations
"""SQLAlchemy models for brand campaigns and the mediator deals published under them."""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .orders import Order
from sqlalchemy.sql import func
from affiliate_core.database import Base
from .enums import CampaignStatus, DealType

class Campaign(Base):
    __tablename__ = "campaigns"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String, index=True)
    brand_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[CampaignStatus] = mapped_column(Enum(CampaignStatus), default=CampaignStatus.DRAFT, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    deals: Mapped[list["Deal"]] = relationship("Deal", back_populates="campaign")


class Deal(Base):
    __tablename__ = "deals"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    campaign_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=True, index=True)
    mediator_code: Mapped[str] = mapped_column(String, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String)
    deal_type: Mapped[DealType] = mapped_column(Enum(DealType), default=DealType.DISCOUNT)
    price_paise: Mapped[int] = mapped_column(Integer, default=0)
    # What the brand pays per settled order and what the buyer earns from it.
    payout_paise: Mapped[int] = mapped_column(Integer, default=0)
    commission_paise: Mapped[int] = mapped_column(Integer, default=0)
    # Maximum number of orders that may settle against this deal (None = unlimited).
    settlement_cap: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    campaign: Mapped["Campaign | None"] = relationship("Campaign", back_populates="deals")
    orders: Mapped[list["Order"]] = relationship("Order", back_populates="deal")

    __table_args__ = (
        CheckConstraint("price_paise >= 0 AND payout_paise >= 0 AND commission_paise >= 0", name="deal_amounts_non_negative"),
    )
