from __future__ import annotations
"""Cached AI proof extraction results, one row per (order, proof type)."""
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, Float, DateTime, Enum, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .orders import Order
from affiliate_core.database import Base
from .enums import ProofType

class ProofExtraction(Base):
    __tablename__ = "proof_extractions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    proof_type: Mapped[ProofType] = mapped_column(Enum(ProofType), nullable=False)
    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    extracted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="extractions")

    __table_args__ = (
        UniqueConstraint("order_id", "proof_type", name="uq_extraction_order_proof"),
    )
