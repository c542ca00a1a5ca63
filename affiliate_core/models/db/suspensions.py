from __future__ import annotations
"""Immutable records of suspend / unsuspend actions."""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
from sqlalchemy.sql import func
from affiliate_core.database import Base
from .enums import SuspensionAction

class Suspension(Base):
    __tablename__ = "suspensions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    target_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    action: Mapped[SuspensionAction] = mapped_column(Enum(SuspensionAction), nullable=False)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)
    admin_user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    target: Mapped["User"] = relationship("User", back_populates="suspensions", foreign_keys="Suspension.target_user_id")
