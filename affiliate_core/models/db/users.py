from __future__ import annotations
"""SQLAlchemy model for platform accounts (shoppers, mediators, agencies, brands, staff)."""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Enum, JSON, ForeignKey
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .suspensions import Suspension
from sqlalchemy.sql import func
from affiliate_core.database import Base
from .enums import UserRole, UserStatus

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    api_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    # A user may hold several roles; stored as a list of UserRole values.
    roles: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus), default=UserStatus.ACTIVE, index=True)

    # Own code for mediators/agencies; parent_code links a mediator to its agency.
    mediator_code: Mapped[str | None] = mapped_column(String, unique=True, nullable=True, index=True)
    parent_code: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    suspensions: Mapped[list["Suspension"]] = relationship(
        "Suspension",
        back_populates="target",
        foreign_keys="Suspension.target_user_id",
        order_by="Suspension.id",
    )

    def has_role(self, role: UserRole | str) -> bool:
        value = role.value if isinstance(role, UserRole) else str(role)
        return value in (self.roles or [])

    @property
    def role_set(self) -> set[UserRole]:
        known = {r.value for r in UserRole}
        return {UserRole(r) for r in (self.roles or []) if r in known}

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE and self.deleted_at is None
