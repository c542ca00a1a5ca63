"""Agency → mediator hierarchy lookups."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from affiliate_core.models.db.users import User
from affiliate_core.models.db.enums import UserRole, UserStatus


def _live_users(session: Session):
    return session.query(User).filter(User.deleted_at.is_(None))


def list_mediator_codes_for_agency(session: Session, agency_code: str) -> List[str]:
    """All mediator codes whose parent is ``agency_code`` (suspended ones included)."""
    if not agency_code:
        return []
    rows = _live_users(session).filter(User.parent_code == agency_code, User.mediator_code.isnot(None)).all()
    # roles is a JSON list, so role membership is checked in Python.
    return sorted({u.mediator_code for u in rows if u.has_role(UserRole.MEDIATOR) and u.mediator_code})


def get_agency_code_for_mediator_code(session: Session, mediator_code: str) -> Optional[str]:
    if not mediator_code:
        return None
    user = _live_users(session).filter(User.mediator_code == mediator_code).first()
    if user is None or not user.has_role(UserRole.MEDIATOR):
        return None
    return user.parent_code or None


def _find_by_code(session: Session, code: str, role: UserRole) -> Optional[User]:
    user = _live_users(session).filter(User.mediator_code == code).first()
    if user is None or not user.has_role(role):
        return None
    return user


def is_mediator_active(session: Session, mediator_code: str) -> bool:
    user = _find_by_code(session, mediator_code, UserRole.MEDIATOR)
    return bool(user and user.status == UserStatus.ACTIVE)


def is_agency_active(session: Session, agency_code: str) -> bool:
    user = _find_by_code(session, agency_code, UserRole.AGENCY)
    return bool(user and user.status == UserStatus.ACTIVE)


__all__ = [
    "list_mediator_codes_for_agency",
    "get_agency_code_for_mediator_code",
    "is_mediator_active",
    "is_agency_active",
]
