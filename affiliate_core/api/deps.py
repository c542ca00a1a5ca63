"""
Dependencies for authentication, database sessions, and common validations.
"""
from typing import Generator, List
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from affiliate_core.config import PRIVILEGED_ROLES
from affiliate_core.database import SessionLocal
from affiliate_core.models.db import Order, User
from affiliate_core.models.db.enums import UserRole, UserStatus
from affiliate_core.services.lineage import get_agency_code_for_mediator_code
from affiliate_core.services.proof_extraction_cache import ProofExtractionCache
from affiliate_core.utils import get_logger

logger = get_logger(__name__)
security = HTTPBearer()


def _key_prefix(api_key: str) -> str:
    return api_key[:10] + "..." if len(api_key) > 10 else api_key


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Extract and validate user from API key.

    Suspended, pending and deleted accounts are rejected here, so a suspended
    user loses API access as soon as the status change commits.

    Raises:
        HTTPException: If API key is invalid or user is not active
    """
    api_key = credentials.credentials

    user = db.query(User).filter(
        User.api_key == api_key,
        User.deleted_at.is_(None),
        User.status == UserStatus.ACTIVE,
    ).first()

    if not user:
        logger.warning(
            "Authentication failed: invalid or inactive API key",
            api_key_prefix=_key_prefix(api_key)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug("User authenticated", user_id=user.id, roles=user.roles)
    return user


def require_role(allowed_roles: List[UserRole]):
    """
    Factory function to create a dependency that requires any of the given roles.
    """
    def role_dependency(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if not any(current_user.has_role(role) for role in allowed_roles):
            logger.warning(
                "Access denied: insufficient role",
                user_id=current_user.id,
                user_roles=current_user.roles,
                required_roles=[role.value for role in allowed_roles]
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_dependency


def require_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """Dependency that requires a staff (admin or ops) account."""
    if not any(current_user.has_role(role) for role in PRIVILEGED_ROLES):
        logger.warning(
            "Access denied: staff required",
            user_id=current_user.id,
            user_roles=current_user.roles
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


def is_staff(user: User) -> bool:
    return any(user.has_role(role) for role in PRIVILEGED_ROLES)


def get_pagination_params(
    limit: int = 50,
    offset: int = 0
) -> dict:
    """
    Validate and return pagination parameters.

    Raises:
        HTTPException: If parameters are invalid
    """
    if limit < 1 or limit > 500:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Limit must be between 1 and 500"
        )

    if offset < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Offset must be >= 0"
        )

    return {"limit": limit, "offset": offset}


def get_extraction_cache(request: Request) -> ProofExtractionCache:
    """The process-wide extraction cache created at startup."""
    cache = getattr(request.app.state, "extraction_cache", None)
    if cache is None:
        logger.error("Extraction cache not initialised")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Proof extraction is not available"
        )
    return cache


def ensure_order_access(db: Session, order: Order, user: User) -> None:
    """Buyer, brand, the order's mediator (or its agency) and staff may see an order."""
    if is_staff(user) or order.user_id == user.id or order.brand_user_id == user.id:
        return
    if order.mediator_code and user.mediator_code:
        if order.mediator_code == user.mediator_code:
            return
        if user.has_role(UserRole.AGENCY) and get_agency_code_for_mediator_code(db, order.mediator_code) == user.mediator_code:
            return
    logger.warning("Order access denied", order_id=order.id, user_id=user.id)
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Access denied for this order"
    )
