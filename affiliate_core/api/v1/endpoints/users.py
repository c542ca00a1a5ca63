"""
User account endpoints (shoppers, mediators, agencies, brands and staff).
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import time
from sqlalchemy.exc import IntegrityError
from affiliate_core.api.deps import get_db, get_current_user, require_admin
from affiliate_core.models.db import User
from affiliate_core.models.db.enums import UserStatus
from affiliate_core.models.schemas.users import UserCreate, UserCreated, UserRead
from affiliate_core.services.audit import write_audit_log
from affiliate_core.services.realtime import publish_realtime
from affiliate_core.utils import get_logger, log_performance
import secrets
import string

router = APIRouter()
logger = get_logger(__name__)


def generate_api_key() -> str:
    """Generate a secure API key."""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(32))


@router.post(
    "/",
    response_model=UserCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create new user",
    description="Register a new account with one or more roles (staff only)"
)
async def create_user(
    user_data: UserCreate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> UserCreated:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "User creation started",
        user_email=user_data.email,
        roles=[r.value for r in user_data.roles],
        admin_id=admin.id,
        request_id=request_id
    )

    existing_email = db.query(User).filter(User.email == user_data.email).first()
    if existing_email:
        logger.warning(
            "User creation failed: duplicate email",
            email=user_data.email,
            existing_user_id=existing_email.id,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User with email '{user_data.email}' already exists"
        )

    try:
        new_user = User(
            name=user_data.name,
            email=user_data.email,
            api_key=generate_api_key(),
            roles=sorted({r.value for r in user_data.roles}),
            status=UserStatus.ACTIVE,
            mediator_code=user_data.mediator_code,
            parent_code=user_data.parent_code,
        )
        db.add(new_user)
        db.flush()
        write_audit_log(
            db,
            action="USER_CREATED",
            entity_type="User",
            entity_id=new_user.id,
            actor_user_id=admin.id,
            details={"roles": new_user.roles, "mediator_code": new_user.mediator_code},
        )
        db.commit()
        db.refresh(new_user)
    except IntegrityError as e:
        db.rollback()
        logger.error(
            "User creation failed: database integrity error",
            error=str(e),
            user_email=user_data.email,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User with this email or mediator code already exists"
        )

    publish_realtime("users.changed", payload={"user_id": new_user.id}, roles=["admin", "ops"])

    duration_ms = (time.time() - start_time) * 1000
    log_performance(
        operation="create_user",
        duration_ms=duration_ms,
        additional_data={"user_id": new_user.id}
    )
    return UserCreated.model_validate(new_user)


@router.get(
    "/me",
    response_model=UserRead,
    summary="Current account"
)
async def read_me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.get(
    "/{user_id}",
    response_model=UserRead,
    summary="Get user by id (staff only)"
)
async def read_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> UserRead:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User with id {user_id} not found")
    return UserRead.model_validate(user)
