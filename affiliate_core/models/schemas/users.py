"""
Pydantic schemas for user-related operations.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator
from ..db.enums import UserRole, UserStatus, SuspensionAction


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    roles: List[UserRole] = Field(min_length=1)
    mediator_code: Optional[str] = Field(None, min_length=1, max_length=64, validate_default=True)
    parent_code: Optional[str] = Field(None, min_length=1, max_length=64)

    @field_validator('mediator_code')
    @classmethod
    def validate_mediator_code(cls, v, info):
        roles = info.data.get('roles') or []
        needs_code = any(r in (UserRole.MEDIATOR, UserRole.AGENCY) for r in roles)
        if needs_code and not v:
            raise ValueError('mediator_code is required for mediator and agency users')
        return v

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Asha Mediator",
            "email": "asha@example.com",
            "roles": ["mediator"],
            "mediator_code": "MED-ASHA",
            "parent_code": "AGY-NORTH"
        }
    })


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    roles: List[str]
    status: UserStatus
    mediator_code: Optional[str]
    parent_code: Optional[str]
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserCreated(UserRead):
    """Returned once at creation; the only response carrying the API key."""
    api_key: Optional[str]


class UserStatusUpdate(BaseModel):
    status: UserStatus
    reason: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(json_schema_extra={
        "example": {"status": "suspended", "reason": "Chargeback investigation"}
    })


class SuspensionRead(BaseModel):
    id: int
    target_user_id: int
    action: SuspensionAction
    reason: Optional[str]
    admin_user_id: Optional[int]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
