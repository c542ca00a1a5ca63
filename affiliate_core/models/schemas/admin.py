"""
Pydantic schemas for staff-only endpoints.
"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict


class AuditLogRead(BaseModel):
    id: int
    actor_user_id: Optional[int]
    action: str
    entity_type: str
    entity_id: Optional[str]
    details: Dict[str, Any]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class DeletionCheckRead(BaseModel):
    allowed: bool
    code: Optional[str] = None
    message: Optional[str] = None
