"""
Base schemas used across the application.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResponseBase(BaseModel):
    """Base response format for API endpoints with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ErrorResponse(BaseModel):
    """Envelope rendered for every domain error."""
    success: bool = False
    code: str
    message: str
    category: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None
