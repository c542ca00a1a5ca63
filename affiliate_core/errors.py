"""Domain error taxonomy.

Every failure raised by the services carries a stable machine-readable ``code``
(e.g. ``WALLET_NOT_EMPTY``) and a human message. The category subclass decides
the HTTP status the API layer renders; services never raise ``HTTPException``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class CoreError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    category: str = "validation"

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "category": self.category,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationFailed(CoreError):
    status_code = 400
    category = "validation"


class NotFound(CoreError):
    status_code = 404
    category = "precondition"


class PreconditionFailed(CoreError):
    """Entity is in the wrong state for the requested operation."""

    status_code = 409
    category = "precondition"


class ConflictError(CoreError):
    """Concurrent modification or an operation that already happened."""

    status_code = 409
    category = "conflict"


class ResourceGuardError(CoreError):
    """Destructive or money-moving operation blocked by outstanding state."""

    status_code = 409
    category = "resource_guard"


class ExternalDependencyError(CoreError):
    status_code = 502
    category = "external_dependency"


class AuthorizationError(CoreError):
    status_code = 403
    category = "authorization"


class CascadePartialFailure(CoreError):
    """A suspension cascade step failed after earlier steps were committed.

    ``applied`` lists the steps that are durable. Saving the same status again
    is a no-op, so retry the rest with ``resume_cascade``; its steps are idempotent.
    """

    status_code = 500
    category = "cascade"

    def __init__(self, message: str, *, applied: List[str], failed: str, cause: str):
        super().__init__(
            "CASCADE_PARTIAL_FAILURE",
            message,
            {"applied_steps": list(applied), "failed_step": failed, "cause": cause},
        )
        self.applied = list(applied)
        self.failed = failed


__all__ = [
    "CoreError",
    "ValidationFailed",
    "NotFound",
    "PreconditionFailed",
    "ConflictError",
    "ResourceGuardError",
    "ExternalDependencyError",
    "AuthorizationError",
    "CascadePartialFailure",
]
