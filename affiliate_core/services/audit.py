"""Audit trail writer and history query.

``write_audit_log`` adds the row to the caller's session so it commits (or
rolls back) together with the change it describes, then mirrors it to the
structured business-event log. The core never reads audit rows back except
through ``list_audit_logs``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from affiliate_core.models.db.audit_logs import AuditLog
from affiliate_core.utils import log_business_event


def write_audit_log(
    session: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: Any = None,
    actor_user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=dict(details or {}),
    )
    session.add(entry)
    log_business_event(
        event_type=action,
        details={"entity_type": entity_type, "entity_id": entry.entity_id, **entry.details},
        user_id=actor_user_id,
    )
    return entry


def list_audit_logs(
    session: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    action: Optional[str] = None,
    actor_user_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[AuditLog]:
    q = session.query(AuditLog)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditLog.entity_id == str(entity_id))
    if action:
        q = q.filter(AuditLog.action == action)
    if actor_user_id is not None:
        q = q.filter(AuditLog.actor_user_id == actor_user_id)
    return q.order_by(AuditLog.id.desc()).offset(skip).limit(limit).all()


__all__ = ["write_audit_log", "list_audit_logs"]
