"""In-process realtime notification hub (process-local).

Dashboards subscribe through whatever push transport fronts the API; the core
only publishes audience-scoped events. Publishing is fire-and-forget: a failing
listener is logged and skipped, it never propagates into the state change that
triggered the event. Callers publish after their transaction commits.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List

from affiliate_core.utils import get_logger

logger = get_logger(__name__)


@dataclass
class Audience:
    broadcast: bool = False
    user_ids: List[int] = field(default_factory=list)
    roles: List[str] = field(default_factory=list)
    agency_codes: List[str] = field(default_factory=list)
    mediator_codes: List[str] = field(default_factory=list)
    parent_codes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "broadcast": self.broadcast,
            "user_ids": list(self.user_ids),
            "roles": list(self.roles),
            "agency_codes": list(self.agency_codes),
            "mediator_codes": list(self.mediator_codes),
            "parent_codes": list(self.parent_codes),
        }


@dataclass
class RealtimeEvent:
    type: str
    audience: Audience
    payload: Dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[RealtimeEvent], None]


class RealtimeHub:
    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: RealtimeEvent) -> int:
        """Deliver to every listener; returns how many accepted the event."""
        with self._lock:
            listeners = list(self._listeners)
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Realtime listener failed",
                    event_type=event.type,
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(e),
                )
        logger.debug("Realtime event published", event_type=event.type, delivered=delivered)
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()


GLOBAL_REALTIME_HUB = RealtimeHub()


def _dedupe(values: Iterable[Any] | None) -> List[Any]:
    seen: List[Any] = []
    for v in values or []:
        if v is not None and v != "" and v not in seen:
            seen.append(v)
    return seen


def publish_realtime(
    event_type: str,
    *,
    payload: Dict[str, Any] | None = None,
    broadcast: bool = False,
    user_ids: Iterable[int] | None = None,
    roles: Iterable[str] | None = None,
    agency_codes: Iterable[str] | None = None,
    mediator_codes: Iterable[str] | None = None,
    parent_codes: Iterable[str] | None = None,
) -> RealtimeEvent:
    event = RealtimeEvent(
        type=event_type,
        payload=dict(payload or {}),
        audience=Audience(
            broadcast=broadcast,
            user_ids=_dedupe(user_ids),
            roles=_dedupe(roles),
            agency_codes=_dedupe(agency_codes),
            mediator_codes=_dedupe(mediator_codes),
            parent_codes=_dedupe(parent_codes),
        ),
    )
    GLOBAL_REALTIME_HUB.publish(event)
    return event


__all__ = ["Audience", "RealtimeEvent", "RealtimeHub", "GLOBAL_REALTIME_HUB", "publish_realtime"]
