"""Time utilities (UTC now, tz normalisation, elapsed formatting)."""
from __future__ import annotations
from datetime import datetime, timezone, timedelta

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def days_from_now(days: int, now: datetime | None = None) -> datetime:
    return (now or utc_now()) + timedelta(days=days)

def format_elapsed(start: datetime, end: datetime | None = None) -> str:
    end_ts = end or utc_now()
    delta: timedelta = end_ts - start
    ms = int(delta.total_seconds() * 1000)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms/1000:.2f}s"
    return f"{delta.total_seconds()/60:.2f}m"

__all__ = ["utc_now", "ensure_utc", "days_from_now", "format_elapsed"]
