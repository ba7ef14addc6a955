"""Time utilities (UTC now, naive-to-aware normalisation, whole minutes elapsed)."""
from __future__ import annotations
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def minutes_between(start: datetime, end: datetime | None = None) -> int:
    end_ts = ensure_utc(end or utc_now())
    return int((end_ts - ensure_utc(start)).total_seconds() // 60)

__all__ = ["utc_now", "ensure_utc", "minutes_between"]
