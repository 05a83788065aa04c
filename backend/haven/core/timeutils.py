"""Timezone helpers shared by models and the crisis engine."""

from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for timezone-aware columns; we store
    everything in UTC, so a naive value is taken to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def end_of_day(day: date) -> datetime:
    """Last instant of a calendar day in UTC."""
    return datetime.combine(day, time.max, tzinfo=timezone.utc)
