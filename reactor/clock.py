"""
Time helpers.

Scheduled times are compared as timezone-aware UTC datetimes and stored in
the queue as epoch seconds. Naive datetimes (SQLite drops tzinfo) are
treated as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> datetime | None:
    """
    Coerce a scheduled-time value to an aware UTC datetime.

    Accepts datetimes, dates, epoch seconds and ISO-8601 strings (the form
    a datetime takes after crossing the queue). Returns None for None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        raise TypeError(f"Cannot interpret {value!r} as a point in time")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_timestamp(value: Any) -> float:
    """Epoch seconds for a scheduled-time value; 0 when absent."""
    parsed = as_utc(value)
    return parsed.timestamp() if parsed is not None else 0.0


def is_future(value: Any, now: datetime | None = None) -> bool:
    parsed = as_utc(value)
    return parsed is not None and parsed > (now or utcnow())
