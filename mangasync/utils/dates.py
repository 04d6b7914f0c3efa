"""
Timestamp helpers.

All timestamps handled by the engine are timezone-aware UTC datetimes.
SQLite drops tzinfo, so values read back from the local store pass
through ensure_utc().
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and normalise aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Strip tzinfo after converting to UTC, for storage columns."""
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string with offset, or None."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()
