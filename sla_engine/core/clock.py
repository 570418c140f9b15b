"""
Clock helpers.

The engine's computations take the current instant as an explicit argument;
only the outer edges (API handlers, the scheduler loop) read the wall clock.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to aware UTC; naive values are assumed to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialise an instant for JSON payloads."""
    value = ensure_utc(value)
    return value.isoformat() if value else None


def parse_instant(value: Optional[str]) -> Optional[datetime]:
    """Inverse of isoformat()."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))
