"""
Date/time helpers: framework-agnostic.

MongoDB returns naive datetimes unless the client is tz-aware, and test
doubles may hand back either flavour; everything that compares expiry
timestamps goes through ``ensure_utc`` first.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as a timezone-aware UTC datetime.

    Naive datetimes (no ``tzinfo``) are assumed to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_future(value: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when *value* is set and strictly later than *now*."""
    if value is None:
        return False
    return ensure_utc(value) > (now or utcnow())


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a date/time value into a timezone-aware UTC datetime.

    Accepts:
    - ``None`` → ``None``
    - ``int`` / ``float`` → treated as Unix epoch seconds
    - ``str`` ending in ``"Z"`` → converted to ``+00:00`` before parsing
    - Any ISO 8601 string (``datetime.fromisoformat``)

    Returns:
        A timezone-aware ``datetime`` in UTC, or ``None`` if *value* is ``None``
        or cannot be parsed.
    """
    if value is None:
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        raw = str(value)
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(raw))
    except (ValueError, OSError, OverflowError):
        return None


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to the naive-UTC form pymongo stores and returns by default.

    Every datetime written to or queried against MongoDB passes through
    here, so stored values and query operands are always comparable.
    """
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)
