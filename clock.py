"""
clock.py
========
UTC time helpers. Engine functions take an explicit ``now`` so tests can pin
time; these helpers supply the default and normalise stored timestamps.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (as returned by SQLite) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Form used for storage in DateTime columns without a timezone."""
    if value is None:
        return None
    return as_utc(value).replace(tzinfo=None)


def resolve_now(now: Optional[datetime]) -> datetime:
    return utcnow() if now is None else as_utc(now)
