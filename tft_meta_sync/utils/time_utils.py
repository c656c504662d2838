"""
Time helpers shared by the cache store and orchestrator.

All timestamps are timezone-aware UTC.  Stored timestamps are ISO-8601 text
(``2026-02-24T15:00:00.123456+00:00``) so SQLite ``ORDER BY`` on them is
chronological.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime; convert an aware one to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize ``dt`` as an ISO-8601 UTC string."""
    return ensure_utc(dt).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string written by ``to_iso``; ``None`` passes through."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def age_ms(then: datetime, now: Optional[datetime] = None) -> float:
    """Milliseconds elapsed between ``then`` and ``now`` (default: current time)."""
    now = now or utcnow()
    return (ensure_utc(now) - ensure_utc(then)) / timedelta(milliseconds=1)
