"""
Timestamp helpers.

All persisted timestamps are UTC ISO-8601 strings with millisecond precision
and a trailing ``Z`` (``2026-01-31T18:04:05.123Z``). The fixed width keeps
lexicographic order equal to chronological order, which the popup queries
rely on.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format an aware (or UTC-naive) datetime as a millisecond UTC string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string, returning None when it is missing or malformed."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: Optional[str], now: Optional[datetime] = None) -> str:
    """
    Return a timestamp strictly later than ``previous``.

    Two writes inside the same millisecond (or a clock that stepped
    backwards) would otherwise produce a non-increasing ``updatedAt``.
    """
    stamp = to_iso(now or utcnow())
    prev = parse_iso(previous)
    if prev is not None and parse_iso(stamp) <= prev:
        stamp = to_iso(prev + timedelta(milliseconds=1))
    return stamp
