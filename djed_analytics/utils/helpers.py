"""
DJED ANALYTICS - Common Utility Functions
UTC time handling shared by bucketing, weighting and the sync cycle.
"""
from datetime import datetime, timedelta, timezone
from typing import Tuple

MS_PER_DAY = 86_400_000


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def to_ms(ts: datetime) -> int:
    """Milliseconds since the epoch for an aware datetime."""
    if ts.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    delta = ts - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_ms(ms: int) -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=ms)


def from_unix_seconds(seconds: int) -> datetime:
    return from_ms(int(seconds) * 1000)


def iso_ms(ts: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix, e.g. 2024-01-01T00:30:00.000Z."""
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def day_key(ts: datetime) -> str:
    """UTC calendar date of a timestamp: the first 10 characters of its ISO form."""
    return iso_ms(ts)[:10]


def day_bounds(key: str) -> Tuple[datetime, datetime]:
    """Fixed UTC boundaries of a day: 00:00:00.000 and 23:59:59.999."""
    start = datetime.strptime(key, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return start, start + timedelta(milliseconds=MS_PER_DAY - 1)
