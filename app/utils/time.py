"""
Time helpers. All ledger timestamps are UTC.
"""
from datetime import datetime, timezone


def now_utc() -> datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values (SQLite returns TIMESTAMP columns without tzinfo) are
    treated as already being UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
