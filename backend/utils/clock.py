"""
Time helpers.

All timestamps are stored as naive UTC (SQLite has no timezone type), so
every "now" in the code base comes from here.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
