"""Time utilities. Timestamps are stored as naive UTC."""
from __future__ import annotations
from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def to_db_datetime(value: datetime) -> datetime:
    """Naive UTC value for storage; sqlite drops tzinfo and comparisons must line up."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

def db_now() -> datetime:
    return to_db_datetime(utc_now())

__all__ = ["utc_now", "db_now", "to_db_datetime"]
