"""
UTC time helpers shared by the repositories and engines.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Serialize for storage. Fixed precision keeps string ordering chronological."""
    return to_utc(value).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp."""
    if value is None:
        return None
    return to_utc(datetime.fromisoformat(value))
