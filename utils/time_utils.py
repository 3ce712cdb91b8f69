"""
Time helpers shared by the stores and services
"""
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.
    Naive values (SQLite drops tzinfo) are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def usage_period(moment: datetime) -> str:
    """Calendar-month bucket used for usage limits, e.g. '2026-10'."""
    return ensure_utc(moment).strftime("%Y-%m")
