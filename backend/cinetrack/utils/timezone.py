"""
Timezone utilities for CineTrack.
Provides consistent UTC datetime handling and age calculations.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.
    Replacement for deprecated datetime.utcnow().
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is UTC and timezone-aware.
    If timezone-naive, assumes it's already UTC and adds UTC timezone.
    If timezone-aware, converts to UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # SQLite hands back naive datetimes
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def days_ago(days: int) -> datetime:
    return utc_now() - timedelta(days=days)


def age_in_days(dt: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Age of ``dt`` in fractional days; 0.0 when unknown."""
    if dt is None:
        return 0.0
    now = now or utc_now()
    return (ensure_utc(now) - ensure_utc(dt)).total_seconds() / (24 * 3600)


def format_iso_utc(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO string in UTC, None when missing."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def years_between(birth_date: date, today: Optional[date] = None) -> int:
    """Full years elapsed since ``birth_date``."""
    today = today or utc_now().date()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def should_filter_adult(birth_date: Optional[date], default: bool = True, today: Optional[date] = None) -> bool:
    """True when adult titles must be hidden for a user with this birth date."""
    if birth_date is None:
        return default
    return years_between(birth_date, today) < 18
