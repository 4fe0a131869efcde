"""
Datetime utilities for consistent timezone handling across the application.
Timestamps are timezone-aware UTC; calendar days are plain ``date`` values.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def parse_iso_datetime(iso_string: str) -> datetime:
    """
    Parse ISO format datetime string to timezone-aware datetime.
    Handles both 'Z' suffix and '+00:00' timezone formats.

    Raises:
        ValueError: If datetime string cannot be parsed
    """
    normalized = iso_string.replace("Z", "+00:00")

    try:
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError as e:
        raise ValueError(f"Invalid datetime string: {iso_string}") from e


def to_iso_string(dt: datetime) -> str:
    """Convert datetime to an ISO string, assuming UTC for naive values."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.isoformat()


def parse_calendar_date(value: Union[str, date, datetime]) -> date:
    """
    Normalize a calendar day.

    Accepts ``date``, ``datetime`` or any string whose first ten characters
    are ``YYYY-MM-DD`` (full ISO timestamps included).

    Raises:
        ValueError: If the value is not a calendar day
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as e:
        raise ValueError(f"Invalid calendar date: {value}") from e


def minutes_before(minutes: int, now: Optional[datetime] = None) -> datetime:
    """Return the instant ``minutes`` before ``now`` (defaults to current UTC)."""
    return (now or utc_now()) - timedelta(minutes=minutes)


def format_time_12h(time_24h: str) -> str:
    """'13:00' -> '1:00 PM'."""
    hours, minutes = time_24h.strip().split(":")[:2]
    hour = int(hours)
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minutes.zfill(2)} {suffix}"


def format_long_date(day: date) -> str:
    """'Friday, November 28, 2025'."""
    return f"{day.strftime('%A, %B')} {day.day}, {day.year}"
