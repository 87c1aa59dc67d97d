"""Date and time utility functions."""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

DateLike = Union[str, date, datetime]


def parse_date(date_str: str) -> datetime:
    """
    Parse date string in YYYY-MM-DD format.

    Args:
        date_str: Date string (e.g., "2025-11-15")

    Returns:
        datetime object

    Raises:
        ValueError: If date format is invalid
    """
    return datetime.strptime(date_str, "%Y-%m-%d")


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp, accepting a trailing 'Z'.

    Raises:
        ValueError: If the timestamp is malformed
    """
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError) as e:
        raise ValueError(f"Invalid timestamp format: {value}") from e


def to_date(value: DateLike) -> date:
    """Normalize a YYYY-MM-DD string, date or datetime to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_date(value).date()


def is_within_range(day: DateLike, start: DateLike, end: DateLike) -> bool:
    """
    Check whether a day lies in [start, end], inclusive at both ends.

    Only calendar dates are compared; the time of day is ignored.
    """
    return to_date(start) <= to_date(day) <= to_date(end)


def has_passed(end: DateLike, now: DateLike) -> bool:
    """True if the calendar day `end` lies strictly before `now`."""
    return to_date(end) < to_date(now)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat(moment: Optional[datetime] = None) -> str:
    """Format a datetime (default: now) as ISO 8601."""
    return (moment or utc_now()).isoformat()


def days_between(earlier: datetime, later: datetime) -> float:
    """Elapsed days between two timestamps."""
    delta: timedelta = later - earlier
    return delta.total_seconds() / 86400.0
