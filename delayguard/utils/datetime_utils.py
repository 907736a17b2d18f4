from datetime import datetime, date, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

INVALID_DATE = "Invalid date"
INVALID_TIMEZONE = "Invalid timezone"
NOT_AVAILABLE = "Not available"

DateInput = Union[datetime, date, str, None]


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    This is what the DateTime columns store.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: UTC timezone-aware datetime
    """
    if dt.tzinfo is None:
        # Assume naive datetime is in UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        # Convert to UTC
        return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    else:
        # Convert to UTC and remove timezone info
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)


def parse_datetime(value: DateInput) -> Optional[datetime]:
    """
    Interpret a loosely typed date/time value as an aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC), dates (midnight UTC)
    and ISO-8601 strings. Anything else, including unparseable strings,
    yields None instead of raising.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            return to_utc(date_parser.isoparse(value.strip()))
        except (ValueError, OverflowError):
            return None
    return None


def format_in_timezone(
    value: DateInput,
    timezone_name: str,
    fmt: str = "%b %d, %Y, %I:%M %p",
) -> str:
    """
    Render a UTC instant in a merchant's display timezone.

    Bad input never raises: an unknown timezone renders as "Invalid timezone"
    and an unreadable date as "Invalid date" so callers can show a fallback.
    """
    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError, OSError):
        return INVALID_TIMEZONE

    parsed = parse_datetime(value)
    if parsed is None:
        return INVALID_DATE
    return parsed.astimezone(zone).strftime(fmt)


def format_expected_delivery_date(value: DateInput) -> str:
    """Long-form expected delivery date, e.g. "Friday, February 06, 2026"."""
    if value is None:
        return NOT_AVAILABLE

    parsed = parse_datetime(value)
    if parsed is None:
        return INVALID_DATE
    return parsed.strftime("%A, %B %d, %Y")
