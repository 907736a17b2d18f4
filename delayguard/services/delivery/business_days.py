"""
Business day arithmetic over UTC calendar days.

Business days are Monday through Friday; there is no holiday calendar, carriers
publish their own and fold it into the dates they report. Every function
normalizes its inputs to midnight UTC first, so the time of day and the
caller's timezone never shift a result by a day.

Inputs that cannot be read as a date (unparseable strings, None, unsupported
types) never raise here: date-returning functions give None, predicates give
False and counts give 0. A negative business-day count is a programming error
and raises InvalidArgumentError.
"""

from datetime import datetime, timedelta
from typing import Optional

from delayguard.utils.datetime_utils import DateInput, parse_datetime, utc_now
from delayguard.utils.errors import InvalidArgumentError

DEFAULT_GRACE_HOURS = 8

ONE_DAY = timedelta(days=1)
END_OF_DAY = timedelta(days=1) - timedelta(milliseconds=1)
SATURDAY = 5


def start_of_day_utc(value: DateInput) -> Optional[datetime]:
    """Midnight UTC of the calendar day containing value."""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


def _is_weekend(day: datetime) -> bool:
    return day.weekday() >= SATURDAY


def _roll_to_business_day(day: datetime) -> datetime:
    while _is_weekend(day):
        day += ONE_DAY
    return day


def is_business_day(value: DateInput) -> bool:
    """True for Monday to Friday (UTC)."""
    day = start_of_day_utc(value)
    return day is not None and not _is_weekend(day)


def next_business_day(value: DateInput) -> Optional[datetime]:
    """The same day for Monday to Friday; the following Monday for a weekend."""
    day = start_of_day_utc(value)
    if day is None:
        return None
    return _roll_to_business_day(day)


def add_business_days(value: DateInput, business_days: int) -> Optional[datetime]:
    """
    Advance by exactly ``business_days`` business days.

    A weekend start is first moved to the next business day without consuming
    any of the count, so Saturday + 1 is Tuesday and Saturday + 0 is Monday.

    Examples:
        Friday 2026-02-06 + 1 -> Monday 2026-02-09
        Monday 2026-02-02 + 5 -> Monday 2026-02-09

    Raises:
        InvalidArgumentError: business_days is negative or not an integer
    """
    if isinstance(business_days, bool) or not isinstance(business_days, int):
        raise InvalidArgumentError(
            f"business_days must be an integer, got {type(business_days).__name__}"
        )
    if business_days < 0:
        raise InvalidArgumentError(
            f"business_days must be non-negative, got {business_days}"
        )

    current = next_business_day(value)
    if current is None:
        return None

    # From a business day, every 5 business days is exactly one calendar week
    weeks, remaining = divmod(business_days, 5)
    current += timedelta(weeks=weeks)

    while remaining > 0:
        current += ONE_DAY
        if not _is_weekend(current):
            remaining -= 1

    return current


def difference_in_business_days(start: DateInput, end: DateInput) -> int:
    """
    Count business days in the half-open range [start, end).

    When end precedes start the range [end, start) is counted instead and the
    result is negated. Monday to Friday of the same week is 4 (Mon-Thu).
    """
    start_day = start_of_day_utc(start)
    end_day = start_of_day_utc(end)
    if start_day is None or end_day is None or start_day == end_day:
        return 0

    forward = start_day < end_day
    low, high = (start_day, end_day) if forward else (end_day, start_day)

    weeks, leftover_days = divmod((high - low).days, 7)
    count = weeks * 5
    current = low + timedelta(weeks=weeks)
    for _ in range(leftover_days):
        if not _is_weekend(current):
            count += 1
        current += ONE_DAY

    return count if forward else -count


def difference_in_calendar_days(later: DateInput, earlier: DateInput) -> int:
    """Signed number of UTC calendar days from earlier to later."""
    later_day = start_of_day_utc(later)
    earlier_day = start_of_day_utc(earlier)
    if later_day is None or earlier_day is None:
        return 0
    return (later_day - earlier_day).days


def calculate_expected_delivery_date(
    ship_date: DateInput, transit_business_days: int
) -> Optional[datetime]:
    """Projected delivery date: ship date plus the transit time in business days."""
    return add_business_days(ship_date, transit_business_days)


def calculate_deadline(
    expected_delivery_date: DateInput, grace_hours: float = DEFAULT_GRACE_HOURS
) -> Optional[datetime]:
    """End of the expected delivery day (23:59:59.999 UTC) plus the grace window."""
    day = start_of_day_utc(expected_delivery_date)
    if day is None:
        return None
    return day + END_OF_DAY + timedelta(hours=grace_hours)


def is_past_deadline(
    expected_delivery_date: DateInput,
    grace_hours: float = DEFAULT_GRACE_HOURS,
    now: DateInput = None,
) -> bool:
    """
    Whether now is strictly after the delivery deadline.

    A shipment is on time for the whole expected day and then for
    ``grace_hours`` more, absorbing last-mile timing noise.

    Args:
        expected_delivery_date: The expected delivery date
        grace_hours: Hours of grace after the end of the expected day
        now: Current instant, defaults to the wall clock
    """
    deadline = calculate_deadline(expected_delivery_date, grace_hours)
    current = utc_now() if now is None else parse_datetime(now)
    if deadline is None or current is None:
        return False
    return current > deadline


def calculate_days_delayed(expected_delivery_date: DateInput, now: DateInput = None) -> int:
    """
    Whole calendar days after the expected delivery day, 0 on or before it.

    No grace window applies here; this is the magnitude used for urgency and
    reporting once a shipment has been flagged.
    """
    current = utc_now() if now is None else now
    return max(0, difference_in_calendar_days(current, expected_delivery_date))
