from datetime import datetime, timedelta
from typing import Optional

from delayguard.schemas.poll_schemas import UrgencyTier
from delayguard.services.delivery.business_days import difference_in_calendar_days
from delayguard.utils.datetime_utils import to_utc

# Shipments read from the store per page
POLL_SCHEDULER_PAGE_SIZE = 500
# Hard ceiling on poll jobs enqueued by one scheduler run
POLL_SCHEDULER_MAX_JOBS_PER_RUN = 10_000
# Expected delivery within this window is HIGH urgency
HIGH_URGENCY_WINDOW = timedelta(hours=24)

# Hours until the next poll, by delivery proximity
POLL_INTERVAL_PAST_DUE = 2
POLL_INTERVAL_RESCHEDULED = 4
POLL_INTERVAL_IMMINENT = 4  # expected today or tomorrow
POLL_INTERVAL_UPCOMING = 6  # expected in 2-5 days
POLL_INTERVAL_FUTURE = 8  # expected in 6+ days
POLL_INTERVAL_UNKNOWN = 6


def classify_urgency(
    expected_delivery_date: Optional[datetime], now: datetime
) -> UrgencyTier:
    """
    Urgency tier of a poll based on how close the shipment is to its ETA.

    Unknown ETA -> LOW, strictly past -> URGENT, within the next 24 hours ->
    HIGH, anything later -> LOW. MEDIUM has no boundary yet.
    """
    if expected_delivery_date is None:
        return UrgencyTier.LOW

    expected = to_utc(expected_delivery_date)
    current = to_utc(now)

    if expected < current:
        return UrgencyTier.URGENT
    if expected - current <= HIGH_URGENCY_WINDOW:
        return UrgencyTier.HIGH
    return UrgencyTier.LOW


def calculate_next_poll_at(
    expected_delivery_date: Optional[datetime],
    now: datetime,
    rescheduled_delivery_date: Optional[datetime] = None,
    is_delivered: bool = False,
    is_archived: bool = False,
    random_poll_offset_minutes: int = 0,
) -> Optional[datetime]:
    """
    When a shipment should be polled again after a poll completes.

    - Past due: every 2 hours, or every 4 when the carrier has rescheduled
      delivery into the future
    - Expected today or tomorrow: every 4 hours
    - Expected in 2-5 days: every 6 hours
    - Expected in 6+ days: every 8 hours
    - Unknown expected date: every 6 hours

    The merchant's random offset staggers polls across merchants. Delivered
    and archived shipments are never polled again (None).
    """
    if is_delivered or is_archived:
        return None

    current = to_utc(now)

    if expected_delivery_date is None:
        interval_hours = POLL_INTERVAL_UNKNOWN
    else:
        days_until = difference_in_calendar_days(expected_delivery_date, current)
        if days_until < 0:
            has_rescheduled = (
                rescheduled_delivery_date is not None
                and to_utc(rescheduled_delivery_date) > current
            )
            interval_hours = (
                POLL_INTERVAL_RESCHEDULED if has_rescheduled else POLL_INTERVAL_PAST_DUE
            )
        elif days_until <= 1:
            interval_hours = POLL_INTERVAL_IMMINENT
        elif days_until <= 5:
            interval_hours = POLL_INTERVAL_UPCOMING
        else:
            interval_hours = POLL_INTERVAL_FUTURE

    return current + timedelta(hours=interval_hours, minutes=random_poll_offset_minutes)
