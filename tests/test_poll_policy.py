import pytest
from datetime import datetime, timedelta, timezone

from delayguard.schemas.poll_schemas import UrgencyTier
from delayguard.services.polling.poll_policy import (
    HIGH_URGENCY_WINDOW,
    calculate_next_poll_at,
    classify_urgency,
)

from conftest import NOW

pytestmark = pytest.mark.unit


class TestClassifyUrgency:
    """Test urgency tiers by distance to the expected delivery date."""

    def test_past_expected_delivery_is_urgent(self):
        assert classify_urgency(datetime(2026, 2, 1, tzinfo=timezone.utc), NOW) is UrgencyTier.URGENT
        assert classify_urgency(NOW - timedelta(seconds=1), NOW) is UrgencyTier.URGENT

    def test_within_next_24_hours_is_high(self):
        assert classify_urgency(NOW, NOW) is UrgencyTier.HIGH
        assert classify_urgency(datetime(2026, 2, 5, tzinfo=timezone.utc), NOW) is UrgencyTier.HIGH
        assert classify_urgency(NOW + HIGH_URGENCY_WINDOW, NOW) is UrgencyTier.HIGH

    def test_later_is_low(self):
        assert classify_urgency(NOW + HIGH_URGENCY_WINDOW + timedelta(seconds=1), NOW) is UrgencyTier.LOW
        assert classify_urgency(datetime(2026, 2, 15, tzinfo=timezone.utc), NOW) is UrgencyTier.LOW

    def test_unknown_expected_date_is_low(self):
        assert classify_urgency(None, NOW) is UrgencyTier.LOW

    def test_naive_datetimes_are_utc(self):
        assert classify_urgency(datetime(2026, 2, 4, 11, 0), NOW) is UrgencyTier.URGENT

    def test_medium_is_never_assigned(self):
        offsets = range(-72, 400, 3)
        tiers = {classify_urgency(NOW + timedelta(hours=h), NOW) for h in offsets}
        assert UrgencyTier.MEDIUM not in tiers

    def test_lower_value_is_more_urgent(self):
        assert UrgencyTier.URGENT < UrgencyTier.HIGH < UrgencyTier.MEDIUM < UrgencyTier.LOW


class TestCalculateNextPollAt:
    """Test the polling interval chosen after a poll."""

    def test_past_due_polls_every_two_hours(self):
        assert calculate_next_poll_at(datetime(2026, 2, 2), NOW) == NOW + timedelta(hours=2)

    def test_past_due_but_rescheduled_polls_every_four_hours(self):
        result = calculate_next_poll_at(
            datetime(2026, 2, 2), NOW, rescheduled_delivery_date=datetime(2026, 2, 6)
        )
        assert result == NOW + timedelta(hours=4)

    def test_rescheduled_into_the_past_is_ignored(self):
        result = calculate_next_poll_at(
            datetime(2026, 2, 2), NOW, rescheduled_delivery_date=datetime(2026, 2, 3)
        )
        assert result == NOW + timedelta(hours=2)

    @pytest.mark.parametrize(
        "expected,hours",
        [
            (datetime(2026, 2, 4), 4),
            (datetime(2026, 2, 5), 4),
            (datetime(2026, 2, 6), 6),
            (datetime(2026, 2, 9), 6),
            (datetime(2026, 2, 10), 8),
            (None, 6),
        ],
    )
    def test_interval_by_proximity(self, expected, hours):
        assert calculate_next_poll_at(expected, NOW) == NOW + timedelta(hours=hours)

    def test_random_offset_is_added(self):
        result = calculate_next_poll_at(None, NOW, random_poll_offset_minutes=37)
        assert result == NOW + timedelta(hours=6, minutes=37)

    def test_delivered_or_archived_is_never_polled(self):
        assert calculate_next_poll_at(datetime(2026, 2, 2), NOW, is_delivered=True) is None
        assert calculate_next_poll_at(datetime(2026, 2, 2), NOW, is_archived=True) is None
