import pytest
from datetime import datetime, timezone

from delayguard.db.models import Carrier, DeliverySource
from delayguard.schemas.delay_schemas import (
    DelayEvaluation,
    DelayReason,
    MerchantDelaySettings,
    ShipmentDelayInput,
    TrackingSnapshot,
)
from delayguard.services.delivery.delay_detection_service import (
    calculate_default_expected_delivery,
    determine_expected_delivery_date,
    evaluate_delay,
    get_carrier_service_levels,
    get_delay_update_fields,
    get_delivery_window,
    get_service_level_label,
    normalize_service_level,
)

pytestmark = pytest.mark.unit

UTC = timezone.utc
SHIP_DATE = datetime(2026, 1, 30, 15, 0, tzinfo=UTC)  # Friday
DEFAULT_SETTINGS = MerchantDelaySettings()


def _shipment(**overrides) -> ShipmentDelayInput:
    values = dict(ship_date=SHIP_DATE, carrier=Carrier.UPS, service_level="UPS Ground")
    values.update(overrides)
    return ShipmentDelayInput(**values)


class TestServiceLevels:
    """Test service level normalization and delivery windows."""

    @pytest.mark.parametrize(
        "raw,carrier,expected",
        [
            ("UPS® Ground", Carrier.UPS, "ups_ground"),
            ("Ground", Carrier.UPS, "ups_ground"),
            ("UPS 2nd Day Air", Carrier.UPS, "ups_2nd_day_air"),
            ("FedEx 2Day", Carrier.FEDEX, "fedex_2day"),
            ("Priority Mail Express™", Carrier.USPS, "usps_priority_mail_express"),
            ("Standard", Carrier.UNKNOWN, "standard"),
        ],
    )
    def test_normalize(self, raw, carrier, expected):
        assert normalize_service_level(raw, carrier) == expected

    def test_normalize_empty(self):
        assert normalize_service_level(None, Carrier.UPS) is None
        assert normalize_service_level("", Carrier.UPS) is None
        assert normalize_service_level("®™", Carrier.UPS) is None

    def test_window_from_default_table(self):
        assert get_delivery_window("Next Day Air", Carrier.UPS) == 1
        assert get_delivery_window("Ground Advantage", Carrier.USPS) == 7

    def test_merchant_override_wins(self):
        assert get_delivery_window("UPS Ground", Carrier.UPS, {"ups_ground": 3}) == 3

    def test_unknown_service_level_uses_carrier_fallback(self):
        assert get_delivery_window("Teleport", Carrier.FEDEX) == 5
        assert get_delivery_window(None, Carrier.USPS) == 7

    def test_default_expected_delivery(self):
        result = calculate_default_expected_delivery(SHIP_DATE, "UPS Ground", Carrier.UPS)
        assert result == datetime(2026, 2, 6, tzinfo=UTC)

    def test_carrier_service_levels(self):
        levels = get_carrier_service_levels(Carrier.FEDEX)
        assert "fedex_ground" in levels
        assert all(level.startswith("fedex_") for level in levels)

    def test_service_level_label(self):
        assert get_service_level_label("ups_2nd_day_air") == "Ups 2nd Day Air"


class TestExpectedDeliveryDate:
    """Test where the expected delivery date comes from."""

    def test_carrier_tracking_date_first(self):
        tracking = TrackingSnapshot(expected_delivery_date=datetime(2026, 2, 4, tzinfo=UTC))
        stored = _shipment(
            expected_delivery_date=datetime(2026, 2, 3, tzinfo=UTC),
            expected_delivery_source=DeliverySource.MERCHANT_OVERRIDE,
        )

        expected, source = determine_expected_delivery_date(stored, tracking, DEFAULT_SETTINGS)

        assert expected == datetime(2026, 2, 4, tzinfo=UTC)
        assert source is DeliverySource.CARRIER

    def test_stored_override_second(self):
        stored = _shipment(
            expected_delivery_date=datetime(2026, 2, 3, tzinfo=UTC),
            expected_delivery_source=DeliverySource.MERCHANT_OVERRIDE,
        )

        expected, source = determine_expected_delivery_date(stored, None, DEFAULT_SETTINGS)

        assert expected == datetime(2026, 2, 3, tzinfo=UTC)
        assert source is DeliverySource.MERCHANT_OVERRIDE

    def test_stored_default_is_recalculated(self):
        stored = _shipment(
            expected_delivery_date=datetime(2026, 3, 1, tzinfo=UTC),
            expected_delivery_source=DeliverySource.DEFAULT,
        )
        settings = MerchantDelaySettings(delivery_windows={"ups_ground": 2})

        expected, source = determine_expected_delivery_date(stored, None, settings)

        assert expected == datetime(2026, 2, 3, tzinfo=UTC)
        assert source is DeliverySource.DEFAULT


class TestEvaluateDelay:
    """Test the delay decision."""

    def test_delivered_is_never_delayed(self):
        evaluation = evaluate_delay(
            _shipment(is_delivered=True), None, DEFAULT_SETTINGS, datetime(2026, 3, 1, tzinfo=UTC)
        )
        assert evaluation.is_delayed is False

    def test_delivered_according_to_tracking(self):
        tracking = TrackingSnapshot(is_delivered=True, is_exception=True)
        evaluation = evaluate_delay(_shipment(), tracking, DEFAULT_SETTINGS, datetime(2026, 3, 1, tzinfo=UTC))
        assert evaluation.is_delayed is False

    def test_carrier_exception_is_delayed_before_the_deadline(self):
        tracking = TrackingSnapshot(is_exception=True)
        evaluation = evaluate_delay(_shipment(), tracking, DEFAULT_SETTINGS, datetime(2026, 2, 2, tzinfo=UTC))

        assert evaluation.is_delayed is True
        assert evaluation.delay_reason is DelayReason.CARRIER_EXCEPTION
        assert evaluation.days_delayed == 0

    def test_within_grace_is_on_time(self):
        # Default window puts UPS Ground from Friday 01-30 on Friday 02-06
        evaluation = evaluate_delay(_shipment(), None, DEFAULT_SETTINGS, datetime(2026, 2, 7, 6, 0, tzinfo=UTC))

        assert evaluation.is_delayed is False
        assert evaluation.expected_delivery_date == datetime(2026, 2, 6, tzinfo=UTC)
        assert evaluation.expected_delivery_source is DeliverySource.DEFAULT

    def test_past_grace_is_delayed(self):
        evaluation = evaluate_delay(_shipment(), None, DEFAULT_SETTINGS, datetime(2026, 2, 9, 9, 0, tzinfo=UTC))

        assert evaluation.is_delayed is True
        assert evaluation.delay_reason is DelayReason.PAST_EXPECTED_DELIVERY
        assert evaluation.days_delayed == 3

    def test_merchant_threshold_is_the_grace(self):
        settings = MerchantDelaySettings(delay_threshold_hours=0)
        evaluation = evaluate_delay(_shipment(), None, settings, datetime(2026, 2, 7, 1, 0, tzinfo=UTC))
        assert evaluation.is_delayed is True

    def test_rescheduled_date_moves_the_deadline(self):
        tracking = TrackingSnapshot(rescheduled_delivery_date=datetime(2026, 2, 10, tzinfo=UTC))
        evaluation = evaluate_delay(_shipment(), tracking, DEFAULT_SETTINGS, datetime(2026, 2, 9, 9, 0, tzinfo=UTC))
        assert evaluation.is_delayed is False

    def test_stored_rescheduled_date_is_used_without_tracking(self):
        shipment = _shipment(rescheduled_delivery_date=datetime(2026, 2, 10, tzinfo=UTC))
        evaluation = evaluate_delay(shipment, None, DEFAULT_SETTINGS, datetime(2026, 2, 9, 9, 0, tzinfo=UTC))
        assert evaluation.is_delayed is False


class TestDelayUpdateFields:
    """Test the column updates derived from an evaluation."""

    def test_flags_on_transition_into_delayed(self):
        now = datetime(2026, 2, 9, 9, 0, tzinfo=UTC)
        evaluation = DelayEvaluation(
            is_delayed=True,
            delay_reason=DelayReason.PAST_EXPECTED_DELIVERY,
            days_delayed=3,
            expected_delivery_date=datetime(2026, 2, 6, tzinfo=UTC),
            expected_delivery_source=DeliverySource.DEFAULT,
        )

        update = get_delay_update_fields(evaluation, was_delayed=False, now=now)

        assert update["is_delayed"] is True
        assert update["days_delayed"] == 3
        assert update["expected_delivery_date"] == datetime(2026, 2, 6)
        assert update["expected_delivery_source"] is DeliverySource.DEFAULT
        assert update["delay_flagged_at"] == datetime(2026, 2, 9, 9, 0)

    def test_already_delayed_keeps_original_flag_time(self):
        evaluation = DelayEvaluation(is_delayed=True, days_delayed=4)
        update = get_delay_update_fields(evaluation, was_delayed=True)
        assert "delay_flagged_at" not in update

    def test_no_expected_date_leaves_stored_date_alone(self):
        update = get_delay_update_fields(DelayEvaluation(is_delayed=False), was_delayed=False)
        assert update == {"is_delayed": False, "days_delayed": 0}
