"""
Delay detection.

A shipment is delayed when the carrier reports an exception, or when it is
past its expected delivery date plus the merchant's grace window. The expected
delivery date comes from, in order:

1. the date in the latest carrier tracking snapshot
2. a stored date that came from the carrier or a merchant override
3. the ship date plus the default delivery window for the service level

Merchants can override the default windows per service level.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from delayguard.db.models import Carrier, DeliverySource
from delayguard.schemas.delay_schemas import (
    DelayEvaluation,
    DelayReason,
    MerchantDelaySettings,
    ShipmentDelayInput,
    TrackingSnapshot,
)
from delayguard.services.delivery.business_days import (
    calculate_days_delayed,
    calculate_expected_delivery_date,
    is_past_deadline,
)
from delayguard.utils.datetime_utils import to_naive_utc, utc_now

# Business days by normalized service level key
DEFAULT_DELIVERY_WINDOWS: Dict[str, int] = {
    # UPS
    "ups_next_day_air": 1,
    "ups_next_day_air_early": 1,
    "ups_next_day_air_saver": 1,
    "ups_2nd_day_air": 2,
    "ups_2nd_day_air_am": 2,
    "ups_3_day_select": 3,
    "ups_ground": 5,
    "ups_standard": 5,
    # FedEx
    "fedex_first_overnight": 1,
    "fedex_priority_overnight": 1,
    "fedex_standard_overnight": 1,
    "fedex_overnight": 1,
    "fedex_2day": 2,
    "fedex_2day_am": 2,
    "fedex_express_saver": 3,
    "fedex_ground": 5,
    "fedex_home_delivery": 5,
    # USPS
    "usps_priority_mail_express": 2,
    "usps_priority_express": 2,
    "usps_priority_mail": 3,
    "usps_priority": 3,
    "usps_ground_advantage": 7,
    "usps_first_class": 5,
    "usps_parcel_select": 7,
    "usps_retail_ground": 7,
    # Generic fallbacks
    "overnight": 1,
    "express": 2,
    "priority": 3,
    "standard": 5,
    "ground": 5,
    "economy": 7,
}

# Used when the service level is missing or unrecognized
DEFAULT_CARRIER_WINDOWS: Dict[Carrier, int] = {
    Carrier.UPS: 5,
    Carrier.FEDEX: 5,
    Carrier.USPS: 7,
    Carrier.UNKNOWN: 7,
}

_TRADEMARKS = re.compile(r"[®™©]")
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_service_level(
    service_level: Optional[str], carrier: Carrier
) -> Optional[str]:
    """
    Normalize a raw service level into a DEFAULT_DELIVERY_WINDOWS key.

    "UPS® Ground" -> "ups_ground", "Ground" with UPS -> "ups_ground",
    "Priority Mail Express" with USPS -> "usps_priority_mail_express".
    """
    if not service_level:
        return None

    normalized = _TRADEMARKS.sub("", service_level.lower())
    normalized = _NON_WORD.sub(" ", normalized)
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    if not normalized:
        return None

    prefix = carrier.value.lower()
    if carrier is not Carrier.UNKNOWN and not normalized.startswith(prefix):
        normalized = f"{prefix} {normalized}"

    return normalized.replace(" ", "_")


def get_delivery_window(
    service_level: Optional[str],
    carrier: Carrier,
    merchant_overrides: Optional[Dict[str, int]] = None,
) -> int:
    """Business days for a service level: merchant override, then default table, then carrier fallback."""
    key = normalize_service_level(service_level, carrier)

    if key and merchant_overrides and key in merchant_overrides:
        return merchant_overrides[key]

    if key and key in DEFAULT_DELIVERY_WINDOWS:
        return DEFAULT_DELIVERY_WINDOWS[key]

    return DEFAULT_CARRIER_WINDOWS[carrier]


def calculate_default_expected_delivery(
    ship_date: datetime,
    service_level: Optional[str],
    carrier: Carrier,
    merchant_overrides: Optional[Dict[str, int]] = None,
) -> Optional[datetime]:
    business_days = get_delivery_window(service_level, carrier, merchant_overrides)
    return calculate_expected_delivery_date(ship_date, business_days)


def determine_expected_delivery_date(
    shipment: ShipmentDelayInput,
    tracking: Optional[TrackingSnapshot],
    merchant_settings: MerchantDelaySettings,
) -> Tuple[Optional[datetime], DeliverySource]:
    if tracking is not None and tracking.expected_delivery_date is not None:
        return tracking.expected_delivery_date, DeliverySource.CARRIER

    if shipment.expected_delivery_date is not None and shipment.expected_delivery_source in (
        DeliverySource.CARRIER,
        DeliverySource.MERCHANT_OVERRIDE,
    ):
        return shipment.expected_delivery_date, shipment.expected_delivery_source

    calculated = calculate_default_expected_delivery(
        shipment.ship_date,
        shipment.service_level,
        shipment.carrier,
        merchant_settings.delivery_windows,
    )
    return calculated, DeliverySource.DEFAULT


def evaluate_delay(
    shipment: ShipmentDelayInput,
    tracking: Optional[TrackingSnapshot],
    merchant_settings: MerchantDelaySettings,
    now: Optional[datetime] = None,
) -> DelayEvaluation:
    """
    Decide whether a shipment should be flagged as delayed.

    1. Delivered shipments are never delayed.
    2. A carrier exception flags the shipment regardless of dates.
    3. Past the deadline of the expected date (or the carrier's rescheduled
       date, when there is one) plus the merchant's grace hours flags it.
    4. Otherwise it is on time.

    days_delayed is always measured against the expected date, without grace.
    """
    current = now or utc_now()

    if shipment.is_delivered or (tracking is not None and tracking.is_delivered):
        return DelayEvaluation(
            is_delayed=False,
            expected_delivery_date=shipment.expected_delivery_date,
            expected_delivery_source=shipment.expected_delivery_source,
        )

    expected, source = determine_expected_delivery_date(
        shipment, tracking, merchant_settings
    )

    if tracking is not None and tracking.is_exception:
        return DelayEvaluation(
            is_delayed=True,
            delay_reason=DelayReason.CARRIER_EXCEPTION,
            days_delayed=calculate_days_delayed(expected, current) if expected else 0,
            expected_delivery_date=expected,
            expected_delivery_source=source,
        )

    if expected is None:
        return DelayEvaluation(is_delayed=False)

    rescheduled = (
        tracking.rescheduled_delivery_date
        if tracking is not None and tracking.rescheduled_delivery_date is not None
        else shipment.rescheduled_delivery_date
    )
    date_to_check = rescheduled or expected

    if is_past_deadline(date_to_check, merchant_settings.delay_threshold_hours, current):
        return DelayEvaluation(
            is_delayed=True,
            delay_reason=DelayReason.PAST_EXPECTED_DELIVERY,
            days_delayed=calculate_days_delayed(expected, current),
            expected_delivery_date=expected,
            expected_delivery_source=source,
        )

    return DelayEvaluation(
        is_delayed=False,
        expected_delivery_date=expected,
        expected_delivery_source=source,
    )


def get_delay_update_fields(
    evaluation: DelayEvaluation,
    was_delayed: bool,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Column updates for a shipment after an evaluation.

    delay_flagged_at is only stamped on the transition into delayed so it keeps
    recording when the delay was first noticed.
    """
    update: Dict[str, Any] = {
        "is_delayed": evaluation.is_delayed,
        "days_delayed": evaluation.days_delayed,
    }

    if evaluation.expected_delivery_date is not None:
        update["expected_delivery_date"] = to_naive_utc(evaluation.expected_delivery_date)
        update["expected_delivery_source"] = evaluation.expected_delivery_source

    if evaluation.is_delayed and not was_delayed:
        update["delay_flagged_at"] = to_naive_utc(now or utc_now())

    return update


def get_carrier_service_levels(carrier: Carrier) -> List[str]:
    """All default service level keys for a carrier."""
    prefix = f"{carrier.value.lower()}_"
    return [key for key in DEFAULT_DELIVERY_WINDOWS if key.startswith(prefix)]


def get_service_level_label(key: str) -> str:
    """Human-readable label, e.g. "ups_2nd_day_air" -> "Ups 2nd Day Air"."""
    return " ".join(word[:1].upper() + word[1:] for word in key.split("_"))
