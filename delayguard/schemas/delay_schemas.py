from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import Field

from delayguard.db.models import Carrier, DeliverySource
from delayguard.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from delayguard.services.delivery.business_days import DEFAULT_GRACE_HOURS


class DelayReason(str, Enum):
    CARRIER_EXCEPTION = "CARRIER_EXCEPTION"
    PAST_EXPECTED_DELIVERY = "PAST_EXPECTED_DELIVERY"


class TrackingSnapshot(BaseModel):
    """What a carrier tracking lookup reported for a shipment."""

    is_delivered: bool = False
    is_exception: bool = False
    expected_delivery_date: Optional[datetime] = None
    rescheduled_delivery_date: Optional[datetime] = None


class MerchantDelaySettings(BaseModel):
    delay_threshold_hours: float = Field(default=DEFAULT_GRACE_HOURS, ge=0)
    delivery_windows: Dict[str, int] = Field(default_factory=dict)


class ShipmentDelayInput(BaseModel):
    ship_date: datetime
    expected_delivery_date: Optional[datetime] = None
    expected_delivery_source: DeliverySource = DeliverySource.DEFAULT
    service_level: Optional[str] = None
    carrier: Carrier = Carrier.UNKNOWN
    rescheduled_delivery_date: Optional[datetime] = None
    is_delivered: bool = False


class DelayEvaluation(BaseModel):
    is_delayed: bool
    delay_reason: Optional[DelayReason] = None
    days_delayed: int = 0
    expected_delivery_date: Optional[datetime] = None
    expected_delivery_source: DeliverySource = DeliverySource.DEFAULT
