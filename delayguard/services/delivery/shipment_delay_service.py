from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from delayguard.db.models import Shipment
from delayguard.schemas.delay_schemas import (
    DelayEvaluation,
    MerchantDelaySettings,
    ShipmentDelayInput,
    TrackingSnapshot,
)
from delayguard.services.delivery.delay_detection_service import (
    evaluate_delay,
    get_delay_update_fields,
)
from delayguard.services.polling.poll_policy import calculate_next_poll_at
from delayguard.utils.datetime_utils import (
    format_expected_delivery_date,
    format_in_timezone,
    to_naive_utc,
    to_utc,
    utc_now,
)
from delayguard.utils.errors import NotFoundError
from delayguard.utils.logging import get_logger

logger = get_logger()


class ShipmentDelayService:
    """Applies a delay evaluation to a stored shipment after it has been polled"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_shipment_by_id(self, shipment_id: str) -> Optional[Shipment]:
        """Get shipment with its merchant loaded, or None if not found"""
        result = self.db.execute(
            select(Shipment)
            .options(joinedload(Shipment.merchant))
            .where(Shipment.id == shipment_id)
        )
        return result.scalar_one_or_none()

    def refresh(
        self,
        shipment_id: str,
        tracking: Optional[TrackingSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> DelayEvaluation:
        """
        Re-evaluate a shipment's delay state and schedule its next poll.

        Args:
            shipment_id: Shipment to refresh
            tracking: Latest carrier tracking data, if any was fetched
            now: Evaluation instant; the wall clock when omitted

        Raises:
            NotFoundError: No shipment has this id
        """
        current = to_utc(now) if now is not None else utc_now()

        shipment = self.get_shipment_by_id(shipment_id)
        if shipment is None:
            raise NotFoundError(f"Shipment {shipment_id} not found")

        merchant = shipment.merchant
        evaluation = evaluate_delay(
            self._to_delay_input(shipment),
            tracking,
            MerchantDelaySettings(
                delay_threshold_hours=merchant.delay_threshold_hours,
                delivery_windows=merchant.delivery_windows or {},
            ),
            current,
        )

        was_delayed = shipment.is_delayed
        for field, value in get_delay_update_fields(
            evaluation, was_delayed, current
        ).items():
            setattr(shipment, field, value)

        if tracking is not None:
            if tracking.is_delivered:
                shipment.is_delivered = True
            if tracking.rescheduled_delivery_date is not None:
                shipment.rescheduled_delivery_date = to_naive_utc(
                    tracking.rescheduled_delivery_date
                )

        next_poll_at = calculate_next_poll_at(
            shipment.expected_delivery_date,
            current,
            rescheduled_delivery_date=shipment.rescheduled_delivery_date,
            is_delivered=shipment.is_delivered,
            is_archived=shipment.is_archived,
            random_poll_offset_minutes=merchant.random_poll_offset,
        )
        shipment.last_polled_at = to_naive_utc(current)
        shipment.next_poll_at = to_naive_utc(next_poll_at) if next_poll_at else None

        self.db.commit()

        if evaluation.is_delayed and not was_delayed:
            logger.info(
                f"Shipment {shipment.order_number} ({shipment.tracking_number}) flagged as delayed: "
                f"{evaluation.delay_reason.value}, expected "
                f"{format_expected_delivery_date(evaluation.expected_delivery_date)}, "
                f"flagged at {format_in_timezone(current, merchant.timezone)}"
            )
        else:
            logger.debug(
                f"Refreshed shipment {shipment.id}: delayed={evaluation.is_delayed}, "
                f"next poll at {shipment.next_poll_at}"
            )

        return evaluation

    @staticmethod
    def _to_delay_input(shipment: Shipment) -> ShipmentDelayInput:
        return ShipmentDelayInput(
            ship_date=to_utc(shipment.ship_date),
            expected_delivery_date=(
                to_utc(shipment.expected_delivery_date)
                if shipment.expected_delivery_date is not None
                else None
            ),
            expected_delivery_source=shipment.expected_delivery_source,
            service_level=shipment.service_level,
            carrier=shipment.carrier,
            rescheduled_delivery_date=(
                to_utc(shipment.rescheduled_delivery_date)
                if shipment.rescheduled_delivery_date is not None
                else None
            ),
            is_delivered=shipment.is_delivered,
        )
