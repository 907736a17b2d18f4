from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, case, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from delayguard.db.models import BillingStatus, Carrier, Merchant, Shipment
from delayguard.schemas.poll_schemas import ShipmentPollCandidate
from delayguard.utils.datetime_utils import to_naive_utc, to_utc, utc_now
from delayguard.utils.errors import StoreReadError
from delayguard.utils.logging import get_logger

logger = get_logger()


class SqlAlchemyShipmentStore:
    """
    Shipment store backed by the application database.

    A shipment is due for a poll when its next poll time has arrived, it is
    neither delivered nor archived, its carrier is known and its merchant is
    neither cancelled nor frozen. Results are ordered most urgent first
    (earliest expected delivery, unknown dates last) with the id as tie-break,
    which keeps offset paging stable.

    Args:
        db: Session used for the reads
        as_of: Instant the due predicate is evaluated at; the wall clock at
            each call when omitted
    """

    def __init__(self, db: Session, as_of: Optional[datetime] = None):
        self.db = db
        self.as_of = as_of

    def find_due_for_poll(self, offset: int, limit: int) -> List[ShipmentPollCandidate]:
        as_of = to_naive_utc(self.as_of or utc_now())

        stmt = (
            select(Shipment.id, Shipment.expected_delivery_date)
            .join(Merchant, Shipment.merchant_id == Merchant.id)
            .where(
                and_(
                    Shipment.next_poll_at.is_not(None),
                    Shipment.next_poll_at <= as_of,
                    Shipment.is_delivered == False,
                    Shipment.is_archived == False,
                    Shipment.carrier != Carrier.UNKNOWN,
                    Merchant.billing_status != BillingStatus.CANCELLED,
                    Merchant.shop_frozen == False,
                )
            )
            .order_by(
                case((Shipment.expected_delivery_date.is_(None), 1), else_=0),
                Shipment.expected_delivery_date,
                Shipment.id,
            )
            .offset(offset)
            .limit(limit)
        )

        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to read shipments due for poll (offset={offset}, limit={limit}): {str(e)}"
            )
            raise StoreReadError(f"Failed to read shipments due for poll: {str(e)}") from e

        return [
            ShipmentPollCandidate(
                id=row.id,
                expected_delivery_date=(
                    to_utc(row.expected_delivery_date)
                    if row.expected_delivery_date is not None
                    else None
                ),
            )
            for row in rows
        ]
