from typing import Optional

from delayguard.celery import celery
from delayguard.db.session import get_sync_session
from delayguard.providers.poll_queue_provider import get_poll_dedupe_registry
from delayguard.schemas.poll_schemas import poll_dedupe_key
from delayguard.services.delivery.shipment_delay_service import ShipmentDelayService
from delayguard.utils.context import request_id_scope
from delayguard.utils.errors import NotFoundError
from delayguard.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def carrier_poll_task(self, shipment_id: str, request_id: Optional[str] = None):
    """
    Poll job for a single shipment, enqueued by the poll scheduler.

    Re-evaluates the shipment's delay state from its stored dates and moves
    its next poll time forward. The shipment's dedupe claim is released when
    the job finishes, whatever the outcome, so the next scheduler tick can
    enqueue it again once it is due.

    Args:
        shipment_id: Shipment to poll
        request_id: Request ID of the scheduler run that enqueued the job
    """
    with request_id_scope(request_id or f"carrier_poll:{shipment_id}"):
        try:
            return _carrier_poll(shipment_id, request_id)
        finally:
            get_poll_dedupe_registry().release([poll_dedupe_key(shipment_id)])


def _carrier_poll(shipment_id: str, request_id: Optional[str]):
    logger = get_logger()

    for db_session in get_sync_session():
        try:
            evaluation = ShipmentDelayService(db_session).refresh(shipment_id)
        except NotFoundError as e:
            logger.warning(f"Skipping poll: {e.message}")
            return {
                "success": True,
                "skipped": True,
                "shipment_id": shipment_id,
                "request_id": request_id,
            }
        except Exception as e:
            logger.error(f"Carrier poll failed for shipment {shipment_id}: {str(e)}")
            db_session.rollback()
            raise

        return {
            "success": True,
            "skipped": False,
            "shipment_id": shipment_id,
            "is_delayed": evaluation.is_delayed,
            "days_delayed": evaluation.days_delayed,
            "request_id": request_id,
        }
