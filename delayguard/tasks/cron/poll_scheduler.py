from delayguard.celery import celery
from delayguard.db.session import get_sync_session
from delayguard.providers.poll_queue_provider import (
    CeleryPollQueue,
    get_poll_dedupe_registry,
)
from delayguard.providers.shipment_store_provider import SqlAlchemyShipmentStore
from delayguard.services.polling.poll_scheduler_service import PollSchedulerService
from delayguard.tasks.background.carrier_poll import carrier_poll_task
from delayguard.utils.context import request_id_scope
from delayguard.utils.datetime_utils import utc_now
from delayguard.utils.logging import get_logger


@celery.task(bind=True)
def poll_scheduler_task(self, request_id: str = "poll_scheduler_cron"):
    """
    Celery beat task that dispatches poll jobs for every shipment that is due.

    Runs every POLL_SCHEDULER_INTERVAL_MINUTES. The due set is evaluated as of
    the tick's start so every page of the run sees the same instant. A store
    failure fails the task; the next tick starts over. Failed enqueue pages are
    reported in the result and picked up again by the next tick.

    Args:
        request_id: The request ID from the scheduled beat task
    """
    with request_id_scope(request_id):
        return _poll_scheduler(request_id)


def _poll_scheduler(request_id: str):
    logger = get_logger()
    now = utc_now()

    for db_session in get_sync_session():
        service = PollSchedulerService(
            store=SqlAlchemyShipmentStore(db_session, as_of=now),
            queue=CeleryPollQueue(carrier_poll_task, get_poll_dedupe_registry()),
            clock=lambda: now,
        )
        result = service.run_poll_scheduling()

        if result.errors:
            logger.warning(
                f"Poll scheduler finished with {len(result.errors)} failed page(s)"
            )

        return {
            "success": not result.errors,
            **result.model_dump(by_alias=True),
            "request_id": request_id,
        }
