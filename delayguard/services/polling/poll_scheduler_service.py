import time
from datetime import datetime
from typing import Callable, List, Protocol, Sequence

from delayguard.schemas.poll_schemas import (
    JobHandle,
    PollJobDescriptor,
    RunResult,
    RunState,
    ShipmentPollCandidate,
)
from delayguard.services.polling.poll_policy import (
    POLL_SCHEDULER_MAX_JOBS_PER_RUN,
    POLL_SCHEDULER_PAGE_SIZE,
    classify_urgency,
)
from delayguard.utils.datetime_utils import utc_now
from delayguard.utils.errors import InvalidArgumentError
from delayguard.utils.logging import get_logger


class ShipmentStore(Protocol):
    def find_due_for_poll(
        self, offset: int, limit: int
    ) -> List[ShipmentPollCandidate]:
        """
        At most ``limit`` shipments due for a poll, in a stable order.

        Only active shipments whose next poll time has arrived are returned;
        the scheduler trusts that and does not filter again.
        """
        ...


class PollJobQueue(Protocol):
    def bulk_submit(self, jobs: Sequence[PollJobDescriptor]) -> List[JobHandle]:
        """
        Submit a batch of poll jobs in one call; it succeeds or fails as a whole.

        Resubmitting a dedupe key whose job has not finished is a no-op.
        """
        ...


class PollSchedulerService:
    """
    Dispatches carrier poll jobs for every shipment that is due.

    One run pages through the due shipments, classifies each by urgency and
    submits one bulk batch of deduplicated poll jobs per page. A run never
    enqueues more than ``max_jobs_per_run`` jobs; whatever is left is picked
    up by the next tick.

    Failure policy:
    - store reads that fail abort the run and propagate to the caller
    - a failed bulk submission is recorded in ``RunResult.errors`` and the
      run moves on to the next page
    """

    def __init__(
        self,
        store: ShipmentStore,
        queue: PollJobQueue,
        clock: Callable[[], datetime] = utc_now,
        page_size: int = POLL_SCHEDULER_PAGE_SIZE,
        max_jobs_per_run: int = POLL_SCHEDULER_MAX_JOBS_PER_RUN,
    ):
        if page_size <= 0:
            raise InvalidArgumentError(f"page_size must be positive, got {page_size}")
        if max_jobs_per_run <= 0:
            raise InvalidArgumentError(
                f"max_jobs_per_run must be positive, got {max_jobs_per_run}"
            )

        self.store = store
        self.queue = queue
        self.clock = clock
        self.page_size = page_size
        self.max_jobs_per_run = max_jobs_per_run
        self.logger = get_logger()

    def run_poll_scheduling(self) -> RunResult:
        started = time.monotonic()
        now = self.clock()
        result = RunResult()
        offset = 0

        self.logger.info(f"Starting poll scheduling run as of {now.isoformat()}")

        try:
            while result.state is RunState.PAGING:
                limit = min(self.page_size, self.max_jobs_per_run - result.shipments_found)
                candidates = self.store.find_due_for_poll(offset, limit)

                offset += len(candidates)
                result.shipments_found += len(candidates)

                if candidates:
                    self._dispatch_page(candidates, now, result)

                if len(candidates) < limit:
                    result.state = RunState.COMPLETE
                elif result.shipments_found >= self.max_jobs_per_run:
                    result.state = RunState.TRUNCATED
                    result.truncated = True
                    self.logger.warning(
                        f"Hit max jobs limit ({self.max_jobs_per_run}), "
                        "remaining due shipments deferred to the next run"
                    )
        except Exception as e:
            self.logger.error(
                f"Poll scheduling failed after {_elapsed_ms(started)}ms "
                f"at offset {offset}: {str(e)}"
            )
            raise

        result.duration_ms = _elapsed_ms(started)

        self.logger.info(
            f"Poll scheduling completed in {result.duration_ms}ms: "
            f"found={result.shipments_found}, enqueued={result.jobs_enqueued}, "
            f"skipped={result.jobs_skipped}, truncated={result.truncated}, "
            f"errors={len(result.errors)}"
        )
        return result

    def build_jobs(
        self, candidates: Sequence[ShipmentPollCandidate], now: datetime
    ) -> List[PollJobDescriptor]:
        return [
            PollJobDescriptor.for_shipment(
                candidate.id, classify_urgency(candidate.expected_delivery_date, now)
            )
            for candidate in candidates
        ]

    def _dispatch_page(
        self,
        candidates: Sequence[ShipmentPollCandidate],
        now: datetime,
        result: RunResult,
    ) -> None:
        jobs = self.build_jobs(candidates, now)

        try:
            handles = self.queue.bulk_submit(jobs)
        except Exception as e:
            # Isolated to this page; the remaining pages still go out
            error_message = f"Batch enqueue error: {str(e)}"
            self.logger.error(error_message)
            result.errors.append(error_message)
            return

        skipped = sum(1 for handle in handles if not handle.created)
        result.jobs_enqueued += len(handles)
        result.jobs_skipped += skipped
        self.logger.info(
            f"Enqueued {len(handles)} poll jobs (batch), {skipped} already queued"
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
