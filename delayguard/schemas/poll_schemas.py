from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import Field

from delayguard.schemas.camel_base_model import CamelCaseBaseModel as BaseModel

POLL_JOB_NAME = "poll"
POLL_DEDUPE_PREFIX = "poll"


class UrgencyTier(IntEnum):
    """Queue priority of a poll job; lower value is served first."""

    URGENT = 1  # past expected delivery
    HIGH = 2  # expected within the next 24 hours
    MEDIUM = 3  # reserved, no boundary assigned yet
    LOW = 4  # expected later, or unknown


class RunState(str, Enum):
    PAGING = "paging"
    TRUNCATED = "truncated"
    COMPLETE = "complete"


class ShipmentPollCandidate(BaseModel):
    """The projection of a shipment the scheduler needs to dispatch a poll."""

    id: str
    expected_delivery_date: Optional[datetime] = None


class PollJobPayload(BaseModel):
    shipment_id: str


class PollJobDescriptor(BaseModel):
    """One unit of work handed to the poll queue."""

    job_name: str = POLL_JOB_NAME
    payload: PollJobPayload
    dedupe_key: str
    priority: UrgencyTier

    @classmethod
    def for_shipment(cls, shipment_id: str, priority: UrgencyTier) -> "PollJobDescriptor":
        return cls(
            payload=PollJobPayload(shipment_id=shipment_id),
            dedupe_key=poll_dedupe_key(shipment_id),
            priority=priority,
        )


class JobHandle(BaseModel):
    """
    Queue-side acknowledgement for one submitted descriptor.

    ``created`` is False when an unfinished job with the same dedupe key was
    already queued; the submission was then a no-op and ``job_id`` is None.
    """

    dedupe_key: str
    job_id: Optional[str] = None
    created: bool = True


class RunResult(BaseModel):
    """Statistics of one poll scheduling run, reported to the trigger."""

    shipments_found: int = 0
    jobs_enqueued: int = 0
    jobs_skipped: int = 0
    truncated: bool = False
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    state: RunState = RunState.PAGING


def poll_dedupe_key(shipment_id: str) -> str:
    """Stable dedupe key for a shipment's poll job, derived only from its id."""
    return f"{POLL_DEDUPE_PREFIX}-{shipment_id}"
