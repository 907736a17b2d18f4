from functools import lru_cache
from typing import List, Sequence

import redis
from celery import Task

from delayguard.config.settings import settings
from delayguard.schemas.poll_schemas import JobHandle, PollJobDescriptor
from delayguard.utils.context import get_request_id
from delayguard.utils.errors import QueueWriteError
from delayguard.utils.logging import get_logger

logger = get_logger()

DEDUPE_NAMESPACE = "delayguard:dedupe"
CARRIER_POLL_QUEUE = "carrier-poll"


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD or None,
        socket_connect_timeout=5,
        socket_timeout=5,
    )


class PollDedupeRegistry:
    """
    Redis-backed claims on dedupe keys.

    A key is claimed when its job is enqueued and released by the job when it
    finishes; while claimed, further submissions for the same key are no-ops.
    Claims expire after ``ttl_seconds`` in case a worker dies mid-job.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int = settings.POLL_DEDUPE_TTL_SECONDS,
    ):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def redis_key(dedupe_key: str) -> str:
        return f"{DEDUPE_NAMESPACE}:{dedupe_key}"

    def claim(self, dedupe_keys: Sequence[str]) -> List[bool]:
        """Claim every key in one round-trip; True where the claim is new."""
        if not dedupe_keys:
            return []

        pipe = self.redis.pipeline(transaction=False)
        for dedupe_key in dedupe_keys:
            pipe.set(self.redis_key(dedupe_key), "1", nx=True, ex=self.ttl_seconds)
        return [bool(claimed) for claimed in pipe.execute()]

    def release(self, dedupe_keys: Sequence[str]) -> None:
        if not dedupe_keys:
            return
        self.redis.delete(*[self.redis_key(dedupe_key) for dedupe_key in dedupe_keys])


def get_poll_dedupe_registry() -> PollDedupeRegistry:
    return PollDedupeRegistry(get_redis_client())


class CeleryPollQueue:
    """
    Poll job queue on top of Celery.

    Each bulk submission claims all dedupe keys in one Redis pipeline, then
    publishes the newly claimed jobs over a single broker connection. Jobs
    whose key was already claimed are reported back with ``created=False``.
    If publishing fails, the claims of the jobs that never reached the broker
    are released so the next run can submit them again, and the whole call
    fails with QueueWriteError.
    """

    def __init__(
        self,
        task: Task,
        dedupe: PollDedupeRegistry,
        queue_name: str = CARRIER_POLL_QUEUE,
    ):
        self.task = task
        self.dedupe = dedupe
        self.queue_name = queue_name

    def bulk_submit(self, jobs: Sequence[PollJobDescriptor]) -> List[JobHandle]:
        if not jobs:
            return []

        try:
            claimed = self.dedupe.claim([job.dedupe_key for job in jobs])
        except redis.RedisError as e:
            raise QueueWriteError(f"Failed to claim dedupe keys: {str(e)}") from e

        handles: List[JobHandle] = []
        pending = {job.dedupe_key for job, is_new in zip(jobs, claimed) if is_new}
        request_id = get_request_id()

        try:
            with self.task.app.producer_or_acquire() as producer:
                for job, is_new in zip(jobs, claimed):
                    if not is_new:
                        handles.append(JobHandle(dedupe_key=job.dedupe_key, created=False))
                        continue

                    async_result = self.task.apply_async(
                        kwargs={**job.payload.model_dump(), "request_id": request_id},
                        queue=self.queue_name,
                        priority=int(job.priority),
                        producer=producer,
                    )
                    pending.discard(job.dedupe_key)
                    handles.append(
                        JobHandle(dedupe_key=job.dedupe_key, job_id=async_result.id)
                    )
        except Exception as e:
            logger.error(
                f"Publishing poll jobs failed, releasing {len(pending)} unpublished claims: {str(e)}"
            )
            self._release_quietly(sorted(pending))
            raise QueueWriteError(f"Failed to publish poll jobs: {str(e)}") from e

        return handles

    def _release_quietly(self, dedupe_keys: Sequence[str]) -> None:
        try:
            self.dedupe.release(dedupe_keys)
        except redis.RedisError as e:
            # Claims expire on their own after the TTL
            logger.warning(f"Could not release {len(dedupe_keys)} dedupe claims: {str(e)}")
