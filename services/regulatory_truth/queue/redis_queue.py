"""
Redis Stage Queue
=================

Durable per-stage job queue on Redis.

Keys (per stage):
- `{prefix}:{stage}:ready`       LIST  jobs waiting (LPUSH in, claimed from the right)
- `{prefix}:{stage}:processing`  LIST  claimed, not yet acked (LMOVE)
- `{prefix}:{stage}:delayed`     ZSET  retries scored by due time
- `{prefix}:{stage}:dead`        LIST  jobs that exhausted their attempts

A claimed job stays in `processing` until it is acked, so a worker crash
never loses it: `recover()` moves leftovers back to `ready` on start.

Version: 0.1.0
"""

import random
import time
from collections.abc import Callable

from redis.asyncio import Redis

from services.regulatory_truth.models import StageType
from services.regulatory_truth.queue.jobs import Job
from shared.config import settings
from shared.database import utcnow
from shared.logging import get_logger


logger = get_logger(__name__)


def backoff_delay(
    attempt: int,
    base_seconds: float,
    max_seconds: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Full-jitter exponential backoff: uniform in [0, min(max, base * 2^(attempt-1)))."""
    ceiling = min(max_seconds, base_seconds * (2 ** max(0, attempt - 1)))
    return rng() * ceiling


class RedisStageQueue:
    """Ready/processing/delayed/dead-letter queue for one stage."""

    def __init__(
        self,
        redis: Redis,
        stage: StageType,
        prefix: str | None = None,
        max_attempts: int | None = None,
        base_delay_seconds: float | None = None,
        max_delay_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.redis = redis
        self.stage = stage
        self.max_attempts = max_attempts or settings.queue.max_attempts
        self._base_delay = (
            base_delay_seconds if base_delay_seconds is not None else settings.queue.base_retry_delay_seconds
        )
        self._max_delay = (
            max_delay_seconds if max_delay_seconds is not None else settings.queue.max_retry_delay_seconds
        )
        self._clock = clock
        self._rng = rng

        root = f"{prefix or settings.queue.key_prefix}:{stage.value}"
        self.ready_key = f"{root}:ready"
        self.processing_key = f"{root}:processing"
        self.delayed_key = f"{root}:delayed"
        self.dead_key = f"{root}:dead"

    # =========================================================================
    # Producing and consuming
    # =========================================================================

    async def enqueue(self, job: Job) -> Job:
        if job.stage != self.stage:
            raise ValueError(f"{job.stage.value} job sent to {self.stage.value} queue")
        await self.redis.lpush(self.ready_key, job.to_message())
        logger.debug("job_enqueued", stage=self.stage.value, job_id=job.id, input_id=job.input_id)
        return job

    async def dequeue(self) -> Job | None:
        """Claim the oldest ready job (due retries are promoted first)."""
        await self.promote_due()
        raw = await self.redis.lmove(self.ready_key, self.processing_key, "RIGHT", "LEFT")
        if raw is None:
            return None
        return Job.from_message(raw)

    async def ack(self, job: Job) -> None:
        if job._raw is not None:
            await self.redis.lrem(self.processing_key, 1, job._raw)

    async def retry(self, job: Job, error: str) -> bool:
        """
        Schedule another attempt with backoff, or dead-letter the job.

        Returns:
            True if a retry was scheduled, False if the job was dead-lettered
        """
        await self.ack(job)
        if job.attempt >= self.max_attempts:
            await self.dead_letter(job, error)
            return False

        delay = backoff_delay(job.attempt, self._base_delay, self._max_delay, self._rng)
        retry = job.next_attempt(error)
        await self.redis.zadd(self.delayed_key, {retry.to_message(): self._clock() + delay})
        logger.warning(
            "job_retry_scheduled",
            stage=self.stage.value,
            job_id=job.id,
            attempt=retry.attempt,
            delay_seconds=round(delay, 3),
            error=error,
        )
        return True

    async def dead_letter(self, job: Job, error: str) -> None:
        dead = job.model_copy(update={"last_error": error, "dead_lettered_at": utcnow()})
        await self.redis.lpush(self.dead_key, dead.to_message())
        logger.error(
            "job_dead_lettered",
            stage=self.stage.value,
            job_id=job.id,
            input_id=job.input_id,
            attempts=job.attempt,
            error=error,
        )

    async def promote_due(self) -> int:
        """Move retries whose backoff has elapsed back to `ready`."""
        due = await self.redis.zrangebyscore(self.delayed_key, "-inf", self._clock())
        promoted = 0
        for raw in due:
            # Only the worker that removes the entry may requeue it
            if await self.redis.zrem(self.delayed_key, raw):
                await self.redis.lpush(self.ready_key, raw)
                promoted += 1
        return promoted

    async def recover(self) -> int:
        """Requeue jobs left in `processing` by a crashed worker."""
        recovered = 0
        while await self.redis.lmove(self.processing_key, self.ready_key, "RIGHT", "RIGHT"):
            recovered += 1
        if recovered:
            logger.warning("jobs_recovered", stage=self.stage.value, count=recovered)
        return recovered

    # =========================================================================
    # Dead letters and introspection
    # =========================================================================

    async def dead_letters(self, limit: int = 100) -> list[Job]:
        raw = await self.redis.lrange(self.dead_key, 0, limit - 1)
        return [Job.from_message(r) for r in raw]

    async def replay_dead_letters(self, job_id: str | None = None) -> int:
        """Requeue dead letters (all, or one by id) with a fresh attempt count."""
        replayed = 0
        for job in await self.dead_letters(limit=10_000):
            if job_id is not None and job.id != job_id:
                continue
            if await self.redis.lrem(self.dead_key, 1, job._raw):
                fresh = job.model_copy(update={"attempt": 1, "dead_lettered_at": None})
                await self.redis.lpush(self.ready_key, fresh.to_message())
                replayed += 1
        if replayed:
            logger.info("dead_letters_replayed", stage=self.stage.value, count=replayed)
        return replayed

    async def depth(self) -> dict[str, int]:
        return {
            "ready": int(await self.redis.llen(self.ready_key)),
            "processing": int(await self.redis.llen(self.processing_key)),
            "delayed": int(await self.redis.zcard(self.delayed_key)),
            "dead": int(await self.redis.llen(self.dead_key)),
        }
