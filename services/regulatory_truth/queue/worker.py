"""
Stage Worker
============

Drains one stage's queue with a bounded pool of asyncio tasks.

Every attempt is recorded as an AgentRun. Handlers run under a hard
timeout; a timeout counts as a failure and is retried like any other
transient error. Whether a failure is retried is decided by the error
taxonomy (`retryable()`); exhausted jobs are dead-lettered by the queue.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import retryable
from services.regulatory_truth.models import RunOutcome, StageType
from services.regulatory_truth.queue.jobs import Job, StageOutcome
from services.regulatory_truth.queue.redis_queue import RedisStageQueue
from services.regulatory_truth.repository import AgentRunRepository
from shared.config import settings
from shared.database import db_session, utcnow
from shared.logging import bound_context, get_logger


logger = get_logger(__name__)

StageHandler = Callable[[Job], Awaitable[StageOutcome]]


class StageWorker:
    """Worker pool for one pipeline stage."""

    def __init__(
        self,
        stage: StageType,
        queue: RedisStageQueue,
        handler: StageHandler,
        session_factory: async_sessionmaker[AsyncSession],
        concurrency: int = 1,
        timeout_seconds: float = 60.0,
        poll_interval: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.stage = stage
        self.queue = queue
        self._handler = handler
        self._session_factory = session_factory
        self._concurrency = max(1, concurrency)
        self._timeout = timeout_seconds
        self._poll_interval = poll_interval or settings.queue.poll_interval_seconds
        self._clock = clock
        self._stop = asyncio.Event()

    async def process(self, job: Job) -> RunOutcome:
        """Run one job attempt end to end (AgentRun, timeout, ack/retry)."""
        with bound_context(stage=self.stage.value, job_id=job.id, input_id=job.input_id, attempt=job.attempt):
            async with db_session(self._session_factory) as session:
                run = await AgentRunRepository(session).start(
                    self.stage, job.input_id, self._clock(), job_id=job.id, attempt=job.attempt
                )
                run_id = run.id

            try:
                result = await asyncio.wait_for(self._handler(job), timeout=self._timeout)
            except asyncio.TimeoutError:
                error = f"{self.stage.value} timed out after {self._timeout}s"
                await self._finish(run_id, RunOutcome.FAILED, error=error)
                await self.queue.retry(job, error)
                return RunOutcome.FAILED
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                await self._finish(run_id, RunOutcome.FAILED, error=error)
                if retryable(e):
                    await self.queue.retry(job, error)
                else:
                    await self.queue.ack(job)
                    logger.warning("job_failed", error=error)
                return RunOutcome.FAILED

            await self._finish(
                run_id,
                result.outcome,
                confidence=result.confidence,
                details=result.details,
            )
            await self.queue.ack(job)
            logger.info("job_completed", outcome=result.outcome.value)
            return result.outcome

    async def _finish(
        self,
        run_id: str,
        outcome: RunOutcome,
        confidence: float | None = None,
        error: str | None = None,
        details: dict | None = None,
    ) -> None:
        async with db_session(self._session_factory) as session:
            await AgentRunRepository(session).complete(
                run_id,
                outcome,
                self._clock(),
                confidence=confidence,
                error=error,
                details=details,
            )

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process ready jobs one at a time until the queue is empty."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = await self.queue.dequeue()
            if job is None:
                break
            await self.process(job)
            processed += 1
        return processed

    async def run(self) -> None:
        """Consume until `stop()` is called."""
        await self.queue.recover()
        slots = asyncio.Semaphore(self._concurrency)
        tasks: set[asyncio.Task[RunOutcome]] = set()
        logger.info("worker_started", stage=self.stage.value, concurrency=self._concurrency)

        while not self._stop.is_set():
            await slots.acquire()
            job = await self.queue.dequeue()
            if job is None:
                slots.release()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            task = asyncio.create_task(self.process(job))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            task.add_done_callback(lambda _: slots.release())

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("worker_stopped", stage=self.stage.value)

    def stop(self) -> None:
        self._stop.set()
