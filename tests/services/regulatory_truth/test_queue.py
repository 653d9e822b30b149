"""Tests for the Redis stage queue and the stage worker."""

import asyncio

import pytest
from sqlalchemy import select

from services.regulatory_truth.errors import ContentError, TransientError
from services.regulatory_truth.models import AgentRunModel, RunOutcome, StageType
from services.regulatory_truth.queue import Job, RedisStageQueue, StageOutcome, StageWorker


class QueueClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def queue_clock() -> QueueClock:
    return QueueClock()


@pytest.fixture
def queue(redis, queue_clock) -> RedisStageQueue:
    return RedisStageQueue(
        redis,
        StageType.EXTRACTOR,
        prefix="test",
        max_attempts=3,
        base_delay_seconds=2.0,
        max_delay_seconds=60.0,
        clock=queue_clock,
        rng=lambda: 1.0,
    )


def extractor_job(input_id: str = "ev-1") -> Job:
    return Job(stage=StageType.EXTRACTOR, input_id=input_id)


async def runs(session_factory) -> list[AgentRunModel]:
    async with session_factory() as session:
        return list((await session.scalars(select(AgentRunModel))).all())


class TestRedisStageQueue:
    """Tests for RedisStageQueue."""

    @pytest.mark.asyncio
    async def test_fifo(self, queue) -> None:
        first = await queue.enqueue(extractor_job("ev-1"))
        second = await queue.enqueue(extractor_job("ev-2"))

        assert (await queue.dequeue()).id == first.id
        assert (await queue.dequeue()).id == second.id
        assert await queue.dequeue() is None
        assert (await queue.depth())["processing"] == 2

    @pytest.mark.asyncio
    async def test_ack_clears_processing(self, queue) -> None:
        await queue.enqueue(extractor_job())
        job = await queue.dequeue()

        await queue.ack(job)

        assert await queue.depth() == {"ready": 0, "processing": 0, "delayed": 0, "dead": 0}

    @pytest.mark.asyncio
    async def test_wrong_stage_rejected(self, queue) -> None:
        with pytest.raises(ValueError):
            await queue.enqueue(Job(stage=StageType.COMPOSER, input_id="vat-standard-rate"))

    @pytest.mark.asyncio
    async def test_retry_waits_for_backoff(self, queue, queue_clock) -> None:
        """A retried job only becomes ready once its delay has passed."""
        await queue.enqueue(extractor_job())
        job = await queue.dequeue()

        assert await queue.retry(job, "timeout")
        assert await queue.dequeue() is None

        queue_clock.now += 2.0
        retried = await queue.dequeue()

        assert retried.id == job.id
        assert retried.attempt == 2
        assert retried.last_error == "timeout"

    @pytest.mark.asyncio
    async def test_exhausted_job_dead_lettered(self, queue, queue_clock) -> None:
        await queue.enqueue(extractor_job())
        for _ in range(2):
            job = await queue.dequeue()
            await queue.retry(job, "HTTP 503")
            queue_clock.now += 60.0

        job = await queue.dequeue()
        assert job.attempt == 3
        assert not await queue.retry(job, "HTTP 503")

        [dead] = await queue.dead_letters()
        assert dead.id == job.id
        assert dead.last_error == "HTTP 503"
        assert dead.dead_lettered_at is not None
        assert await queue.depth() == {"ready": 0, "processing": 0, "delayed": 0, "dead": 1}

    @pytest.mark.asyncio
    async def test_replay_resets_attempts(self, queue) -> None:
        job = extractor_job()
        await queue.dead_letter(job.model_copy(update={"attempt": 3}), "gave up")

        replayed = await queue.replay_dead_letters()

        assert replayed == 1
        fresh = await queue.dequeue()
        assert fresh.id == job.id
        assert fresh.attempt == 1
        assert await queue.dead_letters() == []

    @pytest.mark.asyncio
    async def test_replay_single_job(self, queue) -> None:
        keep = extractor_job("ev-1")
        replay = extractor_job("ev-2")
        await queue.dead_letter(keep, "x")
        await queue.dead_letter(replay, "y")

        assert await queue.replay_dead_letters(replay.id) == 1
        assert [j.id for j in await queue.dead_letters()] == [keep.id]

    @pytest.mark.asyncio
    async def test_recover_requeues_processing(self, queue) -> None:
        """Jobs orphaned by a crashed worker go back to ready."""
        await queue.enqueue(extractor_job())
        await queue.dequeue()

        assert await queue.recover() == 1
        assert (await queue.depth())["ready"] == 1


# =============================================================================
# Stage Worker
# =============================================================================


class TestStageWorker:
    """Tests for StageWorker.process and drain."""

    def make_worker(self, queue, session_factory, clock, handler, timeout: float = 5.0) -> StageWorker:
        return StageWorker(
            StageType.EXTRACTOR,
            queue,
            handler,
            session_factory,
            timeout_seconds=timeout,
            poll_interval=0.01,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_success_records_run(self, queue, session_factory, clock) -> None:
        async def handler(job: Job) -> StageOutcome:
            return StageOutcome(confidence=0.9, details={"pointers": 2})

        worker = self.make_worker(queue, session_factory, clock, handler)
        await queue.enqueue(extractor_job("ev-9"))

        outcome = await worker.process(await queue.dequeue())

        assert outcome == RunOutcome.SUCCEEDED
        [run] = await runs(session_factory)
        assert run.input_id == "ev-9"
        assert run.outcome == RunOutcome.SUCCEEDED
        assert run.details == {"pointers": 2}
        assert run.completed_at == clock()
        assert (await queue.depth())["processing"] == 0

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, queue, session_factory, clock) -> None:
        async def handler(job: Job) -> StageOutcome:
            raise TransientError("model unavailable")

        worker = self.make_worker(queue, session_factory, clock, handler)
        await queue.enqueue(extractor_job())

        outcome = await worker.process(await queue.dequeue())

        assert outcome == RunOutcome.FAILED
        assert (await queue.depth())["delayed"] == 1
        [run] = await runs(session_factory)
        assert run.outcome == RunOutcome.FAILED
        assert "model unavailable" in run.error

    @pytest.mark.asyncio
    async def test_content_error_not_retried(self, queue, session_factory, clock) -> None:
        """Bad content is recorded as a failed run and dropped from the queue."""
        async def handler(job: Job) -> StageOutcome:
            raise ContentError("no extractable facts")

        worker = self.make_worker(queue, session_factory, clock, handler)
        await queue.enqueue(extractor_job())

        await worker.process(await queue.dequeue())

        assert await queue.depth() == {"ready": 0, "processing": 0, "delayed": 0, "dead": 0}

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, queue, session_factory, clock) -> None:
        async def handler(job: Job) -> StageOutcome:
            await asyncio.sleep(1.0)
            return StageOutcome()

        worker = self.make_worker(queue, session_factory, clock, handler, timeout=0.05)
        await queue.enqueue(extractor_job())

        outcome = await worker.process(await queue.dequeue())

        assert outcome == RunOutcome.FAILED
        assert (await queue.depth())["delayed"] == 1
        [run] = await runs(session_factory)
        assert "timed out" in run.error

    @pytest.mark.asyncio
    async def test_drain(self, queue, session_factory, clock) -> None:
        seen: list[str] = []

        async def handler(job: Job) -> StageOutcome:
            seen.append(job.input_id)
            return StageOutcome(outcome=RunOutcome.NO_OP)

        worker = self.make_worker(queue, session_factory, clock, handler)
        for i in range(3):
            await queue.enqueue(extractor_job(f"ev-{i}"))

        assert await worker.drain() == 3
        assert seen == ["ev-0", "ev-1", "ev-2"]

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, queue, session_factory, clock) -> None:
        done = asyncio.Event()

        async def handler(job: Job) -> StageOutcome:
            done.set()
            return StageOutcome()

        worker = self.make_worker(queue, session_factory, clock, handler)
        await queue.enqueue(extractor_job())

        task = asyncio.create_task(worker.run())
        await asyncio.wait_for(done.wait(), timeout=2.0)
        worker.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert (await queue.depth())["ready"] == 0
