"""Tests for the pipeline status snapshot."""

from datetime import timedelta

import pytest

from services.regulatory_truth.models import CheckStatus, RuleStatus, RunOutcome, StageType
from services.regulatory_truth.repository import AgentRunRepository, ConflictRepository
from services.regulatory_truth.services.status import StatusService
from shared.database import db_session


@pytest.fixture
def status_service(session_factory, rate_limiter, clock) -> StatusService:
    async def depths() -> dict[str, dict[str, int]]:
        return {"collector": {"ready": 2, "processing": 0, "delayed": 1, "dead": 0}}

    return StatusService(
        session_factory,
        rate_limiter=rate_limiter,
        queue_depths=depths,
        clock=clock,
        window_hours=24,
    )


@pytest.fixture
def record_run(session_factory):
    async def record(stage: StageType, outcome: RunOutcome | None, started_at) -> None:
        async with db_session(session_factory) as session:
            runs = AgentRunRepository(session)
            run = await runs.start(stage, "input-1", started_at)
            if outcome is not None:
                await runs.complete(run.id, outcome, started_at)

    return record


class TestSnapshot:
    """Tests for StatusService.snapshot."""

    @pytest.mark.asyncio
    async def test_empty_pipeline_is_healthy(self, status_service) -> None:
        snapshot = await status_service.snapshot()

        assert snapshot.health.score == 100.0
        assert snapshot.health.level == "healthy"
        assert snapshot.sources == []
        assert snapshot.latest_release is None
        assert [s.stage for s in snapshot.stages] == [s.value for s in StageType]

    @pytest.mark.asyncio
    async def test_stage_outcomes_in_window(self, status_service, record_run, factory, clock) -> None:
        await factory.source(last_checked_at=clock(), check_status=CheckStatus.UNCHANGED)
        for outcome in (RunOutcome.SUCCEEDED, RunOutcome.SUCCEEDED, RunOutcome.NO_OP, RunOutcome.FAILED):
            await record_run(StageType.COLLECTOR, outcome, clock())
        await record_run(StageType.COLLECTOR, RunOutcome.FAILED, clock() - timedelta(hours=30))

        snapshot = await status_service.snapshot()

        collector = next(s for s in snapshot.stages if s.stage == "collector")
        assert collector.total == 4
        assert collector.failed == 1
        assert collector.outcomes == {"SUCCEEDED": 2, "NO_OP": 1, "FAILED": 1}
        assert snapshot.health.failure_rate == 0.25
        assert snapshot.health.score == 87.5

    @pytest.mark.asyncio
    async def test_running_attempts_not_counted(self, status_service, record_run, clock) -> None:
        await record_run(StageType.EXTRACTOR, None, clock())

        snapshot = await status_service.snapshot()

        extractor = next(s for s in snapshot.stages if s.stage == "extractor")
        assert extractor.total == 0
        assert extractor.outcomes == {"RUNNING": 1}

    @pytest.mark.asyncio
    async def test_overdue_and_backlog_lower_score(self, status_service, factory, clock) -> None:
        await factory.source()
        await factory.source(last_checked_at=clock(), check_status=CheckStatus.UNCHANGED)
        for _ in range(5):
            await factory.rule(status=RuleStatus.PENDING_REVIEW)

        snapshot = await status_service.snapshot()

        assert [s.overdue for s in snapshot.sources].count(True) == 1
        assert snapshot.rule_counts == {"PENDING_REVIEW": 5}
        # 100 - 25 * (5 / 50) - 25 * (1 / 2)
        assert snapshot.health.score == 85.0

    @pytest.mark.asyncio
    async def test_conflicts_limiter_and_queues(
        self, status_service, session_factory, factory, rate_limiter, clock
    ) -> None:
        first = await factory.rule(status=RuleStatus.DRAFT)
        second = await factory.rule(status=RuleStatus.DRAFT)
        async with db_session(session_factory) as session:
            await ConflictRepository(session).create(
                "vat-registration-threshold", [first.id, second.id], "overlap", clock()
            )
        rate_limiter.record_failure("porezna-uprava.gov.hr", "HTTP 503")

        snapshot = await status_service.snapshot()

        assert snapshot.open_conflicts == 1
        assert snapshot.rate_limits["porezna-uprava.gov.hr"]["consecutive_errors"] == 1
        assert snapshot.queues["collector"]["delayed"] == 1

    @pytest.mark.asyncio
    async def test_circuit_state_per_source(self, status_service, factory, clock) -> None:
        await factory.source(
            consecutive_errors=5,
            circuit_open_until=clock() + timedelta(hours=1),
            last_error="HTTP 503",
        )

        [source] = (await status_service.snapshot()).sources

        assert source.consecutive_errors == 5
        assert source.circuit_open_until == clock() + timedelta(hours=1)
        assert source.last_error == "HTTP 503"
