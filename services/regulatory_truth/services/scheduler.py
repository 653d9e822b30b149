"""
Scheduler Service
=================

Decides which sources are due and hands them to the Collector queue.

Per-source state machine: DUE -> CHECKING -> (UNCHANGED | CHANGED).
A source is due when it was never checked or when
`last_checked_at + scrape_interval_hours <= now`. Due sources are taken
T0 first and, within a tier, longest-overdue first, capped per run.
Sources with an open circuit are left alone; sources already CHECKING are
only taken over once their claim is stale.

Version: 0.1.0
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.models import CheckStatus, RiskTier, SourceModel, StageType
from services.regulatory_truth.queue.jobs import Job
from services.regulatory_truth.queue.redis_queue import RedisStageQueue
from services.regulatory_truth.repository import SourceRepository
from shared.config import settings
from shared.database import db_session, utcnow
from shared.logging import get_logger


logger = get_logger(__name__)

TIER_ORDER = {RiskTier.T0: 0, RiskTier.T1: 1, RiskTier.T2: 2, RiskTier.T3: 3}


@dataclass
class ScheduleResult:
    due: int = 0
    enqueued: list[str] = field(default_factory=list)
    already_claimed: list[str] = field(default_factory=list)


def select_due(
    sources: list[SourceModel],
    now: datetime,
    stale_before: datetime,
    limit: int,
) -> list[SourceModel]:
    """Due, closed-circuit, unclaimed sources in scheduling order."""
    due = [
        s for s in sources
        if s.active
        and not s.circuit_open(now)
        and s.is_due(now)
        and (
            s.check_status != CheckStatus.CHECKING
            or s.check_started_at is None
            or s.check_started_at < stale_before
        )
    ]
    due.sort(key=lambda s: (TIER_ORDER[s.priority_tier], -s.overdue_seconds(now)))
    return due[:limit]


class SchedulerService:
    """Periodic due-source selection feeding the Collector queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collector_queue: RedisStageQueue,
        clock: Callable[[], datetime] = utcnow,
        max_sources_per_run: int | None = None,
        stale_claim_minutes: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._queue = collector_queue
        self._clock = clock
        self._max_per_run = max_sources_per_run or settings.scheduler.max_sources_per_run
        self._stale_after = timedelta(
            minutes=stale_claim_minutes or settings.scheduler.stale_claim_minutes
        )
        self._stop = asyncio.Event()

    async def due_sources(self) -> list[SourceModel]:
        now = self._clock()
        async with db_session(self._session_factory) as session:
            sources = list(await SourceRepository(session).list_all(active_only=True))
        return select_due(sources, now, now - self._stale_after, self._max_per_run)

    async def run_once(self) -> ScheduleResult:
        """Claim every due source (CAS to CHECKING) and enqueue a Collector job."""
        due = await self.due_sources()
        result = ScheduleResult(due=len(due))
        for source in due:
            if await self.claim_and_enqueue(source.id):
                result.enqueued.append(source.id)
            else:
                result.already_claimed.append(source.id)

        logger.info(
            "schedule_tick",
            due=result.due,
            enqueued=len(result.enqueued),
            already_claimed=len(result.already_claimed),
        )
        return result

    async def claim_and_enqueue(self, source_id: str, force: bool = False) -> Job | None:
        """
        Claim a source and queue its check.

        Returns:
            The queued job, or None when another run holds the source
        """
        now = self._clock()
        async with db_session(self._session_factory) as session:
            claimed = await SourceRepository(session).claim_for_check(
                source_id, now, stale_before=now - self._stale_after
            )
        if not claimed:
            return None

        payload = {"force": True} if force else {}
        return await self._queue.enqueue(Job(stage=StageType.COLLECTOR, input_id=source_id, payload=payload))

    async def run_tier(self, tier: RiskTier) -> ScheduleResult:
        """Queue every active source of a tier, due or not (circuits still apply)."""
        now = self._clock()
        async with db_session(self._session_factory) as session:
            sources = await SourceRepository(session).list_by_tier(tier)
            ids = [s.id for s in sources if not s.circuit_open(now)]

        result = ScheduleResult(due=len(ids))
        for source_id in ids:
            if await self.claim_and_enqueue(source_id):
                result.enqueued.append(source_id)
            else:
                result.already_claimed.append(source_id)
        logger.info("tier_run_forced", tier=tier.value, enqueued=len(result.enqueued))
        return result

    async def run_loop(self, interval_seconds: float | None = None) -> None:
        """Tick until `stop()` is called."""
        interval = interval_seconds or settings.scheduler.loop_interval_seconds
        logger.info("scheduler_started", interval_seconds=interval)
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("schedule_tick_failed", error=str(e))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("scheduler_stopped")

    def stop(self) -> None:
        self._stop.set()
