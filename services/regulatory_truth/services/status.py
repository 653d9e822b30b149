"""
Status Service
==============

Operational snapshot of the pipeline and its 0-100 health score.

    score = 100
            - 50 * failure rate (all stage runs in the trailing window)
            - 25 * min(1, pending reviews / backlog ceiling)
            - 25 * overdue share of active sources

Levels: healthy (>= 80), degraded (>= 60), critical (< 60).

Version: 0.1.0
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.collector import DomainRateLimiter
from services.regulatory_truth.models import RuleStatus, RunOutcome, StageType
from services.regulatory_truth.repository import (
    AgentRunRepository,
    ConflictRepository,
    ReleaseRepository,
    RuleRepository,
    SourceRepository,
)
from shared.config import settings
from shared.database import db_session, utcnow
from shared.logging import get_logger
from shared.models import HealthScore, ReleaseView, SourceStatus, StageStats, StatusSnapshot


logger = get_logger(__name__)

QueueDepths = Callable[[], Awaitable[dict[str, dict[str, int]]]]


def health_score(
    failure_rate: float,
    pending_review: int,
    overdue_sources: int,
    active_sources: int,
    pending_ceiling: int | None = None,
) -> HealthScore:
    ceiling = pending_ceiling or settings.health.pending_review_ceiling
    backlog_share = min(1.0, pending_review / ceiling) if ceiling else 0.0
    overdue_share = overdue_sources / active_sources if active_sources else 0.0

    score = 100.0 - 50.0 * failure_rate - 25.0 * backlog_share - 25.0 * overdue_share
    score = round(max(0.0, min(100.0, score)), 1)

    if score < settings.health.critical_below:
        level = "critical"
    elif score < settings.health.degraded_below:
        level = "degraded"
    else:
        level = "healthy"

    return HealthScore(
        score=score,
        level=level,
        failure_rate=round(failure_rate, 4),
        pending_review=pending_review,
        overdue_sources=overdue_sources,
        active_sources=active_sources,
    )


class StatusService:
    """Read-only operational status."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rate_limiter: DomainRateLimiter | None = None,
        queue_depths: QueueDepths | None = None,
        clock: Callable[[], datetime] = utcnow,
        window_hours: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._limiter = rate_limiter
        self._queue_depths = queue_depths
        self._clock = clock
        self._window_hours = window_hours or settings.health.window_hours

    async def snapshot(self) -> StatusSnapshot:
        now = self._clock()
        since = now - timedelta(hours=self._window_hours)

        async with db_session(self._session_factory) as session:
            sources = await SourceRepository(session).list_all(active_only=True)
            counts = await AgentRunRepository(session).stage_counts(since)
            open_conflicts = await ConflictRepository(session).count_open()
            rule_counts = await RuleRepository(session).count_by_status()
            latest = await ReleaseRepository(session).latest()

        source_views = [
            SourceStatus(
                id=s.id,
                name=s.name,
                url=s.url,
                priority_tier=s.priority_tier.value,
                check_status=s.check_status.value,
                last_checked_at=s.last_checked_at,
                consecutive_errors=s.consecutive_errors or 0,
                circuit_open_until=s.circuit_open_until,
                last_error=s.last_error,
                overdue=s.is_due(now),
            )
            for s in sources
        ]
        stages = [self._stage_stats(stage, counts.get(stage, {})) for stage in StageType]

        finished = sum(s.total for s in stages)
        failed = sum(s.failed for s in stages)
        pending = rule_counts.get(RuleStatus.PENDING_REVIEW, 0)
        overdue = sum(1 for v in source_views if v.overdue)
        health = health_score(
            failed / finished if finished else 0.0,
            pending,
            overdue,
            len(source_views),
        )

        rate_limits: dict[str, dict[str, Any]] = self._limiter.health() if self._limiter else {}
        queues = await self._queue_depths() if self._queue_depths else {}

        if health.level != "healthy":
            logger.warning("pipeline_health_degraded", score=health.score, level=health.level)

        return StatusSnapshot(
            generated_at=now,
            window_hours=self._window_hours,
            sources=source_views,
            stages=stages,
            open_conflicts=open_conflicts,
            rule_counts={status.value: count for status, count in rule_counts.items()},
            latest_release=ReleaseView.model_validate(latest) if latest else None,
            rate_limits=rate_limits,
            queues=queues,
            health=health,
        )

    @staticmethod
    def _stage_stats(stage: StageType, outcomes: dict[RunOutcome, int]) -> StageStats:
        # Runs still in progress are neither successes nor failures yet
        finished = {o: n for o, n in outcomes.items() if o != RunOutcome.RUNNING}
        return StageStats(
            stage=stage.value,
            total=sum(finished.values()),
            failed=finished.get(RunOutcome.FAILED, 0),
            outcomes={o.value: n for o, n in outcomes.items()},
        )
