"""
Admin Service
=============

Manual triggers consumed by the pipeline: force a source check, force a
run over a tier, settle a conflict, sign off a pending rule, replay dead
letters.

Version: 0.1.0
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.collector import DomainRateLimiter
from services.regulatory_truth.models import ConflictStatus, RiskTier, RuleStatus, StageType
from services.regulatory_truth.queue import Job, RedisStageQueue
from services.regulatory_truth.repository import ConflictRepository, RuleRepository, SourceRepository
from services.regulatory_truth.services.arbiter import ArbiterService
from services.regulatory_truth.services.query import rule_view
from services.regulatory_truth.services.reviewer import ReviewerService
from services.regulatory_truth.services.scheduler import SchedulerService
from shared.database import db_session
from shared.logging import get_logger
from shared.models import ConflictView, RuleView, TriggerResponse


logger = get_logger(__name__)


class AdminService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: SchedulerService,
        queues: dict[StageType, RedisStageQueue],
        reviewer: ReviewerService,
        arbiter: ArbiterService,
        rate_limiter: DomainRateLimiter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._queues = queues
        self._reviewer = reviewer
        self._arbiter = arbiter
        self._limiter = rate_limiter

    async def _submit(self, stage: StageType, input_id: str) -> Job:
        return await self._queues[stage].enqueue(Job(stage=stage, input_id=input_id))

    async def force_source_check(self, source_id: str) -> TriggerResponse:
        """Queue a check now, bypassing due-ness and the source's open circuit."""
        async with db_session(self._session_factory) as session:
            await SourceRepository(session).get(source_id)

        job = await self._scheduler.claim_and_enqueue(source_id, force=True)
        logger.info("source_check_forced", source_id=source_id, accepted=job is not None)
        if job is None:
            return TriggerResponse(accepted=False, detail="source is already being checked")
        return TriggerResponse(accepted=True, job_ids=[job.id])

    async def force_tier_run(self, tier: RiskTier) -> TriggerResponse:
        result = await self._scheduler.run_tier(tier)
        return TriggerResponse(
            accepted=bool(result.enqueued),
            job_ids=result.enqueued,
            detail=f"{len(result.enqueued)} queued, {len(result.already_claimed)} already checking",
        )

    async def resolve_conflict(
        self,
        conflict_id: str,
        prevailing_rule_id: str,
        resolved_by: str,
        notes: str | None = None,
    ) -> ConflictView:
        result = await self._arbiter.resolve_manually(conflict_id, prevailing_rule_id, resolved_by, notes)
        for rule_id in result.review_rule_ids:
            await self._submit(StageType.REVIEWER, rule_id)

        async with db_session(self._session_factory) as session:
            conflict = await ConflictRepository(session).get(conflict_id)
            return ConflictView.model_validate(conflict)

    async def approve_rule(self, rule_id: str, reviewer: str, notes: str | None = None) -> RuleView:
        rule = await self._reviewer.approve_rule(rule_id, reviewer, notes)
        await self._submit(StageType.RELEASER, "release")
        return rule_view(rule)

    async def reject_rule(self, rule_id: str, reviewer: str, reason: str) -> RuleView:
        rule = await self._reviewer.reject_rule(rule_id, reviewer, reason)
        return rule_view(rule)

    async def conflicts(self, status: ConflictStatus | None = None) -> list[ConflictView]:
        async with db_session(self._session_factory) as session:
            found = await ConflictRepository(session).list(status)
            return [ConflictView.model_validate(c) for c in found]

    async def pending_rules(self) -> list[RuleView]:
        async with db_session(self._session_factory) as session:
            found = await RuleRepository(session).with_status(RuleStatus.PENDING_REVIEW)
            return [rule_view(r) for r in found]

    async def dead_letters(self, stage: StageType, limit: int = 100) -> list[Job]:
        return await self._queues[stage].dead_letters(limit)

    async def replay_dead_letters(self, stage: StageType, job_id: str | None = None) -> int:
        return await self._queues[stage].replay_dead_letters(job_id)

    def reset_domain(self, domain: str) -> None:
        if self._limiter is not None:
            self._limiter.reset(domain)
