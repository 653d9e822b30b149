"""
Pipeline Wiring
===============

Connects the stage services to their queues.

Hand-offs:
    collector --(CHANGED)--> extractor --(per concept)--> composer
    composer --(new/updated rules)--> reviewer
    reviewer --(APPROVE)--> releaser
    reviewer --(open conflict)--> arbiter --(affected rules)--> reviewer

In collect-only mode the chain stops after evidence capture.

Version: 0.1.0
"""

import asyncio
from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.collector import CollectOutcome, Collector
from services.regulatory_truth.extraction import Extractor
from services.regulatory_truth.models import ResolutionStrategy, RunOutcome, StageType
from services.regulatory_truth.queue.jobs import Job, StageOutcome
from services.regulatory_truth.queue.redis_queue import RedisStageQueue
from services.regulatory_truth.queue.worker import StageHandler, StageWorker
from services.regulatory_truth.services.arbiter import ArbiterService
from services.regulatory_truth.services.composer import ComposerService
from services.regulatory_truth.services.releaser import ReleaserService
from services.regulatory_truth.services.reviewer import ReviewDecision, ReviewerService
from shared.config import PipelineMode, settings
from shared.logging import get_logger


logger = get_logger(__name__)

STAGE_ORDER = (
    StageType.COLLECTOR,
    StageType.EXTRACTOR,
    StageType.COMPOSER,
    StageType.REVIEWER,
    StageType.ARBITER,
    StageType.RELEASER,
)

RELEASE_INPUT = "release"


@dataclass
class StageServices:
    collector: Collector
    extractor: Extractor
    composer: ComposerService
    reviewer: ReviewerService
    arbiter: ArbiterService
    releaser: ReleaserService


class Pipeline:
    """Per-stage queues, handlers and worker pools."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        services: StageServices,
        mode: PipelineMode | None = None,
        queue_prefix: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.services = services
        self.mode = mode or settings.scheduler.mode
        self.queues = {
            stage: RedisStageQueue(redis, stage, prefix=queue_prefix) for stage in STAGE_ORDER
        }
        self._handlers: dict[StageType, StageHandler] = {
            StageType.COLLECTOR: self._collect,
            StageType.EXTRACTOR: self._extract,
            StageType.COMPOSER: self._compose,
            StageType.REVIEWER: self._review,
            StageType.ARBITER: self._arbitrate,
            StageType.RELEASER: self._release,
        }
        self.workers = {stage: self._build_worker(stage) for stage in STAGE_ORDER}

    def _build_worker(self, stage: StageType) -> StageWorker:
        q = settings.queue
        return StageWorker(
            stage,
            self.queues[stage],
            self._handlers[stage],
            self._session_factory,
            concurrency=getattr(q, f"{stage.value}_concurrency"),
            timeout_seconds=getattr(q, f"{stage.value}_timeout"),
        )

    async def submit(self, stage: StageType, input_id: str, **payload: object) -> Job:
        return await self.queues[stage].enqueue(Job(stage=stage, input_id=input_id, payload=payload))

    # =========================================================================
    # Stage handlers
    # =========================================================================

    async def _collect(self, job: Job) -> StageOutcome:
        result = await self.services.collector.check_source(
            job.input_id, force=bool(job.payload.get("force", False))
        )
        details = {"outcome": result.outcome.value, "evidence_id": result.evidence_id}
        if result.outcome == CollectOutcome.SKIPPED:
            return StageOutcome(outcome=RunOutcome.SKIPPED, details={**details, "reason": result.reason})
        if result.outcome == CollectOutcome.UNCHANGED:
            return StageOutcome(outcome=RunOutcome.NO_OP, details=details)

        if self.mode == PipelineMode.PIPELINE and result.evidence_id:
            await self.submit(StageType.EXTRACTOR, result.evidence_id)
        return StageOutcome(details=details)

    async def _extract(self, job: Job) -> StageOutcome:
        result = await self.services.extractor.extract(job.input_id)
        for concept in result.concepts:
            await self.submit(StageType.COMPOSER, concept)
        return StageOutcome(
            details={
                "created": len(result.created_ids),
                "existing": len(result.existing_ids),
                "rejections": dict(result.rejections),
                "concepts": result.concepts,
            }
        )

    async def _compose(self, job: Job) -> StageOutcome:
        result = await self.services.composer.compose(job.input_id)
        changed = set(result.changed_rule_ids)
        for rule_id in result.changed_rule_ids:
            await self.submit(StageType.REVIEWER, rule_id)
        if result.conflicts and not changed:
            for conflict_id in result.conflicts:
                await self.submit(StageType.ARBITER, conflict_id)
        return StageOutcome(
            outcome=RunOutcome.NO_OP if result.is_noop else RunOutcome.SUCCEEDED,
            details={
                "created": result.created,
                "updated": result.updated,
                "conflicts": result.conflicts,
            },
        )

    async def _review(self, job: Job) -> StageOutcome:
        result = await self.services.reviewer.review(job.input_id)
        if result.decision == ReviewDecision.APPROVE:
            await self.submit(StageType.RELEASER, RELEASE_INPUT)
        elif result.decision == ReviewDecision.ARBITRATE:
            for conflict_id in result.conflict_ids:
                await self.submit(StageType.ARBITER, conflict_id)
        return StageOutcome(
            outcome=RunOutcome.NO_OP if result.decision == ReviewDecision.SKIPPED else RunOutcome.SUCCEEDED,
            confidence=result.confidence,
            details={"decision": result.decision.value, "reasons": result.reasons},
        )

    async def _arbitrate(self, job: Job) -> StageOutcome:
        result = await self.services.arbiter.arbitrate(job.input_id)
        for rule_id in result.review_rule_ids:
            await self.submit(StageType.REVIEWER, rule_id)
        return StageOutcome(
            outcome=RunOutcome.NO_OP if result.strategy is None else RunOutcome.SUCCEEDED,
            details={
                "strategy": result.strategy.value if result.strategy else None,
                "escalated": result.strategy == ResolutionStrategy.ESCALATE,
                "replacements": result.replacement_rule_ids,
            },
        )

    async def _release(self, job: Job) -> StageOutcome:
        result = await self.services.releaser.release()
        return StageOutcome(
            outcome=RunOutcome.SUCCEEDED if result.released else RunOutcome.NO_OP,
            details={
                "version": result.version,
                "published": result.published,
                "held_back": result.held_back,
            },
        )

    # =========================================================================
    # Running
    # =========================================================================

    async def drain(self, max_rounds: int = 50) -> dict[StageType, int]:
        """
        Process queued work stage by stage until every ready queue is empty.

        Retries waiting in a delayed set are not waited for.
        """
        processed = {stage: 0 for stage in STAGE_ORDER}
        for _ in range(max_rounds):
            round_total = 0
            for stage in STAGE_ORDER:
                count = await self.workers[stage].drain()
                processed[stage] += count
                round_total += count
            if round_total == 0:
                break
        return processed

    async def run(self) -> None:
        """Run every stage's worker pool until `stop()`."""
        logger.info("pipeline_started", mode=self.mode.value)
        await asyncio.gather(*(worker.run() for worker in self.workers.values()))

    def stop(self) -> None:
        for worker in self.workers.values():
            worker.stop()
