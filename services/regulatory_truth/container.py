"""
Service Container
=================

Builds the stage services, queues and API surfaces from one set of
clients, so the HTTP app and the worker process are wired identically.

Version: 0.1.0
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.collector import Collector, DomainRateLimiter, Fetcher, HttpFetcher
from services.regulatory_truth.extraction import Extractor
from services.regulatory_truth.models import StageType
from services.regulatory_truth.queue.pipeline import Pipeline, StageServices
from services.regulatory_truth.services import (
    AdminService,
    ArbiterService,
    ComposerService,
    ReleaserService,
    ReviewerService,
    RuleQueryService,
    SchedulerService,
    StatusService,
)
from services.regulatory_truth.taxonomy import ConceptTaxonomy, default_taxonomy
from shared.config import PipelineMode
from shared.database import utcnow
from shared.llm import LLMProvider, get_llm_provider


@dataclass
class ServiceContainer:
    pipeline: Pipeline
    scheduler: SchedulerService
    query: RuleQueryService
    status: StatusService
    admin: AdminService
    fetcher: Fetcher
    rate_limiter: DomainRateLimiter

    async def close(self) -> None:
        close = getattr(self.fetcher, "close", None)
        if close is not None:
            await close()


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis,
    llm_provider: LLMProvider | None = None,
    fetcher: Fetcher | None = None,
    rate_limiter: DomainRateLimiter | None = None,
    taxonomy: ConceptTaxonomy = default_taxonomy,
    clock: Callable[[], datetime] = utcnow,
    mode: PipelineMode | None = None,
    queue_prefix: str | None = None,
) -> ServiceContainer:
    fetcher = fetcher or HttpFetcher()
    rate_limiter = rate_limiter or DomainRateLimiter()

    stages = StageServices(
        collector=Collector(session_factory, fetcher, rate_limiter, clock=clock),
        extractor=Extractor(
            session_factory, llm_provider or get_llm_provider(), taxonomy=taxonomy, clock=clock
        ),
        composer=ComposerService(session_factory, redis, taxonomy=taxonomy, clock=clock),
        reviewer=ReviewerService(session_factory, clock=clock),
        arbiter=ArbiterService(session_factory, clock=clock),
        releaser=ReleaserService(session_factory, redis, clock=clock),
    )
    pipeline = Pipeline(session_factory, redis, stages, mode=mode, queue_prefix=queue_prefix)
    scheduler = SchedulerService(session_factory, pipeline.queues[StageType.COLLECTOR], clock=clock)

    async def queue_depths() -> dict[str, dict[str, int]]:
        return {stage.value: await q.depth() for stage, q in pipeline.queues.items()}

    return ServiceContainer(
        pipeline=pipeline,
        scheduler=scheduler,
        query=RuleQueryService(session_factory, taxonomy),
        status=StatusService(
            session_factory, rate_limiter=rate_limiter, queue_depths=queue_depths, clock=clock
        ),
        admin=AdminService(
            session_factory,
            scheduler,
            pipeline.queues,
            stages.reviewer,
            stages.arbiter,
            rate_limiter=rate_limiter,
        ),
        fetcher=fetcher,
        rate_limiter=rate_limiter,
    )
