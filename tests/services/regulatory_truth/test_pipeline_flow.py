"""
Pipeline Flow Tests
===================

End-to-end runs from a due source to a published, cited rule, using the
scripted fetcher and model provider.

Version: 0.1.0
"""

import json
from datetime import date

import pytest
from sqlalchemy import select

from services.regulatory_truth.collector.collector import content_hash
from services.regulatory_truth.container import ServiceContainer, build_container
from services.regulatory_truth.models import (
    AgentRunModel,
    CheckStatus,
    EvidenceModel,
    RiskTier,
    RuleModel,
    RuleStatus,
    RunOutcome,
    SourceModel,
    StageType,
)
from shared.config import PipelineMode


URL = "https://narodne-novine.example.hr/pdv-prag"
EVIDENCE = (
    "Članak 3.\n"
    "Prag za ulazak u sustav PDV-a od 1. siječnja 2025. iznosi 60.000 eura godišnje."
)
QUOTE = "iznosi 60.000 eura"


def extraction_response() -> str:
    return json.dumps(
        {
            "facts": [
                {
                    "concept": "pdv-threshold",
                    "value_kind": "threshold",
                    "value": "60.000",
                    "currency": "EUR",
                    "effective_from": "2025-01-01",
                    "effective_until": None,
                    "exact_quote": QUOTE,
                    "confidence": 0.97,
                }
            ]
        }
    )


def make_container(session_factory, redis, llm, fetcher, rate_limiter, clock, mode) -> ServiceContainer:
    return build_container(
        session_factory,
        redis,
        llm_provider=llm,
        fetcher=fetcher,
        rate_limiter=rate_limiter,
        clock=clock,
        mode=mode,
        queue_prefix="flow",
    )


@pytest.fixture
def container(session_factory, redis, llm, fetcher, rate_limiter, clock) -> ServiceContainer:
    return make_container(session_factory, redis, llm, fetcher, rate_limiter, clock, PipelineMode.PIPELINE)


async def all_rows(session_factory, model: type) -> list:
    async with session_factory() as session:
        return list((await session.scalars(select(model))).all())


class TestPipelineFlow:
    """Source check through human sign-off to a published release."""

    @pytest.mark.asyncio
    async def test_source_to_published_rule(
        self, container, factory, fetcher, llm, session_factory
    ) -> None:
        source = await factory.source(url=URL, tier=RiskTier.T0)
        fetcher.add(URL, EVIDENCE)
        llm.responses = [extraction_response()]

        scheduled = await container.scheduler.run_once()
        processed = await container.pipeline.drain()

        assert scheduled.enqueued == [source.id]
        assert processed[StageType.COLLECTOR] == 1
        assert processed[StageType.EXTRACTOR] == 1
        assert processed[StageType.COMPOSER] == 1
        assert processed[StageType.REVIEWER] == 1
        assert processed[StageType.RELEASER] == 0

        # T0 rules wait for a human
        [pending] = await container.admin.pending_rules()
        assert pending.concept_slug == "vat-registration-threshold"
        assert pending.risk_tier == "T0"
        assert await container.query.rules_as_of("vat-registration-threshold", date(2025, 3, 1)) == []

        await container.admin.approve_rule(pending.id, "ana.horvat")
        processed = await container.pipeline.drain()
        assert processed[StageType.RELEASER] == 1

        [published] = await container.query.rules_as_of("pdv-threshold", date(2025, 3, 1))
        assert published.id == pending.id
        assert published.status == "PUBLISHED"
        assert published.display_value == "60000 EUR"
        [citation] = published.citations
        assert citation.source_url == URL
        assert EVIDENCE[citation.quote_start:citation.quote_end] == QUOTE

        [release] = await container.query.releases()
        assert release.version == "1.0.0"
        assert release.rule_ids == [pending.id]

    @pytest.mark.asyncio
    async def test_every_stage_attempt_audited(self, container, factory, fetcher, llm, session_factory) -> None:
        await factory.source(url=URL)
        fetcher.add(URL, EVIDENCE)
        llm.responses = [extraction_response()]

        await container.scheduler.run_once()
        await container.pipeline.drain()

        runs = await all_rows(session_factory, AgentRunModel)
        assert {r.stage for r in runs} == {
            StageType.COLLECTOR,
            StageType.EXTRACTOR,
            StageType.COMPOSER,
            StageType.REVIEWER,
        }
        assert all(r.outcome == RunOutcome.SUCCEEDED for r in runs)
        assert all(r.completed_at is not None for r in runs)

    @pytest.mark.asyncio
    async def test_unchanged_content_stops_at_collector(
        self, container, factory, fetcher, llm, clock, session_factory
    ) -> None:
        source = await factory.source(url=URL)
        fetcher.add(URL, EVIDENCE)
        llm.responses = [extraction_response()]

        await container.scheduler.run_once()
        await container.pipeline.drain()

        clock.advance(hours=25)
        await container.scheduler.run_once()
        processed = await container.pipeline.drain()

        assert processed[StageType.COLLECTOR] == 1
        assert processed[StageType.EXTRACTOR] == 0
        assert len(llm.prompts) == 1
        assert len(await all_rows(session_factory, EvidenceModel)) == 1
        assert (await factory.get(SourceModel, source.id)).check_status == CheckStatus.UNCHANGED

    @pytest.mark.asyncio
    async def test_collect_only_mode(
        self, session_factory, redis, llm, fetcher, rate_limiter, clock, factory
    ) -> None:
        """Evidence is captured but nothing downstream runs."""
        container = make_container(
            session_factory, redis, llm, fetcher, rate_limiter, clock, PipelineMode.COLLECT_ONLY
        )
        source = await factory.source(url=URL)
        fetcher.add(URL, EVIDENCE)

        await container.scheduler.run_once()
        processed = await container.pipeline.drain()

        assert processed[StageType.COLLECTOR] == 1
        assert processed[StageType.EXTRACTOR] == 0
        assert llm.prompts == []
        [evidence] = await all_rows(session_factory, EvidenceModel)
        assert evidence.source_id == source.id
        assert await all_rows(session_factory, RuleModel) == []
        assert (await factory.get(SourceModel, source.id)).check_status == CheckStatus.CHANGED

    @pytest.mark.asyncio
    async def test_rejected_rule_never_served(self, container, factory, fetcher, llm) -> None:
        await factory.source(url=URL)
        fetcher.add(URL, EVIDENCE)
        llm.responses = [extraction_response()]

        await container.scheduler.run_once()
        await container.pipeline.drain()
        [pending] = await container.admin.pending_rules()

        rejected = await container.admin.reject_rule(pending.id, "ana.horvat", "superseded by NN 2/25")
        await container.pipeline.drain()

        assert rejected.status == RuleStatus.REJECTED.value
        assert await container.query.rules_as_of("vat-registration-threshold", date(2025, 3, 1)) == []
        assert await container.query.releases() == []

    @pytest.mark.asyncio
    async def test_extraction_failure_leaves_evidence_intact(
        self, container, factory, fetcher, llm, clock, session_factory
    ) -> None:
        """An unparseable model answer fails the extractor run; the evidence row is untouched."""
        source = await factory.source(url=URL)
        fetcher.add(URL, EVIDENCE)
        llm.responses = ["Nažalost, ne mogu pročitati ovaj dokument."]

        await container.scheduler.run_once()
        processed = await container.pipeline.drain()
        [captured] = await all_rows(session_factory, EvidenceModel)

        # Replaying the extraction fails the same way
        clock.advance(minutes=5)
        await container.pipeline.submit(StageType.EXTRACTOR, captured.id)
        await container.pipeline.drain()

        assert processed[StageType.EXTRACTOR] == 1
        assert processed[StageType.COMPOSER] == 0
        extractor_runs = [
            r for r in await all_rows(session_factory, AgentRunModel) if r.stage == StageType.EXTRACTOR
        ]
        assert len(extractor_runs) == 2
        assert all(r.outcome == RunOutcome.FAILED for r in extractor_runs)
        assert all("ContentError" in r.error for r in extractor_runs)

        [evidence] = await all_rows(session_factory, EvidenceModel)
        assert evidence.id == captured.id
        assert evidence.source_id == source.id
        assert evidence.raw_content == EVIDENCE
        assert evidence.content_hash == content_hash(EVIDENCE)
        assert evidence.fetched_at == captured.fetched_at
        assert await all_rows(session_factory, RuleModel) == []
