"""
Test Configuration
==================

Pytest fixtures for the regulatory truth pipeline.

Every test gets its own in-memory SQLite database and an in-memory Redis,
a frozen clock, a scripted model provider and a scripted fetcher, so the
pipeline runs end to end without any network.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["KAFKA_EVENTS_ENABLED"] = "false"

import services.regulatory_truth.models  # noqa: E402,F401
from services.regulatory_truth.collector import (  # noqa: E402
    DomainRateLimiter,
    FetchedContent,
    RateLimitConfig,
)
from services.regulatory_truth.errors import FetchError  # noqa: E402
from services.regulatory_truth.extraction import pointer_fingerprint  # noqa: E402
from services.regulatory_truth.models import (  # noqa: E402
    CheckStatus,
    EvidenceModel,
    RiskTier,
    RuleModel,
    RuleStatus,
    SourceModel,
    SourcePointerModel,
    ThresholdValue,
)
from services.regulatory_truth.services.composer import composition_fingerprint  # noqa: E402
from shared.database import Base, make_session_factory  # noqa: E402
from shared.llm import LLMProvider  # noqa: E402
from shared.llm.provider import LLMMessage, LLMResponse  # noqa: E402


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


# =============================================================================
# Clock, model provider and fetcher doubles
# =============================================================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class ScriptedLLMProvider(LLMProvider):
    """Returns queued responses in order; repeats the last one when exhausted."""

    def __init__(self, responses: list[str | Exception] | None = None) -> None:
        self.responses: list[str | Exception] = list(responses or [])
        self.prompts: list[str] = []

    @property
    def name(self) -> str:
        return "scripted"

    @property
    def model(self) -> str:
        return "scripted-1"

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.prompts.append(messages[-1].content)
        if not self.responses:
            raise AssertionError("no scripted response left")
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMResponse(content=response, model=self.model, provider=self.name)


class ScriptedFetcher:
    """Serves queued bodies (or raises queued errors) per URL."""

    def __init__(self) -> None:
        self.scripts: dict[str, list[str | Exception]] = {}
        self.calls: list[str] = []

    def add(self, url: str, *results: str | Exception) -> None:
        self.scripts.setdefault(url, []).extend(results)

    def fail(self, url: str, times: int, status_code: int = 503) -> None:
        for _ in range(times):
            self.add(url, FetchError(f"HTTP {status_code} fetching {url}", url=url, status_code=status_code))

    async def fetch(self, url: str) -> FetchedContent:
        self.calls.append(url)
        queue = self.scripts.get(url)
        if not queue:
            raise AssertionError(f"unexpected fetch of {url}")
        result = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return FetchedContent(url=url, status_code=200, content=result, content_type="text/plain")

    async def close(self) -> None:
        pass


# =============================================================================
# Infrastructure fixtures
# =============================================================================


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def redis() -> AsyncGenerator[Any, None]:
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def llm() -> ScriptedLLMProvider:
    return ScriptedLLMProvider()


@pytest.fixture
def fetcher() -> ScriptedFetcher:
    return ScriptedFetcher()


@pytest.fixture
def rate_limiter() -> DomainRateLimiter:
    """Limiter without politeness delays; the circuit breaker still counts."""

    async def no_sleep(_: float) -> None:
        return None

    return DomainRateLimiter(
        RateLimitConfig(
            request_delay_seconds=0.0,
            max_requests_per_minute=10_000,
            max_concurrent_requests=1,
            circuit_breaker_threshold=5,
            circuit_breaker_cooldown_seconds=3600.0,
        ),
        sleep=no_sleep,
    )


# =============================================================================
# Record factory
# =============================================================================


class Factory:
    """Inserts sources, evidence, pointers and rules directly."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: FrozenClock) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _add(self, obj: Any) -> Any:
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def source(
        self,
        url: str | None = None,
        tier: RiskTier = RiskTier.T1,
        **fields: Any,
    ) -> SourceModel:
        n = self._next()
        values: dict[str, Any] = {
            "name": f"Source {n}",
            "url": url or f"https://gov{n}.example.hr/page",
            "priority_tier": tier,
            "scrape_interval_hours": 24,
            "active": True,
            "consecutive_errors": 0,
            "check_status": CheckStatus.DUE,
            "created_at": self.clock(),
            "updated_at": self.clock(),
        }
        values.update(fields)
        return await self._add(SourceModel(**values))

    async def evidence(
        self,
        source: SourceModel,
        content: str,
        fetched_at: datetime | None = None,
    ) -> EvidenceModel:
        return await self._add(
            EvidenceModel(
                source_id=source.id,
                url=source.url,
                raw_content=content,
                content_hash=f"{self._next():064d}",
                content_type="text/plain",
                http_status=200,
                fetched_at=fetched_at or self.clock(),
            )
        )

    async def pointer(
        self,
        evidence: EvidenceModel,
        concept: str,
        value: dict[str, Any],
        quote: str,
        effective_from: date,
        effective_until: date | None = None,
        confidence: float = 0.97,
    ) -> SourcePointerModel:
        start = evidence.raw_content.index(quote)
        end = start + len(quote)
        return await self._add(
            SourcePointerModel(
                evidence_id=evidence.id,
                concept_slug=concept,
                value=value,
                effective_from=effective_from,
                effective_until=effective_until,
                exact_quote=quote,
                quote_start=start,
                quote_end=end,
                confidence=confidence,
                extractor_model="scripted-1",
                fingerprint=pointer_fingerprint(
                    evidence.id, concept, value, effective_from, effective_until, start, end
                ),
                extracted_at=self.clock(),
            )
        )

    async def rule(
        self,
        concept: str = "vat-registration-threshold",
        value: dict[str, Any] | None = None,
        effective_from: date = date(2025, 1, 1),
        effective_until: date | None = None,
        status: RuleStatus = RuleStatus.APPROVED,
        tier: RiskTier = RiskTier.T3,
        pointers: list[SourcePointerModel] | None = None,
        **fields: Any,
    ) -> RuleModel:
        value = value or threshold(60000)
        pointer_ids = sorted(p.id for p in pointers or [])
        window = (effective_from, effective_until)
        values: dict[str, Any] = {
            "concept_slug": concept,
            "value": value,
            "effective_from": effective_from,
            "effective_until": effective_until,
            "composed_from": effective_from,
            "composed_until": effective_until,
            "status": status,
            "risk_tier": tier,
            "confidence": 0.97,
            "source_pointer_ids": pointer_ids,
            "primary_pointer_id": pointer_ids[0] if pointer_ids else None,
            "fingerprint": composition_fingerprint(concept, window, value, pointer_ids + [str(self._next())]),
            "created_at": self.clock(),
            "updated_at": self.clock(),
        }
        values.update(fields)
        return await self._add(RuleModel(**values))

    async def get(self, model: type, record_id: str) -> Any:
        async with self.session_factory() as session:
            return await session.get(model, record_id)


@pytest.fixture
def factory(session_factory: async_sessionmaker[AsyncSession], clock: FrozenClock) -> Factory:
    return Factory(session_factory, clock)


def threshold(amount: int | str, currency: str = "EUR") -> dict[str, Any]:
    """Stored JSON form of a threshold value."""
    return ThresholdValue(amount=amount, currency=currency).to_json()


@pytest.fixture
def as_threshold() -> Any:
    return threshold
