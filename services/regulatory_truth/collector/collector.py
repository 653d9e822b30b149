"""
Collector
=========

Checks one source: rate-limited fetch, content hashing, and immutable
evidence capture.

Evidence is written as soon as a fetch returns changed content and never
depends on anything downstream. Fetch failures count against the source;
at the threshold its circuit opens and later checks are skipped without
touching the network until the cooldown has passed.

Version: 0.1.0
"""

import hashlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.collector.fetcher import Fetcher
from services.regulatory_truth.collector.rate_limiter import DomainRateLimiter, domain_of
from services.regulatory_truth.errors import CircuitOpenError, FetchError
from services.regulatory_truth.models import CheckStatus, EvidenceModel
from services.regulatory_truth.repository import EvidenceRepository, SourceRepository
from shared.config import settings
from shared.database import Topics, db_session, publish_event, utcnow
from shared.logging import get_logger


logger = get_logger(__name__)


class CollectOutcome(str, Enum):
    CHANGED = "CHANGED"
    UNCHANGED = "UNCHANGED"
    SKIPPED = "SKIPPED"


@dataclass
class CollectResult:
    source_id: str
    outcome: CollectOutcome
    evidence_id: str | None = None
    content_hash: str | None = None
    reason: str | None = None


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class Collector:
    """Evidence capture for one source at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: Fetcher,
        rate_limiter: DomainRateLimiter,
        clock: Callable[[], datetime] = utcnow,
        circuit_threshold: int | None = None,
        circuit_cooldown: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._fetcher = fetcher
        self._limiter = rate_limiter
        self._clock = clock
        self._threshold = circuit_threshold or settings.collector.circuit_breaker_threshold
        self._cooldown = circuit_cooldown or timedelta(
            seconds=settings.collector.circuit_breaker_cooldown_seconds
        )

    async def check_source(self, source_id: str, force: bool = False) -> CollectResult:
        """
        Check a source for new content.

        Args:
            source_id: Source to check
            force: ignore the source's open circuit (manual trigger); the
                per-domain limiter still applies

        Returns:
            CollectResult with CHANGED (new evidence id), UNCHANGED or SKIPPED

        Raises:
            FetchError: the fetch failed; the failure is already recorded
            NotFoundError: unknown source
        """
        now = self._clock()
        async with db_session(self._session_factory) as session:
            source = await SourceRepository(session).get(source_id)
            url = source.url
            if source.circuit_open(now) and not force:
                await SourceRepository(session).finish_check(source_id, CheckStatus.DUE, now)
                logger.info(
                    "collect_skipped_circuit_open",
                    source_id=source_id,
                    open_until=source.circuit_open_until.isoformat(),
                )
                return CollectResult(source_id, CollectOutcome.SKIPPED, reason="source_circuit_open")

        domain = domain_of(url)
        try:
            async with self._limiter.slot(domain):
                fetched = await self._fetcher.fetch(url)
        except CircuitOpenError as e:
            async with db_session(self._session_factory) as session:
                await SourceRepository(session).finish_check(source_id, CheckStatus.DUE, now)
            logger.info("collect_skipped_domain_circuit", source_id=source_id, domain=domain)
            return CollectResult(source_id, CollectOutcome.SKIPPED, reason=e.message)
        except FetchError as e:
            self._limiter.record_failure(domain, e.message)
            await self._record_failure(source_id, e)
            raise

        self._limiter.record_success(domain)
        digest = content_hash(fetched.content)
        now = self._clock()

        async with db_session(self._session_factory) as session:
            source = await SourceRepository(session).get(source_id)
            source.last_checked_at = now
            source.consecutive_errors = 0
            source.circuit_open_until = None
            source.last_error = None
            source.check_started_at = None

            if source.last_content_hash == digest:
                source.check_status = CheckStatus.UNCHANGED
                logger.info("source_unchanged", source_id=source_id, content_hash=digest[:12])
                return CollectResult(source_id, CollectOutcome.UNCHANGED, content_hash=digest)

            # Content may revert to a snapshot captured earlier
            evidence = await EvidenceRepository(session).find(source_id, digest)
            if evidence is None:
                evidence = EvidenceModel(
                    source_id=source_id,
                    url=fetched.url,
                    raw_content=fetched.content,
                    content_hash=digest,
                    content_type=fetched.content_type,
                    http_status=fetched.status_code,
                    fetched_at=now,
                )
                session.add(evidence)
                await session.flush()

            source.last_content_hash = digest
            source.check_status = CheckStatus.CHANGED
            evidence_id = evidence.id

        logger.info(
            "evidence_captured",
            source_id=source_id,
            evidence_id=evidence_id,
            content_hash=digest[:12],
            chars=len(fetched.content),
        )
        await publish_event(
            Topics.EVIDENCE_CAPTURED,
            {
                "evidence_id": evidence_id,
                "source_id": source_id,
                "content_hash": digest,
                "fetched_at": now.isoformat(),
            },
            key=source_id,
        )
        return CollectResult(
            source_id,
            CollectOutcome.CHANGED,
            evidence_id=evidence_id,
            content_hash=digest,
        )

    async def _record_failure(self, source_id: str, error: FetchError) -> None:
        now = self._clock()
        async with db_session(self._session_factory) as session:
            source = await SourceRepository(session).get(source_id)
            source.consecutive_errors = (source.consecutive_errors or 0) + 1
            source.last_error = error.message
            source.check_status = CheckStatus.DUE
            source.check_started_at = None

            if source.consecutive_errors >= self._threshold and not source.circuit_open(now):
                source.circuit_open_until = now + self._cooldown
                logger.warning(
                    "circuit_opened",
                    source_id=source_id,
                    consecutive_errors=source.consecutive_errors,
                    open_until=source.circuit_open_until.isoformat(),
                )

            logger.warning(
                "collect_failed",
                source_id=source_id,
                consecutive_errors=source.consecutive_errors,
                status_code=error.status_code,
                error=error.message,
            )
