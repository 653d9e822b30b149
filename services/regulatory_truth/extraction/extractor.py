"""
Extractor
=========

Turns one Evidence record into SourcePointer facts.

Flow per evidence:
1. Chunk the evidence text (offsets are kept so quotes map back)
2. Ask the model for candidate facts per chunk (JSON)
3. Validate each fact deterministically (slug, kind, ranges, window)
4. Anchor the quote in the evidence; unlocatable quotes are dropped
5. Insert pointers not already stored (fingerprint dedup)

The model only proposes; nothing reaches the store without a quote that is
a literal slice of the evidence.

Version: 0.1.0
"""

import hashlib
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import (
    ContentError,
    QuoteIntegrityError,
    TransientError,
)
from services.regulatory_truth.extraction.chunking import Chunk, ContentChunker
from services.regulatory_truth.extraction.prompts import (
    EXTRACTOR_SYSTEM_PROMPT,
    build_extraction_prompt,
)
from services.regulatory_truth.extraction.provenance import locate_quote
from services.regulatory_truth.extraction.validators import (
    ExtractedFact,
    FactRejected,
    build_value,
    parse_facts,
    quote_mentions_value,
    validate_confidence,
    validate_slug,
    validate_window,
)
from services.regulatory_truth.models import SourcePointerModel, value_digest
from services.regulatory_truth.repository import EvidenceRepository, PointerRepository
from services.regulatory_truth.taxonomy import ConceptTaxonomy, default_taxonomy
from shared.database import db_session, utcnow
from shared.llm import LLMProvider, LLMResponseFormatError, LLMUnavailableError
from shared.logging import get_logger


logger = get_logger(__name__)

# Facts the model itself rates below this are not stored
MIN_FACT_CONFIDENCE = 0.8


@dataclass
class ExtractResult:
    """Outcome of extracting one evidence record."""

    evidence_id: str
    created_ids: list[str] = field(default_factory=list)
    existing_ids: list[str] = field(default_factory=list)
    rejections: Counter[str] = field(default_factory=Counter)
    concepts: list[str] = field(default_factory=list)

    @property
    def pointer_ids(self) -> list[str]:
        return self.created_ids + self.existing_ids

    @property
    def rejected_count(self) -> int:
        return sum(self.rejections.values())


def pointer_fingerprint(
    evidence_id: str,
    concept_slug: str,
    value: dict,
    effective_from: date,
    effective_until: date | None,
    quote_start: int,
    quote_end: int,
) -> str:
    parts = [
        evidence_id,
        concept_slug,
        value_digest(value),
        effective_from.isoformat(),
        effective_until.isoformat() if effective_until else "",
        str(quote_start),
        str(quote_end),
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


class Extractor:
    """Model-backed fact extraction with deterministic gates."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm_provider: LLMProvider,
        taxonomy: ConceptTaxonomy = default_taxonomy,
        chunker: ContentChunker | None = None,
        clock: Callable[[], datetime] = utcnow,
        min_confidence: float = MIN_FACT_CONFIDENCE,
    ) -> None:
        self._session_factory = session_factory
        self._llm = llm_provider
        self._taxonomy = taxonomy
        self._chunker = chunker or ContentChunker()
        self._clock = clock
        self._min_confidence = min_confidence

    async def extract(self, evidence_id: str) -> ExtractResult:
        """
        Extract SourcePointers from one evidence record.

        Raises:
            TransientError: the model provider is unreachable
            ContentError: nothing usable could be extracted
            NotFoundError: unknown evidence
        """
        async with db_session(self._session_factory) as session:
            evidence = await EvidenceRepository(session).get(evidence_id)
            content = evidence.raw_content
            url = evidence.url

        result = ExtractResult(evidence_id=evidence_id)
        chunks = self._chunker.chunk(content)
        if not chunks:
            raise ContentError("evidence has no text", evidence_id=evidence_id)

        candidates: dict[str, dict] = {}
        unparseable = 0
        for chunk in chunks:
            try:
                facts = await self._propose(chunk, url, len(chunks), result)
            except LLMResponseFormatError as e:
                unparseable += 1
                result.rejections["unparseable_response"] += 1
                logger.warning(
                    "extraction_response_unparseable",
                    evidence_id=evidence_id,
                    chunk=chunk.index,
                    error=str(e),
                )
                continue

            for fact in facts:
                try:
                    row = self._accept(fact, content, chunk, evidence_id)
                except FactRejected as e:
                    result.rejections[e.reason] += 1
                    logger.debug("fact_rejected", evidence_id=evidence_id, reason=e.reason)
                    continue
                except QuoteIntegrityError:
                    result.rejections["quote_not_found"] += 1
                    logger.info(
                        "fact_rejected",
                        evidence_id=evidence_id,
                        reason="quote_not_found",
                        concept=fact.concept,
                    )
                    continue
                candidates.setdefault(row["fingerprint"], row)

        if unparseable == len(chunks):
            raise ContentError("model returned no parseable response", evidence_id=evidence_id)

        await self._store(candidates, result)

        if not result.pointer_ids:
            raise ContentError(
                "no extractable facts",
                evidence_id=evidence_id,
                rejections=dict(result.rejections),
            )

        logger.info(
            "facts_extracted",
            evidence_id=evidence_id,
            created=len(result.created_ids),
            existing=len(result.existing_ids),
            rejected=result.rejected_count,
            concepts=result.concepts,
        )
        return result

    async def _propose(
        self,
        chunk: Chunk,
        url: str,
        total_chunks: int,
        result: ExtractResult,
    ) -> list[ExtractedFact]:
        prompt = build_extraction_prompt(
            chunk.content,
            url,
            self._taxonomy,
            chunk_index=chunk.index,
            total_chunks=total_chunks,
        )
        try:
            payload = await self._llm.generate_json(prompt, system_prompt=EXTRACTOR_SYSTEM_PROMPT)
        except LLMUnavailableError as e:
            raise TransientError(f"model unavailable: {e}", evidence_id=result.evidence_id) from e

        facts, malformed = parse_facts(payload)
        for reason in malformed:
            result.rejections[reason] += 1
        return facts

    def _accept(
        self,
        fact: ExtractedFact,
        content: str,
        chunk: Chunk,
        evidence_id: str,
    ) -> dict:
        """Validate one fact and return the pointer row it becomes."""
        confidence = validate_confidence(fact.confidence)
        if confidence < self._min_confidence:
            raise FactRejected("low_confidence", str(confidence))

        slug = validate_slug(fact.concept, self._taxonomy)
        validate_window(fact.effective_from, fact.effective_until)
        concept = self._taxonomy.resolve(slug)
        value = build_value(fact, concept.value_kind)

        match = locate_quote(content, fact.exact_quote, hint=chunk.start_char)
        if not quote_mentions_value(match.text, value):
            raise FactRejected("quote_missing_value", value.display())

        stored_value = value.to_json()
        return {
            "evidence_id": evidence_id,
            "concept_slug": slug,
            "value": stored_value,
            "effective_from": fact.effective_from,
            "effective_until": fact.effective_until,
            "exact_quote": match.text,
            "quote_start": match.start,
            "quote_end": match.end,
            "confidence": confidence,
            "extractor_model": self._llm.model,
            "fingerprint": pointer_fingerprint(
                evidence_id,
                slug,
                stored_value,
                fact.effective_from,
                fact.effective_until,
                match.start,
                match.end,
            ),
        }

    async def _store(self, candidates: dict[str, dict], result: ExtractResult) -> None:
        if not candidates:
            return
        now = self._clock()
        async with db_session(self._session_factory) as session:
            existing = await PointerRepository(session).existing_fingerprints(list(candidates))
            for fingerprint, row in candidates.items():
                if fingerprint in existing:
                    result.existing_ids.append(existing[fingerprint])
                    continue
                pointer = SourcePointerModel(extracted_at=now, **row)
                session.add(pointer)
                await session.flush()
                result.created_ids.append(pointer.id)

        result.concepts = sorted({row["concept_slug"] for row in candidates.values()})
