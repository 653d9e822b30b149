"""
Rule Query Service
==================

Read-only surface for downstream consumers.

Only PUBLISHED rules are ever returned: the status filter is applied in
the query and checked again before a rule is rendered, so a draft,
pending or rejected rule can never leak out.

Version: 0.1.0
"""

from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.models import RuleModel, RuleStatus, SourceModel
from services.regulatory_truth.repository import (
    EvidenceRepository,
    PointerRepository,
    ReleaseRepository,
    RuleRepository,
)
from services.regulatory_truth.taxonomy import ConceptTaxonomy, default_taxonomy
from shared.database import db_session
from shared.logging import get_logger
from shared.models import Citation, PublishedRule, ReleaseView, RuleView


logger = get_logger(__name__)


def rule_view(rule: RuleModel) -> RuleView:
    return RuleView(
        id=rule.id,
        concept_slug=rule.concept_slug,
        value=rule.value,
        display_value=rule.rule_value.display(),
        effective_from=rule.effective_from,
        effective_until=rule.effective_until,
        status=rule.status.value,
        risk_tier=rule.risk_tier.value,
        confidence=rule.confidence,
        source_pointer_ids=list(rule.source_pointer_ids or []),
        supersedes_id=rule.supersedes_id,
        review_notes=rule.review_notes,
        reviewed_by=rule.reviewed_by,
        release_id=rule.release_id,
        published_at=rule.published_at,
    )


class RuleQueryService:
    """Published rules by concept and date, with citations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        taxonomy: ConceptTaxonomy = default_taxonomy,
    ) -> None:
        self._session_factory = session_factory
        self._taxonomy = taxonomy

    def canonical_slug(self, concept_slug: str) -> str:
        return self._taxonomy.canonical_slug(concept_slug)

    async def rules_as_of(self, concept_slug: str, as_of: date) -> list[PublishedRule]:
        """
        PUBLISHED rules for a concept in force on `as_of`
        (`effective_from <= as_of` and `effective_until` null or later).
        """
        slug = self._taxonomy.canonical_slug(concept_slug)
        async with db_session(self._session_factory) as session:
            published = await RuleRepository(session).published_for_concept(slug)
            eligible = [
                r for r in published
                if r.status == RuleStatus.PUBLISHED and r.in_force_on(as_of)
            ]
            views = [await self._with_citations(session, rule) for rule in eligible]

        logger.debug("rules_queried", concept_slug=slug, as_of=as_of.isoformat(), count=len(views))
        return views

    async def published(self, concept_slug: str | None = None) -> list[RuleView]:
        async with db_session(self._session_factory) as session:
            rules = RuleRepository(session)
            if concept_slug:
                found = await rules.published_for_concept(self._taxonomy.canonical_slug(concept_slug))
            else:
                found = await rules.with_status(RuleStatus.PUBLISHED)
            return [rule_view(r) for r in found if r.status == RuleStatus.PUBLISHED]

    async def releases(self, limit: int = 50) -> list[ReleaseView]:
        async with db_session(self._session_factory) as session:
            found = await ReleaseRepository(session).list(limit)
            return [ReleaseView.model_validate(r) for r in found]

    async def _with_citations(self, session: AsyncSession, rule: RuleModel) -> PublishedRule:
        pointers = await PointerRepository(session).get_many(rule.source_pointer_ids or [])
        evidence = await EvidenceRepository(session).get_many([p.evidence_id for p in pointers])

        sources: dict[str, SourceModel] = {}
        for record in evidence.values():
            if record.source_id not in sources:
                sources[record.source_id] = await session.get(SourceModel, record.source_id)

        citations = []
        for pointer in pointers:
            record = evidence[pointer.evidence_id]
            source = sources[record.source_id]
            citations.append(
                Citation(
                    pointer_id=pointer.id,
                    evidence_id=record.id,
                    source_id=source.id,
                    source_url=source.url,
                    fetched_at=record.fetched_at,
                    content_hash=record.content_hash,
                    exact_quote=pointer.exact_quote,
                    quote_start=pointer.quote_start,
                    quote_end=pointer.quote_end,
                    confidence=pointer.confidence,
                    is_primary=pointer.id == rule.primary_pointer_id,
                )
            )
        citations.sort(key=lambda c: (not c.is_primary, -c.confidence))
        return PublishedRule(**rule_view(rule).model_dump(), citations=citations)
