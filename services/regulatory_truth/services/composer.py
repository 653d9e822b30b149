"""
Composer Service
================

Synthesises Rule candidates from the SourcePointers of one concept.

Algorithm:
1. Partition the concept's pointers by declared effective window
2. Per window, the highest-confidence pointer is primary; every other
   pointer in the window is attached as a corroborating citation
3. Emit a DRAFT rule per window (or update the window's existing DRAFT)
4. Any two live rules whose windows overlap get a Conflict instead of one
   side being picked (a restated value with a different window included)

Composition is idempotent: a rule's fingerprint covers concept, window,
value and the sorted pointer ids, and conflicts are keyed by the sorted
rule-id set, so re-running over an unchanged pointer set writes nothing.

Only one Composer works on a concept at a time (Redis lock per concept).

Version: 0.1.0
"""

import hashlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import combinations

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import TransientError
from services.regulatory_truth.models import (
    RuleModel,
    RuleStatus,
    SourcePointerModel,
    value_digest,
    values_agree,
)
from services.regulatory_truth.repository import (
    ConflictRepository,
    PointerRepository,
    RuleRepository,
)
from services.regulatory_truth.taxonomy import ConceptTaxonomy, default_taxonomy
from shared.config import settings
from shared.database import db_session, redis_lock, utcnow
from shared.logging import get_logger


logger = get_logger(__name__)

Window = tuple[date, date | None]


@dataclass
class ComposeResult:
    concept_slug: str
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)

    @property
    def changed_rule_ids(self) -> list[str]:
        """Rules that need (re)review."""
        return self.created + self.updated

    @property
    def is_noop(self) -> bool:
        return not (self.created or self.updated or self.conflicts)


def composition_fingerprint(
    concept_slug: str,
    window: Window,
    value: dict,
    pointer_ids: Sequence[str],
) -> str:
    effective_from, effective_until = window
    parts = [
        concept_slug,
        effective_from.isoformat(),
        effective_until.isoformat() if effective_until else "",
        value_digest(value),
        ",".join(sorted(pointer_ids)),
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


def select_primary(pointers: Sequence[SourcePointerModel]) -> SourcePointerModel:
    """Highest confidence; ties go to the earliest extraction, then id."""
    return min(pointers, key=lambda p: (-p.confidence, p.extracted_at, p.id))


def partition_by_window(
    pointers: Sequence[SourcePointerModel],
) -> dict[Window, list[SourcePointerModel]]:
    windows: dict[Window, list[SourcePointerModel]] = {}
    for pointer in pointers:
        windows.setdefault((pointer.effective_from, pointer.effective_until), []).append(pointer)
    return windows


class ComposerService:
    """Per-concept rule composition."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        taxonomy: ConceptTaxonomy = default_taxonomy,
        clock: Callable[[], datetime] = utcnow,
        lock_ttl_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._taxonomy = taxonomy
        self._clock = clock
        self._lock_ttl = lock_ttl_seconds or settings.queue.concept_lock_ttl_seconds

    async def compose(self, concept_slug: str) -> ComposeResult:
        """
        Compose rules for one concept.

        Raises:
            TransientError: another Composer holds the concept (retried later)
        """
        slug = self._taxonomy.canonical_slug(concept_slug)
        async with redis_lock(self._redis, f"concept:{slug}", self._lock_ttl) as acquired:
            if not acquired:
                raise TransientError("concept is being composed elsewhere", concept_slug=slug)
            async with db_session(self._session_factory) as session:
                result = await self._compose(session, slug)

        logger.info(
            "concept_composed",
            concept_slug=slug,
            created=len(result.created),
            updated=len(result.updated),
            unchanged=len(result.unchanged),
            conflicts=len(result.conflicts),
        )
        return result

    async def _compose(self, session: AsyncSession, slug: str) -> ComposeResult:
        result = ComposeResult(concept_slug=slug)
        rules = RuleRepository(session)
        pointers = await PointerRepository(session).for_concept(slug)
        risk_tier = self._taxonomy.risk_tier(slug)
        now = self._clock()

        existing = await rules.for_concept(slug)

        for window, group in sorted(
            partition_by_window(pointers).items(),
            key=lambda item: (item[0][0], item[0][1] or date.max),
        ):
            primary = select_primary(group)
            pointer_ids = sorted(p.id for p in group)
            fingerprint = composition_fingerprint(slug, window, primary.value, pointer_ids)

            same = await rules.get_by_fingerprint(fingerprint)
            if same is not None:
                result.unchanged.append(same.id)
                continue

            in_window = [
                r for r in existing
                if (r.composed_from, r.composed_until) == window
            ]
            draft = next((r for r in in_window if r.status == RuleStatus.DRAFT), None)
            if draft is not None:
                await rules.transition(
                    draft.id,
                    RuleStatus.DRAFT,
                    RuleStatus.DRAFT,
                    now=now,
                    value=primary.value,
                    confidence=primary.confidence,
                    source_pointer_ids=pointer_ids,
                    primary_pointer_id=primary.id,
                    fingerprint=fingerprint,
                )
                result.updated.append(draft.id)
                logger.debug("rule_draft_updated", rule_id=draft.id, concept_slug=slug)
                continue

            settled = next(
                (
                    r for r in in_window
                    if r.status in (RuleStatus.PENDING_REVIEW, RuleStatus.APPROVED, RuleStatus.PUBLISHED)
                    and values_agree(r.value, primary.value)
                ),
                None,
            )
            if settled is not None:
                result.unchanged.append(settled.id)
                continue

            rule = rules.add(
                RuleModel(
                    concept_slug=slug,
                    value=primary.value,
                    effective_from=window[0],
                    effective_until=window[1],
                    composed_from=window[0],
                    composed_until=window[1],
                    status=RuleStatus.DRAFT,
                    risk_tier=risk_tier,
                    confidence=primary.confidence,
                    source_pointer_ids=pointer_ids,
                    primary_pointer_id=primary.id,
                    fingerprint=fingerprint,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.flush()
            existing = [*existing, rule]
            result.created.append(rule.id)
            logger.debug("rule_drafted", rule_id=rule.id, concept_slug=slug)

        result.conflicts = await self._detect_conflicts(session, slug, now)
        return result

    async def _detect_conflicts(self, session: AsyncSession, slug: str, now: datetime) -> list[str]:
        """Open a conflict for every overlapping pair of live rules."""
        conflicts = ConflictRepository(session)
        live = await RuleRepository(session).live_for_concept(slug)
        opened: list[str] = []

        for a, b in combinations(live, 2):
            if a.supersedes_id == b.id or b.supersedes_id == a.id:
                continue
            if not a.overlaps(b):
                continue
            same_window = (a.effective_from, a.effective_until) == (b.effective_from, b.effective_until)
            if same_window and values_agree(a.value, b.value):
                continue
            if await conflicts.get_by_key([a.id, b.id]) is not None:
                continue

            reason = (
                f"{slug}: {a.rule_value.display()} from {a.effective_from} "
                f"vs {b.rule_value.display()} from {b.effective_from}"
            )
            conflict = await conflicts.create(slug, [a.id, b.id], reason, now)
            opened.append(conflict.id)
            logger.warning(
                "conflict_opened",
                conflict_id=conflict.id,
                concept_slug=slug,
                rule_ids=conflict.rule_ids,
            )
        return opened
