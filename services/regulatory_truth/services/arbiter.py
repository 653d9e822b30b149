"""
Arbiter Service
===============

Resolves OPEN conflicts between rule candidates.

Time ordering of effective windows decides, never confidence: a later
regulation legitimately overrides an earlier one.

Strategies:
- supersede: the later rule starts inside the earlier, open-ended (or
  co-terminating) window; the earlier window is truncated at the later
  rule's start
- merge: the later window is nested inside the earlier one; the earlier
  rule is truncated and a DRAFT tail restates it after the later window
- hierarchy: same start date; the rule backed by the higher-ranking
  source (law over ordinance over instruction ...) prevails and the other
  is rejected, or superseded when it is already published
- escalate: same start date and equal or unknown source authority, or
  different value kinds; a human must decide and the rules wait in
  PENDING_REVIEW

Published rules are never edited. When the earlier rule is PUBLISHED, a
DRAFT replacement with the truncated window (`supersedes_id` set) is
created instead; the published rule is deprecated when the replacement
ships.

Version: 0.1.0
"""

import hashlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import InvariantViolation
from services.regulatory_truth.models import (
    ConflictModel,
    ConflictStatus,
    ResolutionStrategy,
    RuleModel,
    RuleStatus,
    parse_value,
)
from services.regulatory_truth.repository import ConflictRepository, PointerRepository, RuleRepository
from shared.database import Topics, db_session, publish_event, utcnow
from shared.logging import get_logger


logger = get_logger(__name__)

ARBITER = "arbiter"


@dataclass
class ArbitrationResult:
    conflict_id: str
    strategy: ResolutionStrategy | None
    prevailing_rule_id: str | None = None
    replacement_rule_ids: list[str] = field(default_factory=list)
    review_rule_ids: list[str] = field(default_factory=list)
    notes: str = ""

    @property
    def resolved(self) -> bool:
        return self.strategy not in (None, ResolutionStrategy.ESCALATE)


def derived_fingerprint(original: str, role: str, boundary: date) -> str:
    return hashlib.sha256(f"{original}|{role}|{boundary.isoformat()}".encode()).hexdigest()


class ArbiterService:
    """Deterministic conflict resolution."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def arbitrate(self, conflict_id: str) -> ArbitrationResult:
        now = self._clock()
        async with db_session(self._session_factory) as session:
            result = await self._arbitrate(session, conflict_id, now)

        logger.info(
            "conflict_arbitrated",
            conflict_id=conflict_id,
            strategy=result.strategy.value if result.strategy else None,
            prevailing_rule_id=result.prevailing_rule_id,
            replacements=result.replacement_rule_ids,
        )
        if result.strategy == ResolutionStrategy.ESCALATE:
            await publish_event(
                Topics.CONFLICTS_ESCALATED,
                {"conflict_id": conflict_id, "reason": result.notes},
                key=conflict_id,
            )
        return result

    async def _arbitrate(self, session: AsyncSession, conflict_id: str, now: datetime) -> ArbitrationResult:
        conflicts = ConflictRepository(session)
        rules = RuleRepository(session)
        conflict = await conflicts.get(conflict_id)

        if conflict.status != ConflictStatus.OPEN or conflict.requires_human:
            return ArbitrationResult(conflict_id, None, notes="nothing to arbitrate")

        members = [await rules.get(rule_id) for rule_id in conflict.rule_ids]
        live = [r for r in members if r.status not in (RuleStatus.REJECTED, RuleStatus.DEPRECATED)]

        if len(live) < 2 or not live[0].overlaps(live[1]):
            notes = "rules no longer overlap"
            await conflicts.resolve(
                conflict_id,
                {"strategy": ResolutionStrategy.WITHDRAWN.value, "resolved_by": ARBITER, "notes": notes},
                now,
            )
            return ArbitrationResult(
                conflict_id,
                ResolutionStrategy.WITHDRAWN,
                review_rule_ids=[r.id for r in live if r.status == RuleStatus.DRAFT],
                notes=notes,
            )

        earlier, later = sorted(live, key=lambda r: (r.effective_from, r.created_at))
        if parse_value(earlier.value).kind != parse_value(later.value).kind:
            return await self._escalate(session, conflict, live, "different value kinds", now)
        if earlier.effective_from == later.effective_from:
            return await self._by_authority(session, conflict, earlier, later, now)

        cut = later.effective_from
        # Truncation refreshes the loaded rows; keep the original window end
        earlier_until = earlier.effective_until
        earlier_published = earlier.status == RuleStatus.PUBLISHED
        nested = later.effective_until is not None and (
            earlier_until is None or later.effective_until < earlier_until
        )
        strategy = ResolutionStrategy.MERGE if nested else ResolutionStrategy.SUPERSEDE

        replacements: list[str] = []
        review: list[str] = []

        if earlier_published:
            head = await self._derive(session, earlier, "head", earlier.effective_from, cut, now)
            replacements.append(head.id)
        else:
            await self._truncate(rules, earlier, cut, now)
            review.append(earlier.id)

        if nested:
            tail = await self._derive(
                session,
                earlier,
                "tail",
                later.effective_until,
                earlier_until,
                now,
                superseding=earlier_published,
            )
            if earlier_published:
                replacements.append(tail.id)
            review.append(tail.id)

        if later.status == RuleStatus.DRAFT:
            review.append(later.id)
        review.extend(replacements)

        notes = (
            f"{later.id} from {cut} prevails over {earlier.id} "
            f"from {earlier.effective_from}"
        )
        resolution: dict[str, Any] = {
            "strategy": strategy.value,
            "prevailing_rule_id": later.id,
            "truncated_rule_id": earlier.id,
            "replacement_rule_ids": replacements,
            "resolved_by": ARBITER,
            "notes": notes,
        }
        await ConflictRepository(session).resolve(conflict.id, resolution, now)
        return ArbitrationResult(
            conflict.id,
            strategy,
            prevailing_rule_id=later.id,
            replacement_rule_ids=replacements,
            review_rule_ids=list(dict.fromkeys(review)),
            notes=notes,
        )

    async def _by_authority(
        self,
        session: AsyncSession,
        conflict: ConflictModel,
        first: RuleModel,
        second: RuleModel,
        now: datetime,
    ) -> ArbitrationResult:
        """Same start date: the rule cited from the higher-ranking source wins."""
        pointers = PointerRepository(session)
        ranks = {
            rule.id: await pointers.best_authority(list(rule.source_pointer_ids or []))
            for rule in (first, second)
        }
        if None in ranks.values() or ranks[first.id] == ranks[second.id]:
            return await self._escalate(session, conflict, [first, second], "same effective date", now)

        winner, loser = sorted((first, second), key=lambda r: ranks[r.id])
        if winner.status == RuleStatus.PUBLISHED and loser.status == RuleStatus.PUBLISHED:
            return await self._escalate(
                session, conflict, [first, second], "same effective date, both published", now
            )

        await self._defeat(RuleRepository(session), winner, loser, ARBITER, conflict.id, now)

        notes = (
            f"{winner.id} (authority {ranks[winner.id]}) outranks "
            f"{loser.id} (authority {ranks[loser.id]})"
        )
        await ConflictRepository(session).resolve(
            conflict.id,
            {
                "strategy": ResolutionStrategy.HIERARCHY.value,
                "prevailing_rule_id": winner.id,
                "replacement_rule_ids": [],
                "resolved_by": ARBITER,
                "notes": notes,
            },
            now,
        )
        return ArbitrationResult(
            conflict.id,
            ResolutionStrategy.HIERARCHY,
            prevailing_rule_id=winner.id,
            review_rule_ids=[winner.id] if winner.status == RuleStatus.DRAFT else [],
            notes=notes,
        )

    async def _defeat(
        self,
        rules: RuleRepository,
        prevailing: RuleModel,
        loser: RuleModel,
        decided_by: str,
        conflict_id: str,
        now: datetime,
    ) -> None:
        """Reject an unpublished loser; a published one is superseded by the winner."""
        if loser.status == RuleStatus.PUBLISHED:
            if prevailing.status == RuleStatus.PUBLISHED:
                raise InvariantViolation(
                    "both rules are published; draft a correction instead",
                    conflict_id=conflict_id,
                )
            await rules.set_supersedes(prevailing.id, prevailing.status, loser.id, now=now)
            return

        expected = loser.status
        if expected == RuleStatus.APPROVED:
            await rules.transition(loser.id, RuleStatus.APPROVED, RuleStatus.DRAFT, now=now)
            expected = RuleStatus.DRAFT
        if expected in (RuleStatus.DRAFT, RuleStatus.PENDING_REVIEW):
            await rules.transition(
                loser.id, expected, RuleStatus.REJECTED, now=now,
                reviewed_by=decided_by, review_notes=f"lost conflict {conflict_id}",
            )

    async def _truncate(self, rules: RuleRepository, rule: RuleModel, until: date, now: datetime) -> None:
        """End an unpublished rule's window; approved or pending rules go back to DRAFT."""
        if rule.status == RuleStatus.DRAFT:
            await rules.update_window(rule.id, RuleStatus.DRAFT, until, now=now)
        else:
            await rules.transition(
                rule.id,
                rule.status,
                RuleStatus.DRAFT,
                now=now,
                effective_until=until,
                approved_at=None,
                review_notes=f"window truncated at {until}",
            )
        logger.debug("rule_truncated", rule_id=rule.id, effective_until=until.isoformat())

    async def _derive(
        self,
        session: AsyncSession,
        original: RuleModel,
        role: str,
        effective_from: date,
        effective_until: date | None,
        now: datetime,
        superseding: bool = True,
    ) -> RuleModel:
        """Draft a copy of `original` restricted to a sub-window (idempotent)."""
        rules = RuleRepository(session)
        fingerprint = derived_fingerprint(original.fingerprint, role, effective_from)
        existing = await rules.get_by_fingerprint(fingerprint)
        if existing is not None:
            return existing

        rule = rules.add(
            RuleModel(
                concept_slug=original.concept_slug,
                value=original.value,
                effective_from=effective_from,
                effective_until=effective_until,
                composed_from=effective_from,
                composed_until=effective_until,
                status=RuleStatus.DRAFT,
                risk_tier=original.risk_tier,
                confidence=original.confidence,
                source_pointer_ids=list(original.source_pointer_ids or []),
                primary_pointer_id=original.primary_pointer_id,
                fingerprint=fingerprint,
                supersedes_id=original.id if superseding else None,
                review_notes=f"{role} of {original.id}",
                created_at=now,
                updated_at=now,
            )
        )
        await session.flush()
        logger.info(
            "rule_derived",
            rule_id=rule.id,
            original_rule_id=original.id,
            role=role,
            effective_from=effective_from.isoformat(),
        )
        return rule

    async def _escalate(
        self,
        session: AsyncSession,
        conflict: ConflictModel,
        members: list[RuleModel],
        reason: str,
        now: datetime,
    ) -> ArbitrationResult:
        """Hand the conflict to a human; its unpublished rules wait in PENDING_REVIEW."""
        rules = RuleRepository(session)
        for rule in members:
            if rule.status == RuleStatus.APPROVED:
                await rules.transition(rule.id, RuleStatus.APPROVED, RuleStatus.DRAFT, now=now, approved_at=None)
            if rule.status == RuleStatus.DRAFT:
                await rules.transition(
                    rule.id,
                    RuleStatus.DRAFT,
                    RuleStatus.PENDING_REVIEW,
                    now=now,
                    review_notes=f"escalated: {reason}",
                )

        await ConflictRepository(session).mark_escalated(conflict.id, reason, now)
        logger.warning("conflict_escalated", conflict_id=conflict.id, reason=reason)
        return ArbitrationResult(conflict.id, ResolutionStrategy.ESCALATE, notes=reason)

    # =========================================================================
    # Manual resolution
    # =========================================================================

    async def resolve_manually(
        self,
        conflict_id: str,
        prevailing_rule_id: str,
        resolved_by: str,
        notes: str | None = None,
    ) -> ArbitrationResult:
        """
        Settle a conflict in favour of a named rule.

        The other unpublished rules are rejected; a published loser is
        superseded by the prevailing rule and deprecated when it ships.

        Raises:
            InvariantViolation: unnamed resolver, or the rule is not part of
                the conflict, or both sides are already published
            TransitionConflict: the conflict is no longer OPEN
        """
        if not resolved_by or not resolved_by.strip():
            raise InvariantViolation("a named resolver is required", conflict_id=conflict_id)

        now = self._clock()
        async with db_session(self._session_factory) as session:
            conflicts = ConflictRepository(session)
            rules = RuleRepository(session)
            conflict = await conflicts.get(conflict_id)
            if prevailing_rule_id not in conflict.rule_ids:
                raise InvariantViolation(
                    f"rule {prevailing_rule_id} is not part of conflict {conflict_id}",
                    conflict_id=conflict_id,
                )

            prevailing = await rules.get(prevailing_rule_id)
            if prevailing.status in (RuleStatus.REJECTED, RuleStatus.DEPRECATED):
                raise InvariantViolation(
                    f"rule {prevailing_rule_id} is {prevailing.status.value}",
                    conflict_id=conflict_id,
                )

            for rule_id in conflict.rule_ids:
                if rule_id == prevailing_rule_id:
                    continue
                loser = await rules.get(rule_id)
                await self._defeat(rules, prevailing, loser, resolved_by, conflict_id, now)

            await conflicts.resolve(
                conflict_id,
                {
                    "strategy": ResolutionStrategy.MANUAL.value,
                    "prevailing_rule_id": prevailing_rule_id,
                    "replacement_rule_ids": [],
                    "resolved_by": resolved_by.strip(),
                    "notes": notes,
                },
                now,
            )
            review = [prevailing.id] if prevailing.status == RuleStatus.DRAFT else []

        logger.info(
            "conflict_resolved_manually",
            conflict_id=conflict_id,
            prevailing_rule_id=prevailing_rule_id,
            resolved_by=resolved_by,
        )
        return ArbitrationResult(
            conflict_id,
            ResolutionStrategy.MANUAL,
            prevailing_rule_id=prevailing_rule_id,
            review_rule_ids=review,
            notes=notes or "",
        )
