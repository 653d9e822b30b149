"""
Repositories
============

Data access for every pipeline table.

All status transitions are conditional UPDATEs
(`WHERE id = :id AND status = :expected`); a statement matching no row
raises `TransitionConflict`, so two workers racing on the same record
cannot both win.

Version: 0.1.0
"""

from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.errors import (
    AutoApprovalForbiddenError,
    InvariantViolation,
    NotFoundError,
    TransitionConflict,
)
from services.regulatory_truth.models import (
    LIVE_RULE_STATUSES,
    RULE_TRANSITIONS,
    AgentRunModel,
    CheckStatus,
    ConflictModel,
    ConflictStatus,
    EvidenceModel,
    ReleaseModel,
    RiskTier,
    RuleModel,
    RuleStatus,
    RunOutcome,
    SourceModel,
    SourcePointerModel,
    StageType,
    conflict_rules,
)
from shared.database import utcnow
from shared.logging import get_logger


logger = get_logger(__name__)

# Tiers that may only be approved by a named human reviewer
HUMAN_ONLY_TIERS: frozenset[RiskTier] = frozenset({RiskTier.T0, RiskTier.T1})


def _check_window(rule_id: str, effective_from: date, effective_until: date | None) -> None:
    if effective_until is not None and effective_until <= effective_from:
        raise InvariantViolation(
            f"Rule {rule_id}: window [{effective_from}, {effective_until}) is empty",
            rule_id=rule_id,
        )


async def _apply(session: AsyncSession, stmt: Any) -> int:
    """Run a conditional UPDATE and refresh copies of the entity already loaded."""
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount:
        entity = stmt.entity_description["entity"]
        for obj in [o for o in session.identity_map.values() if isinstance(o, entity)]:
            await session.refresh(obj)
    return result.rowcount


# =============================================================================
# Sources
# =============================================================================


class SourceRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, source_id: str) -> SourceModel:
        source = await self.session.get(SourceModel, source_id)
        if source is None:
            raise NotFoundError("Source", source_id)
        return source

    async def get_by_url(self, url: str) -> SourceModel | None:
        result = await self.session.execute(select(SourceModel).where(SourceModel.url == url))
        return result.scalar_one_or_none()

    async def list_all(self, active_only: bool = False) -> Sequence[SourceModel]:
        stmt = select(SourceModel).order_by(SourceModel.priority_tier, SourceModel.name)
        if active_only:
            stmt = stmt.where(SourceModel.active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_tier(self, tier: RiskTier) -> Sequence[SourceModel]:
        result = await self.session.execute(
            select(SourceModel).where(
                SourceModel.priority_tier == tier,
                SourceModel.active.is_(True),
            )
        )
        return result.scalars().all()

    async def claim_for_check(
        self,
        source_id: str,
        now: datetime,
        stale_before: datetime | None = None,
    ) -> bool:
        """
        Move a source to CHECKING unless another run already holds it.

        A CHECKING claim older than `stale_before` may be taken over.
        """
        not_checking = SourceModel.check_status != CheckStatus.CHECKING
        if stale_before is not None:
            not_checking = or_(
                not_checking,
                SourceModel.check_started_at.is_(None),
                SourceModel.check_started_at < stale_before,
            )
        rowcount = await _apply(
            self.session,
            update(SourceModel)
            .where(SourceModel.id == source_id, not_checking)
            .values(check_status=CheckStatus.CHECKING, check_started_at=now, updated_at=now)
        )
        return rowcount == 1

    async def finish_check(self, source_id: str, status: CheckStatus, now: datetime) -> None:
        await _apply(
            self.session,
            update(SourceModel)
            .where(SourceModel.id == source_id)
            .values(check_status=status, check_started_at=None, updated_at=now)
        )


# =============================================================================
# Evidence and pointers
# =============================================================================


class EvidenceRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, evidence_id: str) -> EvidenceModel:
        evidence = await self.session.get(EvidenceModel, evidence_id)
        if evidence is None:
            raise NotFoundError("Evidence", evidence_id)
        return evidence

    async def find(self, source_id: str, content_hash: str) -> EvidenceModel | None:
        result = await self.session.execute(
            select(EvidenceModel).where(
                EvidenceModel.source_id == source_id,
                EvidenceModel.content_hash == content_hash,
            )
        )
        return result.scalar_one_or_none()

    async def get_many(self, evidence_ids: Sequence[str]) -> dict[str, EvidenceModel]:
        if not evidence_ids:
            return {}
        result = await self.session.execute(
            select(EvidenceModel).where(EvidenceModel.id.in_(set(evidence_ids)))
        )
        return {e.id: e for e in result.scalars().all()}

    async def count_for_source(self, source_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(EvidenceModel).where(
                EvidenceModel.source_id == source_id
            )
        )
        return int(result.scalar_one())


class PointerRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_many(self, pointer_ids: Sequence[str]) -> list[SourcePointerModel]:
        if not pointer_ids:
            return []
        result = await self.session.execute(
            select(SourcePointerModel).where(SourcePointerModel.id.in_(set(pointer_ids)))
        )
        by_id = {p.id: p for p in result.scalars().all()}
        return [by_id[pid] for pid in pointer_ids if pid in by_id]

    async def for_concept(self, concept_slug: str) -> Sequence[SourcePointerModel]:
        result = await self.session.execute(
            select(SourcePointerModel)
            .where(SourcePointerModel.concept_slug == concept_slug)
            .order_by(SourcePointerModel.extracted_at, SourcePointerModel.id)
        )
        return result.scalars().all()

    async def for_evidence(self, evidence_id: str) -> Sequence[SourcePointerModel]:
        result = await self.session.execute(
            select(SourcePointerModel).where(SourcePointerModel.evidence_id == evidence_id)
        )
        return result.scalars().all()

    async def existing_fingerprints(self, fingerprints: Sequence[str]) -> dict[str, str]:
        """Map already-stored fingerprints to their pointer ids."""
        if not fingerprints:
            return {}
        result = await self.session.execute(
            select(SourcePointerModel.fingerprint, SourcePointerModel.id).where(
                SourcePointerModel.fingerprint.in_(set(fingerprints))
            )
        )
        return {fp: pid for fp, pid in result.all()}

    async def best_authority(self, pointer_ids: Sequence[str]) -> int | None:
        """Highest-ranking (lowest) source authority behind the pointers."""
        if not pointer_ids:
            return None
        result = await self.session.execute(
            select(func.min(SourceModel.authority))
            .select_from(SourcePointerModel)
            .join(EvidenceModel, EvidenceModel.id == SourcePointerModel.evidence_id)
            .join(SourceModel, SourceModel.id == EvidenceModel.source_id)
            .where(SourcePointerModel.id.in_(set(pointer_ids)))
        )
        return result.scalar_one_or_none()


# =============================================================================
# Rules
# =============================================================================


class RuleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, rule_id: str) -> RuleModel:
        rule = await self.session.get(RuleModel, rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)
        return rule

    async def refresh(self, rule: RuleModel) -> RuleModel:
        await self.session.refresh(rule)
        return rule

    async def get_by_fingerprint(self, fingerprint: str) -> RuleModel | None:
        result = await self.session.execute(
            select(RuleModel).where(RuleModel.fingerprint == fingerprint)
        )
        return result.scalar_one_or_none()

    async def for_concept(
        self,
        concept_slug: str,
        statuses: frozenset[RuleStatus] | None = None,
    ) -> Sequence[RuleModel]:
        stmt = select(RuleModel).where(RuleModel.concept_slug == concept_slug)
        if statuses is not None:
            stmt = stmt.where(RuleModel.status.in_(statuses))
        result = await self.session.execute(
            stmt.order_by(RuleModel.effective_from, RuleModel.created_at)
        )
        return result.scalars().all()

    async def live_for_concept(self, concept_slug: str) -> Sequence[RuleModel]:
        return await self.for_concept(concept_slug, LIVE_RULE_STATUSES)

    async def with_status(self, status: RuleStatus) -> Sequence[RuleModel]:
        result = await self.session.execute(
            select(RuleModel)
            .where(RuleModel.status == status)
            .order_by(RuleModel.concept_slug, RuleModel.effective_from)
        )
        return result.scalars().all()

    async def count_by_status(self) -> dict[RuleStatus, int]:
        result = await self.session.execute(
            select(RuleModel.status, func.count()).group_by(RuleModel.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def published_for_concept(self, concept_slug: str) -> Sequence[RuleModel]:
        return await self.for_concept(concept_slug, frozenset({RuleStatus.PUBLISHED}))

    async def superseding(self, rule_id: str) -> Sequence[RuleModel]:
        """Rules drafted to replace `rule_id`."""
        result = await self.session.execute(
            select(RuleModel).where(RuleModel.supersedes_id == rule_id)
        )
        return result.scalars().all()

    def add(self, rule: RuleModel) -> RuleModel:
        """
        Stage a new rule.

        Raises:
            InvariantViolation: the window ends on or before it starts
        """
        _check_window(rule.id or rule.concept_slug, rule.effective_from, rule.effective_until)
        self.session.add(rule)
        return rule

    async def transition(
        self,
        rule_id: str,
        expected: RuleStatus,
        target: RuleStatus,
        *,
        automatic: bool = False,
        risk_tier: RiskTier | None = None,
        now: datetime | None = None,
        **values: Any,
    ) -> None:
        """
        Compare-and-swap a rule from `expected` to `target`.

        Extra keyword arguments are written in the same statement. An
        automatic approval of a T0/T1 rule is refused before touching the
        database.

        Raises:
            InvariantViolation: the move is not in the lifecycle
            AutoApprovalForbiddenError: automatic path approving a human-only tier
            TransitionConflict: the rule is no longer in `expected`
        """
        if target not in RULE_TRANSITIONS[expected]:
            raise InvariantViolation(
                f"Rule {rule_id}: {expected.value} -> {target.value} is not allowed",
                rule_id=rule_id,
            )

        conditions = [RuleModel.id == rule_id, RuleModel.status == expected]
        if target == RuleStatus.APPROVED and automatic:
            if risk_tier is not None and risk_tier in HUMAN_ONLY_TIERS:
                raise AutoApprovalForbiddenError(
                    f"Rule {rule_id} is {risk_tier.value}; automatic approval is forbidden",
                    rule_id=rule_id,
                    risk_tier=risk_tier.value,
                )
            conditions.append(RuleModel.risk_tier.notin_(HUMAN_ONLY_TIERS))

        now = now or utcnow()
        rowcount = await _apply(
            self.session,
            update(RuleModel)
            .where(and_(*conditions))
            .values(status=target, updated_at=now, **values)
        )
        if rowcount != 1:
            existing = await self.session.get(RuleModel, rule_id)
            if existing is None:
                raise NotFoundError("Rule", rule_id)
            if automatic and target == RuleStatus.APPROVED and existing.risk_tier in HUMAN_ONLY_TIERS:
                raise AutoApprovalForbiddenError(
                    f"Rule {rule_id} is {existing.risk_tier.value}; automatic approval is forbidden",
                    rule_id=rule_id,
                )
            raise TransitionConflict("Rule", rule_id, expected.value, target.value)

        logger.debug(
            "rule_transitioned",
            rule_id=rule_id,
            from_status=expected.value,
            to_status=target.value,
        )

    async def update_window(
        self,
        rule_id: str,
        expected: RuleStatus,
        effective_until: date | None,
        now: datetime | None = None,
    ) -> None:
        """Truncate a non-published rule's window (status must still match)."""
        if expected in (RuleStatus.PUBLISHED, RuleStatus.DEPRECATED):
            raise InvariantViolation(f"Rule {rule_id} is {expected.value}; windows are frozen")
        rule = await self.get(rule_id)
        _check_window(rule_id, rule.effective_from, effective_until)
        rowcount = await _apply(
            self.session,
            update(RuleModel)
            .where(RuleModel.id == rule_id, RuleModel.status == expected)
            .values(effective_until=effective_until, updated_at=now or utcnow())
        )
        if rowcount != 1:
            raise TransitionConflict("Rule", rule_id, expected.value, expected.value)

    async def set_supersedes(
        self,
        rule_id: str,
        expected: RuleStatus,
        superseded_id: str,
        now: datetime | None = None,
    ) -> None:
        """Record that an unpublished rule replaces `superseded_id` once released."""
        if expected in (RuleStatus.PUBLISHED, RuleStatus.DEPRECATED, RuleStatus.REJECTED):
            raise InvariantViolation(f"Rule {rule_id} is {expected.value}; cannot supersede")
        rowcount = await _apply(
            self.session,
            update(RuleModel)
            .where(RuleModel.id == rule_id, RuleModel.status == expected)
            .values(supersedes_id=superseded_id, updated_at=now or utcnow())
        )
        if rowcount != 1:
            raise TransitionConflict("Rule", rule_id, expected.value, expected.value)


# =============================================================================
# Conflicts
# =============================================================================


class ConflictRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, conflict_id: str) -> ConflictModel:
        conflict = await self.session.get(ConflictModel, conflict_id)
        if conflict is None:
            raise NotFoundError("Conflict", conflict_id)
        return conflict

    async def get_by_key(self, rule_ids: Sequence[str]) -> ConflictModel | None:
        result = await self.session.execute(
            select(ConflictModel).where(
                ConflictModel.rule_set_key == ConflictModel.key_for(list(rule_ids))
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        concept_slug: str,
        rule_ids: Sequence[str],
        reason: str,
        now: datetime,
    ) -> ConflictModel:
        """Open a conflict between exactly two rules."""
        if len(set(rule_ids)) != 2:
            raise InvariantViolation(
                f"a conflict pairs two distinct rules, got {len(set(rule_ids))}",
                concept_slug=concept_slug,
            )
        ordered = sorted(set(rule_ids))
        conflict = ConflictModel(
            concept_slug=concept_slug,
            rule_set_key=ConflictModel.key_for(ordered),
            rule_ids=ordered,
            status=ConflictStatus.OPEN,
            reason=reason,
            created_at=now,
        )
        self.session.add(conflict)
        await self.session.flush()
        await self.session.execute(
            insert(conflict_rules),
            [{"conflict_id": conflict.id, "rule_id": rid} for rid in ordered],
        )
        return conflict

    async def for_rule(
        self,
        rule_id: str,
        status: ConflictStatus | None = None,
    ) -> Sequence[ConflictModel]:
        stmt = (
            select(ConflictModel)
            .join(conflict_rules, conflict_rules.c.conflict_id == ConflictModel.id)
            .where(conflict_rules.c.rule_id == rule_id)
        )
        if status is not None:
            stmt = stmt.where(ConflictModel.status == status)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def has_open(self, rule_id: str) -> bool:
        return bool(await self.for_rule(rule_id, ConflictStatus.OPEN))

    async def open_for_concept(self, concept_slug: str) -> Sequence[ConflictModel]:
        result = await self.session.execute(
            select(ConflictModel).where(
                ConflictModel.concept_slug == concept_slug,
                ConflictModel.status == ConflictStatus.OPEN,
            )
        )
        return result.scalars().all()

    async def list(self, status: ConflictStatus | None = None) -> Sequence[ConflictModel]:
        stmt = select(ConflictModel).order_by(ConflictModel.created_at)
        if status is not None:
            stmt = stmt.where(ConflictModel.status == status)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_open(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(ConflictModel).where(
                ConflictModel.status == ConflictStatus.OPEN
            )
        )
        return int(result.scalar_one())

    async def mark_escalated(self, conflict_id: str, notes: str, now: datetime) -> None:
        rowcount = await _apply(
            self.session,
            update(ConflictModel)
            .where(ConflictModel.id == conflict_id, ConflictModel.status == ConflictStatus.OPEN)
            .values(
                requires_human=True,
                resolution={"strategy": "escalate", "notes": notes, "escalated_at": now.isoformat()},
            )
        )
        if rowcount != 1:
            raise TransitionConflict("Conflict", conflict_id, "OPEN", "OPEN")

    async def resolve(
        self,
        conflict_id: str,
        resolution: dict[str, Any],
        now: datetime,
    ) -> None:
        """CAS a conflict from OPEN to RESOLVED."""
        rowcount = await _apply(
            self.session,
            update(ConflictModel)
            .where(ConflictModel.id == conflict_id, ConflictModel.status == ConflictStatus.OPEN)
            .values(
                status=ConflictStatus.RESOLVED,
                resolution=resolution,
                resolved_at=now,
                requires_human=False,
            )
        )
        if rowcount != 1:
            raise TransitionConflict("Conflict", conflict_id, "OPEN", "RESOLVED")


# =============================================================================
# Releases
# =============================================================================


class ReleaseRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def latest(self) -> ReleaseModel | None:
        result = await self.session.execute(
            select(ReleaseModel)
            .order_by(
                ReleaseModel.major.desc(),
                ReleaseModel.minor.desc(),
                ReleaseModel.patch.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_version(self, version: str) -> ReleaseModel:
        result = await self.session.execute(
            select(ReleaseModel).where(ReleaseModel.version == version)
        )
        release = result.scalar_one_or_none()
        if release is None:
            raise NotFoundError("Release", version)
        return release

    async def list(self, limit: int = 50) -> Sequence[ReleaseModel]:
        result = await self.session.execute(
            select(ReleaseModel).order_by(ReleaseModel.released_at.desc()).limit(limit)
        )
        return result.scalars().all()


# =============================================================================
# Agent runs
# =============================================================================


class AgentRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def start(
        self,
        stage: StageType,
        input_id: str,
        now: datetime,
        job_id: str | None = None,
        attempt: int = 1,
    ) -> AgentRunModel:
        run = AgentRunModel(
            stage=stage,
            input_id=input_id,
            job_id=job_id,
            attempt=attempt,
            started_at=now,
            outcome=RunOutcome.RUNNING,
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def complete(
        self,
        run_id: str,
        outcome: RunOutcome,
        now: datetime,
        confidence: float | None = None,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Close a run exactly once."""
        rowcount = await _apply(
            self.session,
            update(AgentRunModel)
            .where(AgentRunModel.id == run_id, AgentRunModel.completed_at.is_(None))
            .values(
                outcome=outcome,
                completed_at=now,
                confidence=confidence,
                error=error,
                details=details,
            )
        )
        if rowcount != 1:
            raise TransitionConflict("AgentRun", run_id, "RUNNING", outcome.value)

    async def for_input(self, input_id: str) -> Sequence[AgentRunModel]:
        result = await self.session.execute(
            select(AgentRunModel)
            .where(AgentRunModel.input_id == input_id)
            .order_by(AgentRunModel.started_at)
        )
        return result.scalars().all()

    async def stage_counts(self, since: datetime) -> dict[StageType, dict[RunOutcome, int]]:
        result = await self.session.execute(
            select(AgentRunModel.stage, AgentRunModel.outcome, func.count())
            .where(AgentRunModel.started_at >= since)
            .group_by(AgentRunModel.stage, AgentRunModel.outcome)
        )
        counts: dict[StageType, dict[RunOutcome, int]] = {}
        for stage, outcome, count in result.all():
            counts.setdefault(stage, {})[outcome] = int(count)
        return counts
