"""
Reviewer Service
================

Scores DRAFT rules and decides their next status.

Composite confidence:
    mean extraction confidence of agreeing citations
    x corroboration factor (independent sources)
    x recency factor (age of the newest agreeing evidence)
    x (1 - share of contradicting citations)

Decisions:
- ARBITRATE: the rule has an open conflict; it stays DRAFT
- REJECT: a cited quote no longer anchors in its evidence, or at least
  half of the rule's own citations contradict it
- APPROVE: the tier allows the automatic path and the composite meets the
  tier's auto-approval bar
- PENDING_REVIEW: everything else

| Tier | Approve at | Automatic approval |
|------|------------|--------------------|
| T0   | 0.99       | never              |
| T1   | 0.95       | never              |
| T2   | 0.90       | at >= 0.95         |
| T3   | 0.85       | at >= 0.90         |

Human sign-off (`approve_rule` / `reject_rule`) also lives here.

Version: 0.1.0
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import InvariantViolation
from services.regulatory_truth.extraction.provenance import quote_is_anchored
from services.regulatory_truth.models import (
    ConflictStatus,
    EvidenceModel,
    RiskTier,
    RuleModel,
    RuleStatus,
    SourcePointerModel,
    values_agree,
)
from services.regulatory_truth.repository import (
    ConflictRepository,
    EvidenceRepository,
    PointerRepository,
    RuleRepository,
)
from shared.database import db_session, utcnow
from shared.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class TierPolicy:
    approve_at: float
    auto_approve_at: float | None


TIER_POLICIES: dict[RiskTier, TierPolicy] = {
    RiskTier.T0: TierPolicy(approve_at=0.99, auto_approve_at=None),
    RiskTier.T1: TierPolicy(approve_at=0.95, auto_approve_at=None),
    RiskTier.T2: TierPolicy(approve_at=0.90, auto_approve_at=0.95),
    RiskTier.T3: TierPolicy(approve_at=0.85, auto_approve_at=0.90),
}

AUTO_REVIEWER = "reviewer:auto"

# Contradiction share at which a rule is rejected outright
REJECT_CONTRADICTION_SHARE = 0.5

RECENCY_FULL_DAYS = 180
RECENCY_FLOOR_DAYS = 730
RECENCY_FLOOR = 0.9


class ReviewDecision(str, Enum):
    APPROVE = "APPROVE"
    PENDING_REVIEW = "PENDING_REVIEW"
    REJECT = "REJECT"
    ARBITRATE = "ARBITRATE"
    SKIPPED = "SKIPPED"


@dataclass
class ConfidenceBreakdown:
    extraction: float = 0.0
    corroboration: float = 0.0
    recency: float = 0.0
    contradiction_share: float = 0.0
    independent_sources: int = 0

    @property
    def composite(self) -> float:
        score = self.extraction * self.corroboration * self.recency * (1 - self.contradiction_share)
        return round(max(0.0, min(1.0, score)), 4)


@dataclass
class ReviewResult:
    rule_id: str
    decision: ReviewDecision
    confidence: float | None = None
    reasons: list[str] = field(default_factory=list)
    conflict_ids: list[str] = field(default_factory=list)
    breakdown: ConfidenceBreakdown | None = None


def corroboration_factor(independent_sources: int) -> float:
    if independent_sources <= 0:
        return 0.0
    return min(1.0, 0.95 + 0.025 * (independent_sources - 1))


def recency_factor(age_days: float) -> float:
    if age_days <= RECENCY_FULL_DAYS:
        return 1.0
    if age_days >= RECENCY_FLOOR_DAYS:
        return RECENCY_FLOOR
    span = RECENCY_FLOOR_DAYS - RECENCY_FULL_DAYS
    return 1.0 - (1.0 - RECENCY_FLOOR) * (age_days - RECENCY_FULL_DAYS) / span


def score_rule(
    rule: RuleModel,
    pointers: list[SourcePointerModel],
    evidence: dict[str, EvidenceModel],
    now: datetime,
) -> ConfidenceBreakdown:
    """Composite confidence for a rule from its own citations."""
    agreeing = [p for p in pointers if values_agree(p.value, rule.value)]
    breakdown = ConfidenceBreakdown(
        contradiction_share=(len(pointers) - len(agreeing)) / len(pointers) if pointers else 1.0,
    )
    if not agreeing:
        return breakdown

    breakdown.extraction = sum(p.confidence for p in agreeing) / len(agreeing)
    breakdown.independent_sources = len({evidence[p.evidence_id].source_id for p in agreeing})
    breakdown.corroboration = corroboration_factor(breakdown.independent_sources)

    newest = max(evidence[p.evidence_id].fetched_at for p in agreeing)
    breakdown.recency = recency_factor((now - newest).total_seconds() / 86400)
    return breakdown


class ReviewerService:
    """Automatic review of DRAFT rules plus the human sign-off path."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def review(self, rule_id: str) -> ReviewResult:
        now = self._clock()
        async with db_session(self._session_factory) as session:
            result = await self._review(session, rule_id, now)

        logger.info(
            "rule_reviewed",
            rule_id=rule_id,
            decision=result.decision.value,
            confidence=result.confidence,
            reasons=result.reasons,
        )
        return result

    async def _review(self, session: AsyncSession, rule_id: str, now: datetime) -> ReviewResult:
        rules = RuleRepository(session)
        rule = await rules.get(rule_id)
        if rule.status != RuleStatus.DRAFT:
            return ReviewResult(rule_id, ReviewDecision.SKIPPED, reasons=[f"status is {rule.status.value}"])

        open_conflicts = await ConflictRepository(session).for_rule(rule_id, ConflictStatus.OPEN)
        if open_conflicts:
            return ReviewResult(
                rule_id,
                ReviewDecision.ARBITRATE,
                reasons=["open conflict"],
                conflict_ids=[c.id for c in open_conflicts],
            )

        pointers = await PointerRepository(session).get_many(rule.source_pointer_ids or [])
        evidence = await EvidenceRepository(session).get_many([p.evidence_id for p in pointers])

        problems = provenance_problems(rule, pointers, evidence)
        if problems:
            await rules.transition(
                rule_id,
                RuleStatus.DRAFT,
                RuleStatus.REJECTED,
                now=now,
                review_notes="; ".join(problems),
                reviewed_by=AUTO_REVIEWER,
            )
            return ReviewResult(rule_id, ReviewDecision.REJECT, confidence=0.0, reasons=problems)

        breakdown = score_rule(rule, pointers, evidence, now)
        confidence = breakdown.composite

        if breakdown.contradiction_share >= REJECT_CONTRADICTION_SHARE:
            reason = f"{breakdown.contradiction_share:.0%} of citations contradict the value"
            await rules.transition(
                rule_id,
                RuleStatus.DRAFT,
                RuleStatus.REJECTED,
                now=now,
                confidence=confidence,
                review_notes=reason,
                reviewed_by=AUTO_REVIEWER,
            )
            return ReviewResult(rule_id, ReviewDecision.REJECT, confidence, [reason], breakdown=breakdown)

        policy = TIER_POLICIES[rule.risk_tier]
        if policy.auto_approve_at is not None and confidence >= policy.auto_approve_at:
            await rules.transition(
                rule_id,
                RuleStatus.DRAFT,
                RuleStatus.APPROVED,
                automatic=True,
                risk_tier=rule.risk_tier,
                now=now,
                confidence=confidence,
                approved_at=now,
                reviewed_by=AUTO_REVIEWER,
            )
            return ReviewResult(
                rule_id,
                ReviewDecision.APPROVE,
                confidence,
                [f"{rule.risk_tier.value} auto-approval at {confidence:.4f}"],
                breakdown=breakdown,
            )

        if policy.auto_approve_at is None:
            reason = f"{rule.risk_tier.value} requires human review"
        elif confidence >= policy.approve_at:
            reason = f"{confidence:.4f} below auto-approval bar {policy.auto_approve_at}"
        else:
            reason = f"{confidence:.4f} below approval threshold {policy.approve_at}"

        await rules.transition(
            rule_id,
            RuleStatus.DRAFT,
            RuleStatus.PENDING_REVIEW,
            now=now,
            confidence=confidence,
            review_notes=reason,
        )
        return ReviewResult(rule_id, ReviewDecision.PENDING_REVIEW, confidence, [reason], breakdown=breakdown)

    # =========================================================================
    # Human sign-off
    # =========================================================================

    async def approve_rule(self, rule_id: str, reviewer: str, notes: str | None = None) -> RuleModel:
        """
        Approve a PENDING_REVIEW rule on behalf of a named human.

        Raises:
            InvariantViolation: no reviewer, open conflicts, or broken provenance
            TransitionConflict: the rule is not pending review
        """
        if not reviewer or not reviewer.strip():
            raise InvariantViolation("a named reviewer is required", rule_id=rule_id)

        now = self._clock()
        async with db_session(self._session_factory) as session:
            rules = RuleRepository(session)
            rule = await rules.get(rule_id)

            if await ConflictRepository(session).has_open(rule_id):
                raise InvariantViolation("rule has open conflicts", rule_id=rule_id)

            pointers = await PointerRepository(session).get_many(rule.source_pointer_ids or [])
            evidence = await EvidenceRepository(session).get_many([p.evidence_id for p in pointers])
            problems = provenance_problems(rule, pointers, evidence)
            if problems:
                raise InvariantViolation("; ".join(problems), rule_id=rule_id)

            await rules.transition(
                rule_id,
                RuleStatus.PENDING_REVIEW,
                RuleStatus.APPROVED,
                now=now,
                approved_at=now,
                reviewed_by=reviewer.strip(),
                review_notes=notes or rule.review_notes,
            )
            rule = await rules.refresh(rule)

        logger.info("rule_approved", rule_id=rule_id, reviewer=reviewer)
        return rule

    async def reject_rule(self, rule_id: str, reviewer: str, reason: str) -> RuleModel:
        """Reject a DRAFT or PENDING_REVIEW rule."""
        if not reviewer or not reviewer.strip():
            raise InvariantViolation("a named reviewer is required", rule_id=rule_id)

        now = self._clock()
        async with db_session(self._session_factory) as session:
            rules = RuleRepository(session)
            rule = await rules.get(rule_id)
            if rule.status not in (RuleStatus.DRAFT, RuleStatus.PENDING_REVIEW):
                raise InvariantViolation(
                    f"cannot reject a {rule.status.value} rule",
                    rule_id=rule_id,
                )
            await rules.transition(
                rule_id,
                rule.status,
                RuleStatus.REJECTED,
                now=now,
                reviewed_by=reviewer.strip(),
                review_notes=reason,
            )
            rule = await rules.refresh(rule)

        logger.info("rule_rejected", rule_id=rule_id, reviewer=reviewer)
        return rule


def provenance_problems(
    rule: RuleModel,
    pointers: list[SourcePointerModel],
    evidence: dict[str, EvidenceModel],
) -> list[str]:
    """Every cited quote must still be a literal slice of its evidence."""
    if not pointers:
        return ["rule cites no source pointers"]

    problems = []
    missing = set(rule.source_pointer_ids or []) - {p.id for p in pointers}
    if missing:
        problems.append(f"missing pointers: {', '.join(sorted(missing))}")

    for pointer in pointers:
        record = evidence.get(pointer.evidence_id)
        if record is None:
            problems.append(f"pointer {pointer.id}: evidence missing")
        elif not quote_is_anchored(
            record.raw_content,
            pointer.exact_quote,
            pointer.quote_start,
            pointer.quote_end,
        ):
            problems.append(f"pointer {pointer.id}: quote not found at recorded offsets")
    return problems
