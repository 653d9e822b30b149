"""
Composer Tests
==============

Tests for rule synthesis from source pointers, idempotent recomposition
and conflict detection.

Version: 0.1.0
"""

from datetime import date

import pytest
from sqlalchemy import select

from services.regulatory_truth.errors import TransientError
from services.regulatory_truth.models import (
    ConflictModel,
    ConflictStatus,
    RiskTier,
    RuleModel,
    RuleStatus,
)
from services.regulatory_truth.services import ComposerService
from shared.database import redis_lock


CONCEPT = "vat-registration-threshold"
TEXT_2025 = "Od 1. siječnja 2025. prag iznosi 60.000 eura."
TEXT_2024 = "Od 1. siječnja 2024. prag iznosi 40.000 eura."


@pytest.fixture
def composer(session_factory, redis, clock) -> ComposerService:
    return ComposerService(session_factory, redis, clock=clock)


async def all_rules(session_factory) -> list[RuleModel]:
    async with session_factory() as session:
        return list((await session.scalars(select(RuleModel).order_by(RuleModel.effective_from))).all())


async def all_conflicts(session_factory) -> list[ConflictModel]:
    async with session_factory() as session:
        return list((await session.scalars(select(ConflictModel))).all())


async def cite(factory, text: str, amount: int, effective_from: date, **kwargs):
    evidence = await factory.evidence(await factory.source(), text)
    quote = text[text.index("prag"):].rstrip(".")
    return await factory.pointer(
        evidence, CONCEPT, threshold_json(amount), quote, effective_from, **kwargs
    )


def threshold_json(amount: int) -> dict:
    return {"kind": "threshold", "amount": str(amount), "currency": "EUR"}


# =============================================================================
# Rule Synthesis
# =============================================================================


class TestComposition:
    """Tests for drafting rules per window."""

    @pytest.mark.asyncio
    async def test_single_pointer_drafts_rule(self, composer, factory, session_factory) -> None:
        pointer = await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))

        result = await composer.compose(CONCEPT)

        assert len(result.created) == 1
        [rule] = await all_rules(session_factory)
        assert rule.status == RuleStatus.DRAFT
        assert rule.risk_tier == RiskTier.T0
        assert rule.value == threshold_json(60000)
        assert rule.effective_from == date(2025, 1, 1)
        assert rule.effective_until is None
        assert rule.primary_pointer_id == pointer.id
        assert rule.source_pointer_ids == [pointer.id]

    @pytest.mark.asyncio
    async def test_alias_concept_is_composed_under_canonical_slug(self, composer, factory) -> None:
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))

        result = await composer.compose("pdv-threshold")

        assert result.concept_slug == CONCEPT
        assert len(result.created) == 1

    @pytest.mark.asyncio
    async def test_corroborating_pointers_attached(self, composer, factory, session_factory) -> None:
        """Every pointer in a window is cited; the most confident is primary."""
        weak = await cite(factory, TEXT_2025, 60000, date(2025, 1, 1), confidence=0.85)
        strong = await cite(factory, TEXT_2025, 60000, date(2025, 1, 1), confidence=0.99)

        await composer.compose(CONCEPT)

        [rule] = await all_rules(session_factory)
        assert rule.primary_pointer_id == strong.id
        assert rule.source_pointer_ids == sorted([weak.id, strong.id])
        assert rule.confidence == pytest.approx(0.99)

    @pytest.mark.asyncio
    async def test_recompose_is_noop(self, composer, factory, session_factory) -> None:
        """Re-running over unchanged pointers writes nothing."""
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))

        first = await composer.compose(CONCEPT)
        second = await composer.compose(CONCEPT)

        assert second.is_noop
        assert second.unchanged == first.created
        assert len(await all_rules(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_new_pointer_updates_draft(self, composer, factory, session_factory) -> None:
        """A new citation in the same window updates the existing draft."""
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1), confidence=0.9)
        first = await composer.compose(CONCEPT)

        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1), confidence=0.95)
        second = await composer.compose(CONCEPT)

        assert second.updated == first.created
        [rule] = await all_rules(session_factory)
        assert len(rule.source_pointer_ids) == 2
        assert rule.status == RuleStatus.DRAFT

    @pytest.mark.asyncio
    async def test_disjoint_windows_no_conflict(self, composer, factory, session_factory) -> None:
        await cite(factory, TEXT_2024, 40000, date(2024, 1, 1), effective_until=date(2025, 1, 1))
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))

        result = await composer.compose(CONCEPT)

        assert len(result.created) == 2
        assert result.conflicts == []
        assert await all_conflicts(session_factory) == []

    @pytest.mark.asyncio
    async def test_concept_lock_held(self, composer, factory, redis) -> None:
        """A second composer for the same concept backs off."""
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))

        async with redis_lock(redis, f"concept:{CONCEPT}") as acquired:
            assert acquired
            with pytest.raises(TransientError):
                await composer.compose(CONCEPT)


# =============================================================================
# Conflict Detection
# =============================================================================


class TestConflictDetection:
    """Tests for overlapping disagreeing rules."""

    @pytest.mark.asyncio
    async def test_overlapping_values_open_one_conflict(self, composer, factory, session_factory) -> None:
        """60000 from 2025 vs 40000 from 2024, both open-ended."""
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))
        await cite(factory, TEXT_2024, 40000, date(2024, 1, 1))

        result = await composer.compose(CONCEPT)

        rules = await all_rules(session_factory)
        assert [r.status for r in rules] == [RuleStatus.DRAFT, RuleStatus.DRAFT]
        conflicts = await all_conflicts(session_factory)
        assert len(conflicts) == 1
        assert conflicts[0].status == ConflictStatus.OPEN
        assert conflicts[0].rule_ids == sorted(r.id for r in rules)
        assert result.conflicts == [conflicts[0].id]

    @pytest.mark.asyncio
    async def test_conflict_not_duplicated(self, composer, factory, session_factory) -> None:
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))
        await cite(factory, TEXT_2024, 40000, date(2024, 1, 1))

        await composer.compose(CONCEPT)
        again = await composer.compose(CONCEPT)

        assert again.conflicts == []
        assert len(await all_conflicts(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_conflict_reason_names_both_values(self, composer, factory, session_factory) -> None:
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))
        await cite(factory, TEXT_2024, 40000, date(2024, 1, 1))

        await composer.compose(CONCEPT)

        [conflict] = await all_conflicts(session_factory)
        assert "60000 EUR" in conflict.reason
        assert "40000 EUR" in conflict.reason

    @pytest.mark.asyncio
    async def test_agreeing_value_different_window_conflicts(
        self, composer, factory, session_factory
    ) -> None:
        """Same value restated with an overlapping window still needs arbitration."""
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1))
        await cite(factory, TEXT_2025, 60000, date(2025, 1, 1), effective_until=date(2026, 1, 1))

        await composer.compose(CONCEPT)

        assert len(await all_rules(session_factory)) == 2
        assert len(await all_conflicts(session_factory)) == 1
