"""Tests for loading and syncing the source registry."""

from pathlib import Path

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from services.regulatory_truth.models import RiskTier, SourceAuthority, SourceModel
from services.regulatory_truth.registry import SourceDefinition, load_registry, sync_registry
from shared.database import db_session


REGISTRY_FILE = Path(__file__).parents[3] / "config" / "sources.json"
URL = "https://narodne-novine.example.hr/clanci/pdv"


class TestSourceDefinition:
    def test_interval_defaults_from_tier(self) -> None:
        assert SourceDefinition(name="NN", url=URL, priority_tier=RiskTier.T0).scrape_interval_hours == 24
        assert SourceDefinition(name="NN", url=URL, priority_tier=RiskTier.T1).scrape_interval_hours == 168
        assert SourceDefinition(name="NN", url=URL, priority_tier=RiskTier.T3).scrape_interval_hours == 720

    def test_explicit_interval_kept(self) -> None:
        definition = SourceDefinition(name="NN", url=URL, priority_tier=RiskTier.T2, scrape_interval_hours=48)
        assert definition.scrape_interval_hours == 48

    def test_invalid_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourceDefinition(name="NN", url="not a url")

    def test_authority_defaults_to_instruction(self) -> None:
        assert SourceDefinition(name="NN", url=URL).authority == SourceAuthority.INSTRUCTION
        assert SourceDefinition(name="NN", url=URL, authority=2).authority == SourceAuthority.LAW

    def test_authority_out_of_range_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourceDefinition(name="NN", url=URL, authority=9)

    def test_bundled_registry_loads(self) -> None:
        definitions = load_registry(REGISTRY_FILE)

        assert definitions
        assert all(d.scrape_interval_hours for d in definitions)
        assert len({str(d.url) for d in definitions}) == len(definitions)
        assert SourceAuthority.LAW in {d.authority for d in definitions}


class TestSyncRegistry:
    """Tests for sync_registry."""

    @pytest.mark.asyncio
    async def test_creates_then_unchanged(self, session_factory) -> None:
        definitions = [SourceDefinition(name="NN PDV", url=URL, priority_tier=RiskTier.T0)]

        async with db_session(session_factory) as session:
            first = await sync_registry(session, definitions)
        async with db_session(session_factory) as session:
            second = await sync_registry(session, definitions)

        assert (first.created, first.updated, first.unchanged) == (1, 0, 0)
        assert (second.created, second.updated, second.unchanged) == (0, 0, 1)

    @pytest.mark.asyncio
    async def test_update_keeps_runtime_state(self, session_factory, factory, clock) -> None:
        """A reload changes registry fields only."""
        source = await factory.source(
            url=URL,
            tier=RiskTier.T2,
            last_content_hash="a" * 64,
            consecutive_errors=3,
            last_checked_at=clock(),
        )

        async with db_session(session_factory) as session:
            result = await sync_registry(
                session, [SourceDefinition(name="Renamed", url=URL, priority_tier=RiskTier.T0)]
            )

        assert result.updated == 1
        async with session_factory() as session:
            [stored] = (await session.scalars(select(SourceModel))).all()
        assert stored.id == source.id
        assert stored.name == "Renamed"
        assert stored.priority_tier == RiskTier.T0
        assert stored.scrape_interval_hours == 24
        assert stored.last_content_hash == "a" * 64
        assert stored.consecutive_errors == 3
        assert stored.last_checked_at == clock()
