"""
Source Registry
===============

Catalogue of monitored endpoints, kept as a JSON file and upserted into
the `sources` table.

Only registry fields are written; runtime state (last hash, error count,
circuit, last check) belongs to the Collector and is never reset by a
reload.

File format:
    {"sources": [{"name": "...", "url": "https://...", "priority_tier": "T0",
                  "content_type_hint": "text/html", "scrape_interval_hours": 24,
                  "authority": 2}]}

`authority` ranks the instrument the source publishes (1 constitution,
2 law, 3 regulation, 4 ordinance, 5 instruction, 6 opinion, 7 practice)
and breaks ties between conflicting rules that start on the same date.

Version: 0.1.0
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, HttpUrl, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import (
    TIER_SCRAPE_INTERVAL_HOURS,
    CheckStatus,
    RiskTier,
    SourceAuthority,
    SourceModel,
)
from services.regulatory_truth.repository import SourceRepository
from shared.logging import get_logger


logger = get_logger(__name__)


class SourceDefinition(BaseModel):
    """One registry entry."""

    name: str = Field(..., min_length=1, max_length=255)
    url: HttpUrl
    priority_tier: RiskTier = RiskTier.T2
    content_type_hint: str | None = Field(default=None, max_length=100)
    scrape_interval_hours: int | None = Field(default=None, ge=1)
    authority: SourceAuthority = SourceAuthority.INSTRUCTION
    active: bool = True

    @model_validator(mode="after")
    def default_interval(self) -> "SourceDefinition":
        if self.scrape_interval_hours is None:
            self.scrape_interval_hours = TIER_SCRAPE_INTERVAL_HOURS[self.priority_tier]
        return self


class SourceRegistryFile(BaseModel):
    sources: list[SourceDefinition] = Field(default_factory=list)


@dataclass
class RegistrySyncResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0


def load_registry(path: Path) -> list[SourceDefinition]:
    """Parse and validate a registry JSON file."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    registry = SourceRegistryFile.model_validate(data)
    logger.info("source_registry_loaded", path=str(path), sources=len(registry.sources))
    return registry.sources


async def sync_registry(
    session: AsyncSession,
    definitions: Sequence[SourceDefinition],
) -> RegistrySyncResult:
    """Upsert registry definitions into `sources`, keyed by url."""
    repo = SourceRepository(session)
    result = RegistrySyncResult()

    for definition in definitions:
        url = str(definition.url)
        source = await repo.get_by_url(url)

        if source is None:
            session.add(
                SourceModel(
                    name=definition.name,
                    url=url,
                    priority_tier=definition.priority_tier,
                    content_type_hint=definition.content_type_hint,
                    scrape_interval_hours=definition.scrape_interval_hours,
                    authority=int(definition.authority),
                    active=definition.active,
                    consecutive_errors=0,
                    check_status=CheckStatus.DUE,
                )
            )
            result.created += 1
            continue

        changes = {
            "name": definition.name,
            "priority_tier": definition.priority_tier,
            "content_type_hint": definition.content_type_hint,
            "scrape_interval_hours": definition.scrape_interval_hours,
            "authority": int(definition.authority),
            "active": definition.active,
        }
        if all(getattr(source, key) == value for key, value in changes.items()):
            result.unchanged += 1
            continue
        for key, value in changes.items():
            setattr(source, key, value)
        result.updated += 1

    await session.flush()
    logger.info(
        "source_registry_synced",
        created=result.created,
        updated=result.updated,
        unchanged=result.unchanged,
    )
    return result
