"""
Rules Routes
============

Read-only endpoints for downstream consumers. Only PUBLISHED rules are
served.

Version: 0.1.0
"""

from datetime import date

from fastapi import APIRouter, Depends, Query

from services.regulatory_truth.dependencies import get_query_service
from services.regulatory_truth.services import RuleQueryService
from shared.logging import get_logger
from shared.models import ReleaseView, RulesAsOfResponse, RuleView


logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=RulesAsOfResponse)
async def rules_as_of(
    concept: str = Query(..., min_length=1, description="Concept slug, e.g. vat-standard-rate"),
    as_of: date = Query(..., description="Date the rules must be in force on"),
    service: RuleQueryService = Depends(get_query_service),
) -> RulesAsOfResponse:
    """
    Published rules for a concept in force on a date.

    Args:
        concept: Concept slug or alias
        as_of: ISO date
        service: Rule query service
    """
    found = await service.rules_as_of(concept, as_of)
    return RulesAsOfResponse(
        concept_slug=service.canonical_slug(concept),
        as_of=as_of,
        rules=found,
    )


@router.get("/published", response_model=list[RuleView])
async def list_published(
    concept: str | None = Query(default=None, description="Filter by concept slug"),
    service: RuleQueryService = Depends(get_query_service),
) -> list[RuleView]:
    """List every currently published rule."""
    return await service.published(concept)


@router.get("/releases", response_model=list[ReleaseView])
async def list_releases(
    limit: int = Query(default=20, ge=1, le=200),
    service: RuleQueryService = Depends(get_query_service),
) -> list[ReleaseView]:
    """Most recent releases first."""
    return await service.releases(limit)
