"""
Admin Routes
============

Manual triggers and human decisions.

Every action goes through the same services and state machines as the
automatic pipeline; nothing here writes to the store directly.

Version: 0.1.0
"""

from fastapi import APIRouter, Depends, Query, status

from services.regulatory_truth.dependencies import get_admin_service
from services.regulatory_truth.models import ConflictStatus, RiskTier, StageType
from services.regulatory_truth.queue import Job
from services.regulatory_truth.services import AdminService
from shared.logging import get_logger
from shared.models import (
    ApproveRuleRequest,
    ConflictView,
    RejectRuleRequest,
    ResolveConflictRequest,
    RuleView,
    TriggerResponse,
)


logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Triggers
# =============================================================================


@router.post(
    "/sources/{source_id}/check",
    response_model=TriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def force_source_check(
    source_id: str,
    service: AdminService = Depends(get_admin_service),
) -> TriggerResponse:
    """
    Queue an immediate check of one source.

    Args:
        source_id: Source ID
        service: Admin service
    """
    return await service.force_source_check(source_id)


@router.post(
    "/tiers/{tier}/run",
    response_model=TriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def force_tier_run(
    tier: RiskTier,
    service: AdminService = Depends(get_admin_service),
) -> TriggerResponse:
    """Queue a check of every active source in a tier."""
    return await service.force_tier_run(tier)


@router.post("/domains/{domain}/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_domain(
    domain: str,
    service: AdminService = Depends(get_admin_service),
) -> None:
    """Close a domain's rate limiter circuit and clear its error count."""
    service.reset_domain(domain)
    logger.info("domain_reset", domain=domain)


# =============================================================================
# Conflicts
# =============================================================================


@router.get("/conflicts", response_model=list[ConflictView])
async def list_conflicts(
    conflict_status: ConflictStatus | None = Query(default=None, alias="status"),
    service: AdminService = Depends(get_admin_service),
) -> list[ConflictView]:
    """List conflicts, optionally filtered by status."""
    return await service.conflicts(conflict_status)


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictView)
async def resolve_conflict(
    conflict_id: str,
    request: ResolveConflictRequest,
    service: AdminService = Depends(get_admin_service),
) -> ConflictView:
    """
    Settle a conflict by naming the prevailing rule.

    Args:
        conflict_id: Conflict ID
        request: Prevailing rule and the person resolving
        service: Admin service
    """
    return await service.resolve_conflict(
        conflict_id,
        request.prevailing_rule_id,
        request.resolved_by,
        request.notes,
    )


# =============================================================================
# Review
# =============================================================================


@router.get("/rules/pending", response_model=list[RuleView])
async def list_pending_rules(
    service: AdminService = Depends(get_admin_service),
) -> list[RuleView]:
    """Rules waiting for human sign-off."""
    return await service.pending_rules()


@router.post("/rules/{rule_id}/approve", response_model=RuleView)
async def approve_rule(
    rule_id: str,
    request: ApproveRuleRequest,
    service: AdminService = Depends(get_admin_service),
) -> RuleView:
    """
    Human sign-off on a PENDING_REVIEW rule.

    Args:
        rule_id: Rule ID
        request: Reviewer and optional notes
        service: Admin service
    """
    return await service.approve_rule(rule_id, request.reviewer, request.notes)


@router.post("/rules/{rule_id}/reject", response_model=RuleView)
async def reject_rule(
    rule_id: str,
    request: RejectRuleRequest,
    service: AdminService = Depends(get_admin_service),
) -> RuleView:
    """Reject a DRAFT or PENDING_REVIEW rule."""
    return await service.reject_rule(rule_id, request.reviewer, request.reason)


# =============================================================================
# Dead letters
# =============================================================================


@router.get("/dead-letters/{stage}", response_model=list[Job])
async def list_dead_letters(
    stage: StageType,
    limit: int = Query(default=100, ge=1, le=1000),
    service: AdminService = Depends(get_admin_service),
) -> list[Job]:
    """Jobs that exhausted their retries."""
    return await service.dead_letters(stage, limit)


@router.post("/dead-letters/{stage}/replay", response_model=TriggerResponse)
async def replay_dead_letters(
    stage: StageType,
    job_id: str | None = Query(default=None, description="Replay a single job"),
    service: AdminService = Depends(get_admin_service),
) -> TriggerResponse:
    """Move dead-lettered jobs back to the ready queue with a fresh attempt count."""
    replayed = await service.replay_dead_letters(stage, job_id)
    return TriggerResponse(accepted=replayed > 0, detail=f"{replayed} job(s) replayed")
