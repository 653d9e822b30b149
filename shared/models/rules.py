"""
Rule Pipeline Models
====================

API views of rules, citations, conflicts, releases and pipeline status,
plus the request bodies of the manual triggers.

Version: 0.1.0
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _View(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Rules and citations
# =============================================================================


class Citation(_View):
    """One link of a rule's provenance chain: source -> evidence -> quote."""

    pointer_id: str
    evidence_id: str
    source_id: str
    source_url: str
    fetched_at: datetime
    content_hash: str
    exact_quote: str
    quote_start: int
    quote_end: int
    confidence: float
    is_primary: bool = False


class RuleView(_View):
    id: str
    concept_slug: str
    value: dict[str, Any]
    display_value: str
    effective_from: date
    effective_until: date | None = None
    status: str
    risk_tier: str
    confidence: float | None = None
    source_pointer_ids: list[str] = Field(default_factory=list)
    supersedes_id: str | None = None
    review_notes: str | None = None
    reviewed_by: str | None = None
    release_id: str | None = None
    published_at: datetime | None = None


class PublishedRule(RuleView):
    """A PUBLISHED rule with its full citation chain."""

    citations: list[Citation] = Field(default_factory=list)


class RulesAsOfResponse(BaseModel):
    concept_slug: str
    as_of: date
    rules: list[PublishedRule] = Field(default_factory=list)


class ConflictView(_View):
    id: str
    concept_slug: str
    rule_ids: list[str]
    status: str
    reason: str | None = None
    requires_human: bool = False
    resolution: dict[str, Any] | None = None
    created_at: datetime
    resolved_at: datetime | None = None


class ReleaseView(_View):
    id: str
    version: str
    bump: str
    rule_ids: list[str]
    rule_count: int
    content_hash: str
    released_at: datetime


# =============================================================================
# Status surface
# =============================================================================


class SourceStatus(_View):
    id: str
    name: str
    url: str
    priority_tier: str
    check_status: str
    last_checked_at: datetime | None = None
    consecutive_errors: int = 0
    circuit_open_until: datetime | None = None
    last_error: str | None = None
    overdue: bool = False


class StageStats(BaseModel):
    stage: str
    total: int = 0
    failed: int = 0
    outcomes: dict[str, int] = Field(default_factory=dict)

    @property
    def failure_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0


class HealthScore(BaseModel):
    score: float = Field(..., ge=0, le=100)
    level: str
    failure_rate: float
    pending_review: int
    overdue_sources: int
    active_sources: int


class StatusSnapshot(BaseModel):
    generated_at: datetime
    window_hours: int
    sources: list[SourceStatus] = Field(default_factory=list)
    stages: list[StageStats] = Field(default_factory=list)
    open_conflicts: int = 0
    rule_counts: dict[str, int] = Field(default_factory=dict)
    latest_release: ReleaseView | None = None
    rate_limits: dict[str, dict[str, Any]] = Field(default_factory=dict)
    queues: dict[str, dict[str, int]] = Field(default_factory=dict)
    health: HealthScore


# =============================================================================
# Manual triggers
# =============================================================================


class ApproveRuleRequest(BaseModel):
    reviewer: str = Field(..., min_length=1, max_length=255)
    notes: str | None = None


class RejectRuleRequest(BaseModel):
    reviewer: str = Field(..., min_length=1, max_length=255)
    reason: str = Field(..., min_length=1)


class ResolveConflictRequest(BaseModel):
    prevailing_rule_id: str
    resolved_by: str = Field(..., min_length=1, max_length=255)
    notes: str | None = None


class TriggerResponse(BaseModel):
    accepted: bool
    job_ids: list[str] = Field(default_factory=list)
    detail: str | None = None
