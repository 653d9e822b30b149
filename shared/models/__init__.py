"""
Shared Models
=============

Pydantic models shared by the pipeline's API surface.

Models:
- Rule views (RuleView, PublishedRule, Citation)
- Conflict and release views
- Status snapshot and health score
- Manual trigger requests
"""

from shared.models.common import (
    ErrorResponse,
    HealthResponse,
)
from shared.models.rules import (
    ApproveRuleRequest,
    Citation,
    ConflictView,
    HealthScore,
    PublishedRule,
    RejectRuleRequest,
    ReleaseView,
    ResolveConflictRequest,
    RulesAsOfResponse,
    RuleView,
    SourceStatus,
    StageStats,
    StatusSnapshot,
    TriggerResponse,
)

__all__ = [
    # Common
    "ErrorResponse",
    "HealthResponse",
    # Rules
    "ApproveRuleRequest",
    "Citation",
    "ConflictView",
    "HealthScore",
    "PublishedRule",
    "RejectRuleRequest",
    "ReleaseView",
    "ResolveConflictRequest",
    "RulesAsOfResponse",
    "RuleView",
    "SourceStatus",
    "StageStats",
    "StatusSnapshot",
    "TriggerResponse",
]
