"""
Regulatory Truth Services
=========================

Stage services and read surfaces.

Services:
- ComposerService: pointers -> DRAFT rules and conflicts
- ReviewerService: confidence scoring, tiered approval, human sign-off
- ArbiterService: supersede / merge / escalate, manual resolution
- ReleaserService: semver releases of approved rules
- SchedulerService: due-source selection
- RuleQueryService / StatusService / AdminService: API surfaces

Version: 0.1.0
"""

from services.regulatory_truth.services.admin import AdminService
from services.regulatory_truth.services.arbiter import ArbiterService, ArbitrationResult
from services.regulatory_truth.services.composer import ComposeResult, ComposerService
from services.regulatory_truth.services.query import RuleQueryService, rule_view
from services.regulatory_truth.services.releaser import ReleaseResult, ReleaserService
from services.regulatory_truth.services.reviewer import (
    ReviewDecision,
    ReviewerService,
    ReviewResult,
)
from services.regulatory_truth.services.scheduler import ScheduleResult, SchedulerService
from services.regulatory_truth.services.status import StatusService, health_score


__all__ = [
    # Stages
    "ArbiterService",
    "ArbitrationResult",
    "ComposeResult",
    "ComposerService",
    "ReleaseResult",
    "ReleaserService",
    "ReviewDecision",
    "ReviewResult",
    "ReviewerService",
    # Orchestration
    "ScheduleResult",
    "SchedulerService",
    # Surfaces
    "AdminService",
    "RuleQueryService",
    "StatusService",
    "health_score",
    "rule_view",
]
