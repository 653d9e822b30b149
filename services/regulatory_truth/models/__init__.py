"""
Regulatory Truth Models
=======================

ORM models, lifecycle enums and rule value variants.
"""

from services.regulatory_truth.models.agent_run import AgentRunModel
from services.regulatory_truth.models.enums import (
    LIVE_RULE_STATUSES,
    RULE_TRANSITIONS,
    TIER_SCRAPE_INTERVAL_HOURS,
    CheckStatus,
    ConflictStatus,
    ResolutionStrategy,
    RiskTier,
    RuleStatus,
    RunOutcome,
    SourceAuthority,
    StageType,
)
from services.regulatory_truth.models.evidence import EvidenceModel, SourcePointerModel
from services.regulatory_truth.models.release import ReleaseModel
from services.regulatory_truth.models.rule import (
    ConflictModel,
    RuleModel,
    conflict_rules,
    windows_overlap,
)
from services.regulatory_truth.models.source import SourceModel
from services.regulatory_truth.models.values import (
    ChoiceValue,
    DateValue,
    RateValue,
    RuleValue,
    ThresholdValue,
    ValueKind,
    parse_value,
    value_digest,
    values_agree,
)


__all__ = [
    # ORM
    "AgentRunModel",
    "ConflictModel",
    "EvidenceModel",
    "ReleaseModel",
    "RuleModel",
    "SourceModel",
    "SourcePointerModel",
    "conflict_rules",
    "windows_overlap",
    # Enums
    "CheckStatus",
    "ConflictStatus",
    "LIVE_RULE_STATUSES",
    "ResolutionStrategy",
    "RiskTier",
    "RULE_TRANSITIONS",
    "RuleStatus",
    "RunOutcome",
    "SourceAuthority",
    "StageType",
    "TIER_SCRAPE_INTERVAL_HOURS",
    # Values
    "ChoiceValue",
    "DateValue",
    "RateValue",
    "RuleValue",
    "ThresholdValue",
    "ValueKind",
    "parse_value",
    "value_digest",
    "values_agree",
]
