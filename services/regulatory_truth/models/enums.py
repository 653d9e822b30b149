"""
Pipeline Enums
==============

Status and classification enums shared by the ORM models and services.

Version: 0.1.0
"""

from enum import Enum


class RiskTier(str, Enum):
    """Criticality of a concept; drives review thresholds and release bumps."""

    T0 = "T0"  # critical, e.g. statutory thresholds
    T1 = "T1"  # high
    T2 = "T2"  # medium
    T3 = "T3"  # low


# Default scrape interval per source tier (hours)
TIER_SCRAPE_INTERVAL_HOURS: dict[RiskTier, int] = {
    RiskTier.T0: 24,
    RiskTier.T1: 168,
    RiskTier.T2: 720,
    RiskTier.T3: 720,
}


class SourceAuthority(int, Enum):
    """Rank of the legal instrument a source publishes; lower outranks higher."""

    CONSTITUTION = 1
    LAW = 2
    REGULATION = 3
    ORDINANCE = 4
    INSTRUCTION = 5
    OPINION = 6
    PRACTICE = 7


class CheckStatus(str, Enum):
    """Per-source scheduler state."""

    DUE = "DUE"
    CHECKING = "CHECKING"
    UNCHANGED = "UNCHANGED"
    CHANGED = "CHANGED"


class RuleStatus(str, Enum):
    """Rule lifecycle."""

    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"
    DEPRECATED = "DEPRECATED"


# Allowed status moves; anything else is refused by the repository
RULE_TRANSITIONS: dict[RuleStatus, frozenset[RuleStatus]] = {
    RuleStatus.DRAFT: frozenset(
        {RuleStatus.DRAFT, RuleStatus.PENDING_REVIEW, RuleStatus.APPROVED, RuleStatus.REJECTED}
    ),
    RuleStatus.PENDING_REVIEW: frozenset(
        {RuleStatus.DRAFT, RuleStatus.APPROVED, RuleStatus.REJECTED}
    ),
    RuleStatus.APPROVED: frozenset({RuleStatus.DRAFT, RuleStatus.PUBLISHED}),
    RuleStatus.PUBLISHED: frozenset({RuleStatus.DEPRECATED}),
    RuleStatus.REJECTED: frozenset(),
    RuleStatus.DEPRECATED: frozenset(),
}

# Statuses that still compete for a concept/time window
LIVE_RULE_STATUSES: frozenset[RuleStatus] = frozenset(
    {
        RuleStatus.DRAFT,
        RuleStatus.PENDING_REVIEW,
        RuleStatus.APPROVED,
        RuleStatus.PUBLISHED,
    }
)


class ConflictStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class ResolutionStrategy(str, Enum):
    """How the Arbiter (or a human) settled a conflict."""

    SUPERSEDE = "supersede"
    MERGE = "merge"
    ESCALATE = "escalate"
    HIERARCHY = "hierarchy"  # same start date, higher source authority wins
    MANUAL = "manual"
    WITHDRAWN = "withdrawn"  # the rules no longer clash


class StageType(str, Enum):
    """Pipeline stages; each has its own queue and worker pool."""

    COLLECTOR = "collector"
    EXTRACTOR = "extractor"
    COMPOSER = "composer"
    REVIEWER = "reviewer"
    ARBITER = "arbiter"
    RELEASER = "releaser"


class RunOutcome(str, Enum):
    """Result of one AgentRun."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    NO_OP = "NO_OP"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
