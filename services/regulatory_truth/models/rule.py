"""
Rule and Conflict Models
========================

Synthesized compliance statements and the conflicts between them.

Version: 0.1.0
"""

import uuid
from datetime import date
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from services.regulatory_truth.errors import ImmutableRecordError
from services.regulatory_truth.models.enums import (
    ConflictStatus,
    RiskTier,
    RuleStatus,
)
from services.regulatory_truth.models.guards import changed_attributes, committed_value
from services.regulatory_truth.models.values import RuleValue, parse_value
from shared.database import Base, UTCDateTime, utcnow


conflict_rules = Table(
    "conflict_rules",
    Base.metadata,
    Column("conflict_id", String(36), ForeignKey("conflicts.id"), primary_key=True),
    Column("rule_id", String(36), ForeignKey("rules.id"), primary_key=True),
)


def windows_overlap(
    a_from: date,
    a_until: date | None,
    b_from: date,
    b_until: date | None,
) -> bool:
    """Half-open [from, until) overlap; None means open-ended."""
    a_before_b_ends = b_until is None or a_from < b_until
    b_before_a_ends = a_until is None or b_from < a_until
    return a_before_b_ends and b_before_a_ends


class RuleModel(Base):
    """
    A rule candidate or published rule.

    `composed_from`/`composed_until` record the window the Composer derived
    from the pointers; `effective_from`/`effective_until` are the window in
    force, which the Arbiter may truncate.
    """

    __tablename__ = "rules"
    __table_args__ = (
        Index("ix_rules_concept_status", "concept_slug", "status"),
        Index("ix_rules_status", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    concept_slug = Column(String(200), nullable=False)
    value = Column(JSON, nullable=False)

    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)
    composed_from = Column(Date, nullable=False)
    composed_until = Column(Date)

    status = Column(
        SQLEnum(RuleStatus, native_enum=False, length=32),
        nullable=False,
        default=RuleStatus.DRAFT,
    )
    risk_tier = Column(SQLEnum(RiskTier, native_enum=False, length=8), nullable=False)
    confidence = Column(Float)

    source_pointer_ids = Column(JSON, nullable=False, default=list)
    primary_pointer_id = Column(String(36))
    fingerprint = Column(String(64), nullable=False, unique=True)

    supersedes_id = Column(String(36), ForeignKey("rules.id"))

    # Review trail
    review_notes = Column(Text)
    reviewed_by = Column(String(255))
    approved_at = Column(UTCDateTime())
    published_at = Column(UTCDateTime())
    deprecated_at = Column(UTCDateTime())
    release_id = Column(String(36))

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    conflicts = relationship(
        "ConflictModel",
        secondary=conflict_rules,
        back_populates="rules",
        lazy="noload",
    )

    @property
    def rule_value(self) -> RuleValue:
        return parse_value(self.value)

    def overlaps(self, other: "RuleModel") -> bool:
        return windows_overlap(
            self.effective_from,
            self.effective_until,
            other.effective_from,
            other.effective_until,
        )

    def in_force_on(self, as_of: date) -> bool:
        return self.effective_from <= as_of and (
            self.effective_until is None or self.effective_until > as_of
        )

    def __repr__(self) -> str:
        return f"<Rule {self.id} {self.concept_slug} {self.status}>"


# Once published, only deprecation may touch a rule
_PUBLISHED_MUTABLE = frozenset({"status", "deprecated_at", "updated_at"})


@event.listens_for(RuleModel, "before_update")
def _freeze_published_rule(mapper: Any, connection: Any, target: RuleModel) -> None:
    previous = committed_value(target, "status")
    if previous not in (RuleStatus.PUBLISHED, RuleStatus.DEPRECATED):
        return
    changed = set(changed_attributes(target))
    illegal = changed - _PUBLISHED_MUTABLE
    if previous == RuleStatus.DEPRECATED and changed:
        illegal = changed
    elif "status" in changed and target.status != RuleStatus.DEPRECATED:
        illegal.add("status")
    if illegal:
        raise ImmutableRecordError(
            f"Rule {target.id} is {previous.value} and cannot be edited",
            fields=sorted(illegal),
        )


class ConflictModel(Base):
    """
    Two or more rule candidates disagreeing over an overlapping window.

    `rule_set_key` (sorted rule ids) deduplicates conflicts across runs.
    """

    __tablename__ = "conflicts"
    __table_args__ = (Index("ix_conflicts_status", "status"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    concept_slug = Column(String(200), nullable=False, index=True)
    rule_set_key = Column(String(800), nullable=False, unique=True)
    rule_ids = Column(JSON, nullable=False, default=list)

    status = Column(
        SQLEnum(ConflictStatus, native_enum=False, length=16),
        nullable=False,
        default=ConflictStatus.OPEN,
    )
    reason = Column(Text)
    requires_human = Column(Boolean, nullable=False, default=False)

    # {"strategy", "prevailing_rule_id", "replacement_rule_ids", "resolved_by", "notes"}
    resolution = Column(JSON)

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    resolved_at = Column(UTCDateTime())

    rules = relationship(
        "RuleModel",
        secondary=conflict_rules,
        back_populates="conflicts",
        lazy="noload",
    )

    @staticmethod
    def key_for(rule_ids: list[str]) -> str:
        return ",".join(sorted(rule_ids))

    def __repr__(self) -> str:
        return f"<Conflict {self.id} {self.concept_slug} {self.status}>"
