"""
Source Model
============

A monitored regulatory endpoint and its runtime check state.

Version: 0.1.0
"""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    Boolean,
    Column,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from services.regulatory_truth.models.enums import CheckStatus, RiskTier, SourceAuthority
from shared.database import Base, UTCDateTime, utcnow


class SourceModel(Base):
    """
    Fetchable endpoint from the source registry.

    Registry fields (url, name, tier, interval, hint, authority) are
    configuration; the remaining columns are owned by the Collector and
    Scheduler.
    """

    __tablename__ = "sources"
    __table_args__ = (
        Index("ix_sources_due", "priority_tier", "last_checked_at"),
        Index("ix_sources_check_status", "check_status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Registry
    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False, unique=True)
    content_type_hint = Column(String(100))
    priority_tier = Column(SQLEnum(RiskTier, native_enum=False, length=8), nullable=False)
    scrape_interval_hours = Column(Integer, nullable=False)
    authority = Column(Integer, nullable=False, default=int(SourceAuthority.INSTRUCTION))
    active = Column(Boolean, nullable=False, default=True)

    # Runtime state
    last_checked_at = Column(UTCDateTime())
    last_content_hash = Column(String(64))
    consecutive_errors = Column(Integer, nullable=False, default=0)
    circuit_open_until = Column(UTCDateTime())
    last_error = Column(Text)
    check_status = Column(
        SQLEnum(CheckStatus, native_enum=False, length=16),
        nullable=False,
        default=CheckStatus.DUE,
    )
    check_started_at = Column(UTCDateTime())

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    evidence = relationship("EvidenceModel", back_populates="source", lazy="noload")

    def next_due_at(self) -> datetime | None:
        """When the source becomes due; None means due immediately."""
        if self.last_checked_at is None:
            return None
        return self.last_checked_at + timedelta(hours=self.scrape_interval_hours)

    def is_due(self, now: datetime) -> bool:
        due_at = self.next_due_at()
        return due_at is None or due_at <= now

    def overdue_seconds(self, now: datetime) -> float:
        """Seconds past due; never-checked sources count as most overdue."""
        due_at = self.next_due_at()
        if due_at is None:
            return float("inf")
        return (now - due_at).total_seconds()

    def circuit_open(self, now: datetime) -> bool:
        return self.circuit_open_until is not None and self.circuit_open_until > now

    def __repr__(self) -> str:
        return f"<Source {self.id} {self.url} {self.priority_tier}>"
