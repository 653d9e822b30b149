"""
Evidence and SourcePointer Models
=================================

Append-only records: one fetch snapshot, and the atomic facts extracted
from it. Both reject updates and deletes at the ORM level.

Version: 0.1.0
"""

import uuid

from sqlalchemy import (
    JSON,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from services.regulatory_truth.models.guards import make_append_only
from services.regulatory_truth.models.values import RuleValue, parse_value
from shared.database import Base, UTCDateTime, utcnow


class EvidenceModel(Base):
    """One immutable fetch snapshot of a source."""

    __tablename__ = "evidence"
    __table_args__ = (
        UniqueConstraint("source_id", "content_hash", name="uq_evidence_source_hash"),
        Index("ix_evidence_fetched", "fetched_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False, index=True)

    url = Column(String(2048), nullable=False)
    raw_content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    content_type = Column(String(100))
    http_status = Column(Integer)

    fetched_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    source = relationship("SourceModel", back_populates="evidence", lazy="noload")
    pointers = relationship("SourcePointerModel", back_populates="evidence", lazy="noload")

    def __repr__(self) -> str:
        return f"<Evidence {self.id} source={self.source_id} hash={self.content_hash[:12]}>"


class SourcePointerModel(Base):
    """
    One extracted fact.

    `exact_quote` is always `evidence.raw_content[quote_start:quote_end]`.
    """

    __tablename__ = "source_pointers"
    __table_args__ = (Index("ix_pointers_concept", "concept_slug"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    evidence_id = Column(String(36), ForeignKey("evidence.id"), nullable=False, index=True)

    concept_slug = Column(String(200), nullable=False)
    value = Column(JSON, nullable=False)
    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)

    exact_quote = Column(Text, nullable=False)
    quote_start = Column(Integer, nullable=False)
    quote_end = Column(Integer, nullable=False)

    confidence = Column(Float, nullable=False)
    extractor_model = Column(String(100))
    fingerprint = Column(String(64), nullable=False, unique=True)

    extracted_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    evidence = relationship("EvidenceModel", back_populates="pointers", lazy="noload")

    @property
    def claimed_value(self) -> RuleValue:
        return parse_value(self.value)

    def __repr__(self) -> str:
        return f"<SourcePointer {self.id} {self.concept_slug}>"


make_append_only(EvidenceModel, "Evidence")
make_append_only(SourcePointerModel, "SourcePointer")
