"""
Release Model
=============

Append-only, semantically versioned batches of published rules.

Version: 0.1.0
"""

import uuid

from sqlalchemy import JSON, Column, Integer, String

from services.regulatory_truth.models.guards import make_append_only
from shared.database import Base, UTCDateTime, utcnow


class ReleaseModel(Base):
    __tablename__ = "releases"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    version = Column(String(32), nullable=False, unique=True)
    major = Column(Integer, nullable=False)
    minor = Column(Integer, nullable=False)
    patch = Column(Integer, nullable=False)
    bump = Column(String(8), nullable=False)

    rule_ids = Column(JSON, nullable=False, default=list)
    rule_count = Column(Integer, nullable=False, default=0)
    content_hash = Column(String(64), nullable=False)

    released_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Release {self.version} rules={self.rule_count}>"


make_append_only(ReleaseModel, "Release")
