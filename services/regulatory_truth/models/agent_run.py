"""
AgentRun Model
==============

Audit trail: one row per stage execution attempt over one input.

Version: 0.1.0
"""

import uuid
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Enum as SQLEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
    event,
)

from services.regulatory_truth.errors import ImmutableRecordError
from services.regulatory_truth.models.enums import RunOutcome, StageType
from services.regulatory_truth.models.guards import changed_attributes, committed_value
from shared.database import Base, UTCDateTime, utcnow


class AgentRunModel(Base):
    __tablename__ = "agent_runs"
    __table_args__ = (
        Index("ix_agent_runs_stage_started", "stage", "started_at"),
        Index("ix_agent_runs_input", "input_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    stage = Column(SQLEnum(StageType, native_enum=False, length=16), nullable=False)
    input_id = Column(String(200), nullable=False)  # evidence, rule, conflict id or concept slug
    job_id = Column(String(36))
    attempt = Column(Integer, nullable=False, default=1)

    started_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime())
    outcome = Column(
        SQLEnum(RunOutcome, native_enum=False, length=16),
        nullable=False,
        default=RunOutcome.RUNNING,
    )
    confidence = Column(Float)
    error = Column(Text)
    details = Column(JSON)

    @property
    def failed(self) -> bool:
        return self.outcome == RunOutcome.FAILED

    def __repr__(self) -> str:
        return f"<AgentRun {self.stage} {self.input_id} {self.outcome}>"


@event.listens_for(AgentRunModel, "before_update")
def _freeze_completed_run(mapper: Any, connection: Any, target: AgentRunModel) -> None:
    if committed_value(target, "completed_at") is not None and changed_attributes(target):
        raise ImmutableRecordError(f"AgentRun {target.id} is complete and cannot change")
