"""
Queue Messages
==============

Version: 0.1.0
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr

from services.regulatory_truth.models import RunOutcome, StageType
from shared.database import utcnow


class Job(BaseModel):
    """
    One unit of work for a stage.

    Jobs carry ids only; every stage reloads what it needs from the store.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    stage: StageType
    input_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = Field(default=1, ge=1)
    enqueued_at: datetime = Field(default_factory=utcnow)
    last_error: str | None = None
    dead_lettered_at: datetime | None = None

    # Exact serialized form as claimed from Redis (needed to ack it)
    _raw: str | None = PrivateAttr(default=None)

    def to_message(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_message(cls, raw: str | bytes) -> "Job":
        job = cls.model_validate_json(raw)
        job._raw = raw.decode() if isinstance(raw, bytes) else raw
        return job

    def next_attempt(self, error: str) -> "Job":
        return self.model_copy(update={"attempt": self.attempt + 1, "last_error": error})


class StageOutcome(BaseModel):
    """What a stage handler reports back to its worker."""

    outcome: RunOutcome = RunOutcome.SUCCEEDED
    confidence: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)
