"""
Queue Package
=============

Redis-backed stage queues, worker pools and the stage hand-off wiring.
"""

from services.regulatory_truth.queue.jobs import Job, StageOutcome
from services.regulatory_truth.queue.redis_queue import RedisStageQueue, backoff_delay
from services.regulatory_truth.queue.worker import StageHandler, StageWorker

__all__ = [
    "Job",
    "RedisStageQueue",
    "StageHandler",
    "StageOutcome",
    "StageWorker",
    "backoff_delay",
]
