"""
Database Module
===============

Async clients for the pipeline's infrastructure.

Clients:
- Relational store (SQLAlchemy asyncio; asyncpg in production)
- Redis (stage queues, per-concept locks)
- Kafka (aiokafka; pipeline event notifications)

Usage:
    from shared.database import DatabaseClient, db_session

    async with db_session() as session:
        result = await session.execute(select(SourceModel))
        ...
"""

from shared.database.kafka import (
    KafkaClient,
    Topics,
    publish_event,
)
from shared.database.redis import (
    RedisClient,
    get_redis,
    redis_lock,
)
from shared.database.sql import (
    Base,
    DatabaseClient,
    UTCDateTime,
    db_session,
    get_db_session,
    make_session_factory,
    utcnow,
)


__all__ = [
    # SQL
    "Base",
    "DatabaseClient",
    "UTCDateTime",
    "db_session",
    "get_db_session",
    "make_session_factory",
    "utcnow",
    # Redis
    "RedisClient",
    "get_redis",
    "redis_lock",
    # Kafka
    "KafkaClient",
    "Topics",
    "publish_event",
]
