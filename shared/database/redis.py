"""
Redis Client
============

Async Redis client backing the stage queues and per-concept locks.

Version: 0.1.0
"""

import asyncio
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import settings
from shared.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client wrapper.

    Provides connection management and health reporting.
    """

    _client: Redis | None = None  # type: ignore[type-arg]

    @classmethod
    def get_client(cls) -> Redis:  # type: ignore[type-arg]
        """Get or create the async client."""
        if cls._client is None:
            cls._client = aioredis.from_url(
                settings.redis.url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50,
            )
            logger.info(
                "redis_client_created",
                host=settings.redis.host,
            )
        return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the client and release all connections."""
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None
            logger.info("redis_client_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check Redis health.

        Returns:
            dict with status and latency
        """
        try:
            start = time.perf_counter()
            pong = await cls.get_client().ping()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy" if pong else "unhealthy",
                "latency_ms": round(latency_ms, 2),
            }
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }


async def get_redis() -> Redis:  # type: ignore[type-arg]
    """Dependency that provides the Redis client."""
    return RedisClient.get_client()


@asynccontextmanager
async def redis_lock(
    client: Redis,  # type: ignore[type-arg]
    key: str,
    timeout_seconds: int = 10,
    wait_seconds: float = 0.0,
) -> AsyncGenerator[bool, None]:
    """
    Exclusive claim on `key` using SET NX EX with an owner token.

    Yields True when the lock was acquired within `wait_seconds`. The lock
    expires after `timeout_seconds` so a crashed holder cannot wedge it, and
    it is only released by its owner.

    Usage:
        async with redis_lock(client, "concept:vat-rate") as acquired:
            if acquired:
                ...
    """
    lock_key = f"lock:{key}"
    lock_value = str(uuid.uuid4())

    acquired = await client.set(lock_key, lock_value, nx=True, ex=timeout_seconds)
    deadline = time.monotonic() + wait_seconds
    while not acquired and time.monotonic() < deadline:
        await asyncio.sleep(0.1)
        acquired = await client.set(lock_key, lock_value, nx=True, ex=timeout_seconds)

    try:
        yield bool(acquired)
    finally:
        if acquired:
            current = await client.get(lock_key)
            if current == lock_value:
                await client.delete(lock_key)
