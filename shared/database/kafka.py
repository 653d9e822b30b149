"""
Kafka Client
============

Async Kafka producer for pipeline event notifications.

Events are notifications only: nothing in the pipeline depends on them
being delivered, so publishing failures are logged and swallowed by
`publish_event`.

Version: 0.1.0
"""

import json
from typing import Any

from aiokafka import AIOKafkaProducer

from shared.config import settings
from shared.logging import get_logger

logger = get_logger(__name__)


class Topics:
    """Kafka topic names."""

    EVIDENCE_CAPTURED = "regtruth.evidence.captured"
    RELEASES_PUBLISHED = "regtruth.releases.published"
    CONFLICTS_ESCALATED = "regtruth.conflicts.escalated"


class KafkaClient:
    """
    Async Kafka client wrapper.

    Manages the producer lifecycle.
    """

    _producer: AIOKafkaProducer | None = None

    @classmethod
    async def get_producer(cls) -> AIOKafkaProducer:
        """Get or create the async producer."""
        if cls._producer is None:
            cls._producer = AIOKafkaProducer(
                bootstrap_servers=settings.kafka.bootstrap_servers,
                security_protocol=settings.kafka.security_protocol,
                key_serializer=lambda k: k.encode("utf-8") if k and isinstance(k, str) else k,
                compression_type="gzip",
                acks="all",
            )
            await cls._producer.start()
            logger.info(
                "kafka_producer_created",
                bootstrap_servers=settings.kafka.bootstrap_servers,
            )
        return cls._producer

    @classmethod
    async def close(cls) -> None:
        """Close the producer."""
        if cls._producer is not None:
            await cls._producer.stop()
            cls._producer = None
            logger.info("kafka_producer_closed")

    @classmethod
    async def publish(
        cls,
        topic: str,
        value: dict[str, Any],
        key: str | None = None,
    ) -> None:
        """
        Publish a JSON message to a topic.

        Args:
            topic: Topic name
            value: Message body (JSON serialized)
            key: Optional message key for partitioning
        """
        producer = await cls.get_producer()
        await producer.send_and_wait(
            topic,
            value=json.dumps(value, default=str).encode("utf-8"),
            key=key,
        )
        logger.debug("kafka_message_published", topic=topic, key=key)


async def publish_event(topic: str, value: dict[str, Any], key: str | None = None) -> bool:
    """
    Publish a pipeline event if events are enabled.

    Returns:
        True if the event was handed to Kafka
    """
    if not settings.kafka.events_enabled:
        return False
    try:
        await KafkaClient.publish(topic, value, key=key)
        return True
    except Exception as e:
        logger.error("kafka_publish_failed", topic=topic, key=key, error=str(e))
        return False
