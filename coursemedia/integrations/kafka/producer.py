from __future__ import annotations

import json
from typing import Optional

from confluent_kafka import Producer

from coursemedia.core.config import settings
from coursemedia.core.logging import get_logger

logger = get_logger(__name__)

_producer: Optional[Producer] = None


def _get_producer() -> Producer:
    global _producer
    if _producer is None:
        _producer = Producer(
            {
                "bootstrap.servers": settings.KAFKA_BOOTSTRAP_SERVERS,
                "client.id": "coursemedia-producer",
            }
        )
    return _producer


def delivery_report(err, msg):
    if err is not None:
        logger.error("message delivery failed", error=str(err))
    else:
        logger.debug(
            "message delivered",
            topic=msg.topic(),
            partition=msg.partition(),
            offset=msg.offset(),
        )


def publish_json(topic: str, key: str, value: dict):
    """
    Publish a JSON message to a Kafka topic.
    key: string used for partitioning
    value: dict that will be serialized to JSON
    """
    producer = _get_producer()
    try:
        producer.produce(
            topic=topic,
            key=key.encode("utf-8") if key else None,
            value=json.dumps(value, default=str).encode("utf-8"),
            callback=delivery_report,
        )
        producer.poll(0)  # trigger callbacks for any completed messages
    except Exception as e:
        logger.error("failed to publish to kafka", topic=topic, error=str(e))
        raise


def flush_producer(timeout: float = 10.0) -> int:
    """Flush any buffered messages. Returns the number still queued."""
    if _producer is None:
        return 0
    return _producer.flush(timeout)
