"""
Async Kafka producer — the engine's event sink.

Publishes relation and feed events to the feed-events topic:
  user.followed / user.unfollowed / user.blocked / user.unblocked /
  user.muted / user.unmuted / feed.refreshed

Delivery onwards (outbox relay, notifications) is somebody else's job; from
here publishing is best-effort. A failed send is logged and never undoes the
database change that triggered it.
"""
import json
import logging
from typing import Any, Optional

from aiokafka import AIOKafkaProducer

from feed_engine.config import settings
from feed_engine.timeutil import utcnow

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> str:
    # datetimes and enums
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class EventPublisher:
    def __init__(self, topic: Optional[str] = None) -> None:
        self.topic = topic or settings.kafka_topic_feed_events
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            value_serializer=lambda v: json.dumps(v, default=_json_default).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8"),
            acks="all",          # wait for all in-sync replicas
            enable_idempotence=True,
        )
        await self._producer.start()
        logger.info("Kafka producer started → %s", settings.kafka_bootstrap_servers)

    async def stop(self) -> None:
        if self._producer:
            await self._producer.stop()

    async def publish(self, event_type: str, key: str, payload: dict) -> None:
        """
        Emit one event. `key` keeps events for the same relation pair on the
        same partition so consumers see them in order.
        """
        if self._producer is None:
            logger.warning("Kafka producer not started; dropping %s event", event_type)
            return
        message = {"type": event_type, "occurredAt": utcnow(), "payload": payload}
        try:
            await self._producer.send_and_wait(self.topic, message, key=key)
            logger.debug("Published %s event (key=%s)", event_type, key)
        except Exception as exc:
            logger.warning("Failed to publish %s event (key=%s): %s", event_type, key, exc)
