"""
Fan-out Worker — Kafka consumer.

For every post-events message:
  post.created → write one feed entry per active follower of the author
  post.deleted → remove the post from every feed

Key design decisions:
  • Fan-out on WRITE — follower partitions are filled at publish time so the
    following feed is a single indexed range read.
  • Redelivery is safe: feed entries are inserted skip-on-conflict, so a
    retried message writes nothing new. A failed message is logged and the
    consumer moves on.
"""
import asyncio
import json
import logging

from aiokafka import AIOKafkaConsumer

from feed_engine.config import settings
from feed_engine.database import AsyncSessionLocal, init_db
from feed_engine.services.fanout import FanOutWriter
from feed_engine.services.relation_store import RelationStore
from feed_engine.telemetry import setup_tracing
from feed_engine.workers.events import EventDispatcher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def _deserialize(raw: bytes):
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Undecodable post event: %r", raw[:200])
        return None


def build_dispatcher() -> EventDispatcher:
    relations = RelationStore(AsyncSessionLocal)
    return EventDispatcher(FanOutWriter(AsyncSessionLocal, relations))


async def main() -> None:
    setup_tracing(f"{settings.service_name}-fanout")
    await init_db()
    dispatcher = build_dispatcher()

    consumer = AIOKafkaConsumer(
        settings.kafka_topic_post_events,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        auto_offset_reset="earliest",
        value_deserializer=_deserialize,
    )
    await consumer.start()
    logger.info(
        "Fan-out worker listening on topic '%s'", settings.kafka_topic_post_events
    )

    try:
        async for msg in consumer:
            if msg.value is None:
                continue
            try:
                await dispatcher.handle_message(msg.value)
            except Exception as exc:
                logger.error("Fan-out error for %s: %s", msg.value, exc)
    finally:
        await consumer.stop()


if __name__ == "__main__":
    asyncio.run(main())
