"""
Redis client wrapper.

Responsibilities:
  • Trending cache — STRING (JSON list) keyed by trending:{window}
                     value = the latest computed snapshot, rank order
                     filled on first read, dropped by the trending job

The database stays the source of truth: a cache miss or a Redis error falls
through to a query, so Redis being down only costs latency.
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from feed_engine.config import settings
from feed_engine.schemas import TrendingPost

logger = logging.getLogger(__name__)

TRENDING_KEY = "trending:{window}"


async def init_redis() -> aioredis.Redis:
    client = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await client.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    return client


class TrendingCache:
    def __init__(self, redis: aioredis.Redis, ttl: Optional[int] = None) -> None:
        self._redis = redis
        self.ttl = ttl or settings.trending_cache_ttl

    async def get(self, window: str) -> Optional[list[TrendingPost]]:
        try:
            raw = await self._redis.get(TRENDING_KEY.format(window=window))
        except Exception as exc:
            logger.warning("Trending cache read failed (%s): %s", window, exc)
            return None
        if raw is None:
            return None
        try:
            return [TrendingPost.model_validate(item) for item in json.loads(raw)]
        except (ValueError, TypeError, ValidationError) as exc:
            # corrupt or written by an older schema
            logger.warning("Discarding unreadable trending snapshot (%s): %s", window, exc)
            await self.invalidate(window)
            return None

    async def put(self, window: str, items: list[TrendingPost]) -> None:
        payload = json.dumps([item.model_dump(mode="json") for item in items])
        try:
            await self._redis.set(TRENDING_KEY.format(window=window), payload, ex=self.ttl)
        except Exception as exc:
            logger.warning("Trending cache write failed (%s): %s", window, exc)

    async def invalidate(self, window: str) -> None:
        try:
            await self._redis.delete(TRENDING_KEY.format(window=window))
        except Exception as exc:
            logger.warning("Trending cache invalidate failed (%s): %s", window, exc)
