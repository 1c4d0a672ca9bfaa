"""
Celery app and beat schedule for the periodic jobs.

  celery -A feed_engine.workers.celery_app worker -l info
  celery -A feed_engine.workers.celery_app beat -l info

Each task builds its own engine and clients, runs one job under asyncio and
disposes everything again; a Celery worker process has no event loop of its
own to share them with.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from celery import Celery, shared_task
from celery.schedules import crontab

from feed_engine.clients.content_client import ContentClient
from feed_engine.clients.redis_client import TrendingCache, init_redis
from feed_engine.config import settings
from feed_engine.database import build_engine, build_session_factory
from feed_engine.dependencies import Services, build_services
from feed_engine.telemetry import setup_tracing
from feed_engine.workers import jobs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

setup_tracing(f"{settings.service_name}-jobs")

app = Celery("feed_engine", broker=settings.celery_broker_url)
app.conf.timezone = "UTC"
app.conf.enable_utc = True

app.conf.beat_schedule = {
    # Trending
    "trending-hourly": {
        "task": "feed_engine.compute_trending",
        "schedule": crontab(minute=0),
        "args": ("hourly",),
    },
    "trending-daily-and-hashtags-every-6-hours": {
        "task": "feed_engine.compute_daily_trending_and_hashtags",
        "schedule": crontab(minute=0, hour="*/6"),
    },
    "trending-weekly": {
        "task": "feed_engine.compute_trending",
        "schedule": crontab(minute=0, hour=0),
        "args": ("weekly",),
    },
    "trending-monthly": {
        "task": "feed_engine.compute_trending",
        "schedule": crontab(minute=0, hour=1),
        "args": ("monthly",),
    },
    "trending-cleanup-weekly": {
        "task": "feed_engine.cleanup_trending",
        "schedule": crontab(minute=0, hour=2, day_of_week="sun"),
    },

    # Retention
    "feed-expired-sweep-daily": {
        "task": "feed_engine.sweep_expired_feed",
        "schedule": crontab(minute=0, hour=3),
    },
    "feed-old-sweep-weekly": {
        "task": "feed_engine.sweep_old_feed",
        "schedule": crontab(minute=0, hour=4, day_of_week="sun"),
    },
    "interest-decay-weekly": {
        "task": "feed_engine.decay_interests",
        "schedule": crontab(minute=0, hour=5, day_of_week="sun"),
    },
    "mute-expired-sweep-hourly": {
        "task": "feed_engine.sweep_expired_mutes",
        "schedule": crontab(minute=30),
    },
}


async def _with_services(job: Callable[[Services], Awaitable[Any]]) -> Any:
    engine = build_engine(settings.tidb_url)
    content = ContentClient()
    await content.start()

    redis = None
    cache = None
    try:
        redis = await init_redis()
        cache = TrendingCache(redis)
    except Exception as exc:
        logger.warning("Redis unavailable (%s) — trending cache not refreshed", exc)

    try:
        return await job(build_services(build_session_factory(engine), content, cache=cache))
    finally:
        await content.stop()
        if redis is not None:
            await redis.aclose()
        await engine.dispose()


def _run(job: Callable[[Services], Awaitable[Any]]) -> Any:
    if not settings.enable_background_jobs:
        logger.info("Background jobs disabled; skipping")
        return None
    return asyncio.run(_with_services(job))


@shared_task(name="feed_engine.compute_trending")
def compute_trending(window: str):
    return _run(lambda s: jobs.compute_trending(s, window))


@shared_task(name="feed_engine.compute_daily_trending_and_hashtags")
def compute_daily_trending_and_hashtags():
    return _run(jobs.compute_daily_trending_and_hashtags)


@shared_task(name="feed_engine.cleanup_trending")
def cleanup_trending():
    return _run(jobs.cleanup_trending)


@shared_task(name="feed_engine.sweep_expired_feed")
def sweep_expired_feed():
    return _run(jobs.sweep_expired_feed)


@shared_task(name="feed_engine.sweep_old_feed")
def sweep_old_feed():
    return _run(jobs.sweep_old_feed)


@shared_task(name="feed_engine.decay_interests")
def decay_interests():
    return _run(jobs.decay_interests)


@shared_task(name="feed_engine.sweep_expired_mutes")
def sweep_expired_mutes():
    return _run(jobs.sweep_expired_mutes)
