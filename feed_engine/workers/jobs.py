"""
Periodic job bodies.

Each job is one idempotent recomputation or sweep. `run_job` wraps a run so
that a failure is logged and counted but never propagates to the scheduler;
the next scheduled run starts again from fresh state.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from feed_engine.dependencies import Services
from feed_engine.models import WindowType
from feed_engine.telemetry import JOB_RUNS_TOTAL

logger = logging.getLogger(__name__)


async def run_job(name: str, body: Callable[[], Awaitable[Any]]) -> Optional[Any]:
    """Run `body`; return its result, or None if it failed."""
    try:
        result = await body()
    except Exception:
        JOB_RUNS_TOTAL.labels(job=name, outcome="error").inc()
        logger.exception("Job %s failed", name)
        return None
    JOB_RUNS_TOTAL.labels(job=name, outcome="ok").inc()
    logger.info("Job %s finished: %s", name, result)
    return result


async def compute_trending(services: Services, window: str) -> Optional[int]:
    window = WindowType(window)
    return await run_job(
        f"trending_{window.value}", lambda: services.trending.compute_trending(window)
    )


async def compute_daily_trending_and_hashtags(services: Services) -> None:
    await compute_trending(services, WindowType.DAILY)
    await run_job("trending_hashtags", services.trending.compute_trending_hashtags)


async def cleanup_trending(services: Services):
    return await run_job("trending_cleanup", services.retention.cleanup_trending)


async def sweep_expired_feed(services: Services):
    return await run_job("feed_expired_sweep", services.retention.sweep_expired_feed)


async def sweep_old_feed(services: Services):
    return await run_job("feed_old_sweep", services.retention.sweep_old_feed)


async def decay_interests(services: Services):
    return await run_job("interest_decay", services.retention.decay_interests)


async def sweep_expired_mutes(services: Services):
    return await run_job("mute_expired_sweep", services.retention.sweep_expired_mutes)
