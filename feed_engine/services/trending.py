"""
Trending computer — global (user-independent) ranking of posts and hashtags.

Scoring a post over a window:

    engagement = views·1 + likes·5 + comments·10 + shares·15 + saves·8
    ageHours   = (now − publishedAt) / 3600
    timeFactor = 0.95 ^ (ageHours / 24)            5% decay per day
    velocity   = engagement / max(1, ageHours)
    score      = (engagement·0.4 + velocity·100·0.6) · timeFactor

Each run is a wholesale recomputation of one (window_type, window_start)
snapshot: the top-K rows are upserted with dense ranks 1..K and rows from an
earlier run of the same snapshot that fell out of the top-K are removed.
Ties keep the order the content service returned them in (stable sort).

Reads always serve the most recent snapshot of a window, from Redis when
cached and from the database otherwise.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from opentelemetry import trace
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_engine.clients.content_client import ContentClient
from feed_engine.clients.redis_client import TrendingCache
from feed_engine.config import settings
from feed_engine.database import upsert
from feed_engine.models import TrendingContent, TrendingHashtag, WindowType
from feed_engine.schemas import EngagementRecord, HashtagStat, TrendingPost
from feed_engine.telemetry import TRENDING_ITEMS
from feed_engine.timeutil import Clock, start_of_day, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CONTENT_TYPE_POST = "post"
HASHTAG_WINDOW = WindowType.DAILY.value


def trending_score(record: EngagementRecord, now: datetime) -> float:
    engagement = (
        record.view_count * 1
        + record.like_count * 5
        + record.comment_count * 10
        + record.share_count * 15
        + record.save_count * 8
    )
    age_hours = (now - record.published_at).total_seconds() / 3600
    time_factor = 0.95 ** (age_hours / 24)
    velocity = engagement / max(1, age_hours)
    return (engagement * 0.4 + velocity * 100 * 0.6) * time_factor


def hashtag_score(stat: HashtagStat) -> float:
    return float(stat.post_count * 10 + stat.recent_post_count * 50)


class TrendingComputer:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        content: ContentClient,
        cache: Optional[TrendingCache] = None,
        clock: Clock = utcnow,
        top_k: Optional[int] = None,
        hashtag_top_k: Optional[int] = None,
    ) -> None:
        self._sessions = sessions
        self._content = content
        self._cache = cache
        self._clock = clock
        self.top_k = top_k or settings.trending_top_k
        self.hashtag_top_k = hashtag_top_k or settings.hashtag_top_k

    # ─────────────────────── compute ─────────────────────────────────────

    async def compute_trending(self, window: WindowType | str = WindowType.DAILY) -> int:
        """Recompute one window's snapshot. Returns the number of items kept."""
        window = WindowType(window)
        now = self._clock()
        window_start = now - window.horizon

        with tracer.start_as_current_span("trending.compute") as span:
            span.set_attribute("trending.window", window.value)
            logger.info("Computing %s trending from %s to %s", window.value, window_start, now)

            records = await self._content.get_engagement_stats(window_start, now)
            if not records:
                logger.info("No engagement data for %s window; keeping previous snapshot", window.value)
                return 0

            scored = sorted(
                ((trending_score(r, now), r) for r in records),
                key=lambda pair: pair[0],
                reverse=True,
            )
            top = scored[: self.top_k]

            async with self._sessions.begin() as session:
                for rank, (score, record) in enumerate(top, start=1):
                    counters = {
                        "score": score,
                        "rank": rank,
                        "window_end": now,
                        "view_count": record.view_count,
                        "like_count": record.like_count,
                        "comment_count": record.comment_count,
                        "share_count": record.share_count,
                    }
                    await upsert(
                        session,
                        TrendingContent,
                        {
                            "content_type": CONTENT_TYPE_POST,
                            "content_id": record.post_id,
                            "window_type": window.value,
                            "window_start": window_start,
                            **counters,
                        },
                        conflict_cols=("content_type", "content_id", "window_type", "window_start"),
                        update=counters,
                    )
                await session.execute(
                    delete(TrendingContent).where(
                        TrendingContent.content_type == CONTENT_TYPE_POST,
                        TrendingContent.window_type == window.value,
                        TrendingContent.window_start == window_start,
                        TrendingContent.content_id.not_in([r.post_id for _, r in top]),
                    )
                )
            span.set_attribute("trending.items", len(top))

        TRENDING_ITEMS.labels(window=window.value).set(len(top))
        if self._cache is not None:
            await self._cache.invalidate(window.value)
        logger.info("Computed %s trending: %d items", window.value, len(top))
        return len(top)

    async def compute_trending_hashtags(self) -> int:
        """Rank hashtags for the current UTC day. Returns the number kept."""
        day = start_of_day(self._clock())
        logger.info("Computing trending hashtags for %s", day.date())

        stats = await self._content.get_hashtag_stats()
        if not stats:
            logger.info("No hashtag stats found")
            return 0

        scored = sorted(stats, key=hashtag_score, reverse=True)[: self.hashtag_top_k]
        async with self._sessions.begin() as session:
            for rank, stat in enumerate(scored, start=1):
                values = {
                    "score": hashtag_score(stat),
                    "post_count": stat.post_count,
                    "rank": rank,
                }
                await upsert(
                    session,
                    TrendingHashtag,
                    {
                        "hashtag": stat.tag,
                        "window_type": HASHTAG_WINDOW,
                        "window_date": day,
                        **values,
                    },
                    conflict_cols=("hashtag", "window_type", "window_date"),
                    update=values,
                )
            await session.execute(
                delete(TrendingHashtag).where(
                    TrendingHashtag.window_type == HASHTAG_WINDOW,
                    TrendingHashtag.window_date == day,
                    TrendingHashtag.hashtag.not_in([s.tag for s in scored]),
                )
            )

        logger.info("Computed trending hashtags: %d items", len(scored))
        return len(scored)

    async def cleanup_old_trending(self, retention_days: Optional[int] = None) -> tuple[int, int]:
        days = retention_days if retention_days is not None else settings.trending_retention_days
        cutoff = self._clock() - timedelta(days=days)
        async with self._sessions.begin() as session:
            content = await session.execute(
                delete(TrendingContent)
                .where(TrendingContent.window_end < cutoff)
                .execution_options(synchronize_session=False)
            )
            hashtags = await session.execute(
                delete(TrendingHashtag)
                .where(TrendingHashtag.window_date < cutoff)
                .execution_options(synchronize_session=False)
            )
        logger.info(
            "Trending cleanup: %d content rows, %d hashtag rows",
            content.rowcount, hashtags.rowcount,
        )
        return content.rowcount, hashtags.rowcount

    # ─────────────────────── reads ───────────────────────────────────────

    async def _latest_snapshot(self, window: WindowType) -> list[TrendingPost]:
        async with self._sessions() as session:
            latest = await session.scalar(
                select(func.max(TrendingContent.window_start)).where(
                    TrendingContent.content_type == CONTENT_TYPE_POST,
                    TrendingContent.window_type == window.value,
                )
            )
            if latest is None:
                return []
            rows = await session.scalars(
                select(TrendingContent)
                .where(
                    TrendingContent.content_type == CONTENT_TYPE_POST,
                    TrendingContent.window_type == window.value,
                    TrendingContent.window_start == latest,
                )
                .order_by(TrendingContent.rank)
            )
            return [TrendingPost.model_validate(r) for r in rows]

    async def get_trending_posts(
        self,
        window: WindowType | str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[TrendingPost]:
        window = WindowType(window or settings.trending_default_window)
        snapshot = None
        if self._cache is not None:
            snapshot = await self._cache.get(window.value)
        if snapshot is None:
            snapshot = await self._latest_snapshot(window)
            if self._cache is not None and snapshot:
                await self._cache.put(window.value, snapshot)
        return snapshot[offset : offset + limit]

    async def get_trending_hashtags(self, limit: int = 20) -> list[TrendingHashtag]:
        """Latest computed day (today once the daily job has run)."""
        today = start_of_day(self._clock())
        async with self._sessions() as session:
            latest = await session.scalar(
                select(func.max(TrendingHashtag.window_date)).where(
                    TrendingHashtag.window_type == HASHTAG_WINDOW,
                    TrendingHashtag.window_date <= today,
                )
            )
            if latest is None:
                return []
            rows = await session.scalars(
                select(TrendingHashtag)
                .where(
                    TrendingHashtag.window_type == HASHTAG_WINDOW,
                    TrendingHashtag.window_date == latest,
                )
                .order_by(TrendingHashtag.rank)
                .limit(limit)
            )
            return list(rows)
