"""
Fan-out writer — owns the per-user feed partitions (feed_entries).

Fan-out on WRITE: when a post is published, one denormalised row is written
into every active follower's partition. This makes the dominant read
("show me my following feed") a single indexed range scan per user, at the
cost of one row per follower per post. Rows carry an expiry horizon so the
write amplification is bounded in time.

Duplicate delivery of the triggering event is harmless: rows are inserted
with skip-on-conflict on (user_id, post_id, feed_type), so a retried fan-out
writes nothing new.

Expired rows are treated as absent by every read here, whether or not the
retention sweep has physically removed them yet.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from opentelemetry import trace
from sqlalchemy import delete, func, or_, and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_engine.config import settings
from feed_engine.database import upsert
from feed_engine.models import FeedEntry, FeedType
from feed_engine.services.relation_store import RelationStore
from feed_engine.telemetry import FANOUT_ROWS_TOTAL
from feed_engine.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INSERT_BATCH_SIZE = 1000    # rows per INSERT statement
FEED_KEY_COLS = ("user_id", "post_id", "feed_type")


class FanOutWriter:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        relations: RelationStore,
        clock: Clock = utcnow,
        max_age_days: Optional[int] = None,
    ) -> None:
        self._sessions = sessions
        self._relations = relations
        self._clock = clock
        self.max_age_days = max_age_days or settings.feed_max_age_days

    def _expires_at(self) -> datetime:
        return self._clock() + timedelta(days=self.max_age_days)

    async def _insert_entries(self, rows: list[dict]) -> None:
        async with self._sessions.begin() as session:
            for i in range(0, len(rows), INSERT_BATCH_SIZE):
                await upsert(session, FeedEntry, rows[i : i + INSERT_BATCH_SIZE], FEED_KEY_COLS)

    # ─────────────────────── writes ──────────────────────────────────────

    async def fan_out_to_followers(
        self, author_id: str, post_id: str, post_created_at: datetime
    ) -> int:
        """Push `post_id` into every active follower's feed. Returns follower count."""
        with tracer.start_as_current_span("fanout") as span:
            span.set_attribute("post.id", post_id)
            span.set_attribute("post.user_id", author_id)

            followers = await self._relations.get_follower_ids(author_id)
            span.set_attribute("fanout.follower_count", len(followers))
            if not followers:
                logger.info("Post %s — author has no followers, skipping fan-out", post_id)
                return 0

            expires_at = self._expires_at()
            rows = [
                {
                    "user_id": follower_id,
                    "post_id": post_id,
                    "feed_type": FeedType.FOLLOWING.value,
                    "author_id": author_id,
                    "post_created_at": post_created_at,
                    "relevance_score": None,
                    "reasons": [FeedType.FOLLOWING.value],
                    "expires_at": expires_at,
                }
                for follower_id in followers
            ]
            await self._insert_entries(rows)

        FANOUT_ROWS_TOTAL.inc(len(rows))
        logger.info("Fan-out complete: post %s → %d followers", post_id, len(followers))
        return len(followers)

    async def add_trending_to_feeds(
        self,
        user_ids: list[str],
        post_id: str,
        author_id: str,
        post_created_at: datetime,
        relevance_score: float,
    ) -> int:
        """Inject a trending post into the given users' feeds (idempotent)."""
        if not user_ids:
            return 0
        expires_at = self._expires_at()
        rows = [
            {
                "user_id": user_id,
                "post_id": post_id,
                "feed_type": FeedType.TRENDING.value,
                "author_id": author_id,
                "post_created_at": post_created_at,
                "relevance_score": relevance_score,
                "reasons": [FeedType.TRENDING.value],
                "expires_at": expires_at,
            }
            for user_id in user_ids
        ]
        await self._insert_entries(rows)
        return len(rows)

    async def remove_from_all_feeds(self, post_id: str) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(delete(FeedEntry).where(FeedEntry.post_id == post_id))
        logger.info("Removed post %s from %d feed entries", post_id, result.rowcount)
        return result.rowcount

    async def remove_from_user_feed(self, user_id: str, post_id: str) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(FeedEntry).where(FeedEntry.user_id == user_id, FeedEntry.post_id == post_id)
            )
        return result.rowcount

    async def remove_blocked_user_feeds(self, user_id: str, blocked_user_id: str) -> int:
        """Drop each user's posts from the other's feed, in one transaction."""
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(FeedEntry).where(
                    or_(
                        and_(FeedEntry.user_id == user_id, FeedEntry.author_id == blocked_user_id),
                        and_(FeedEntry.user_id == blocked_user_id, FeedEntry.author_id == user_id),
                    )
                )
            )
        return result.rowcount

    # ─────────────────────── reads ───────────────────────────────────────

    async def list_following(self, user_id: str, limit: int, offset: int) -> list[FeedEntry]:
        """Live following-feed rows, newest post first."""
        async with self._sessions() as session:
            rows = await session.scalars(
                select(FeedEntry)
                .where(
                    FeedEntry.user_id == user_id,
                    FeedEntry.feed_type == FeedType.FOLLOWING.value,
                    FeedEntry.expires_at > self._clock(),
                )
                .order_by(FeedEntry.post_created_at.desc(), FeedEntry.post_id)
                .offset(offset)
                .limit(limit)
            )
            return list(rows)

    async def get_feed_count(self, user_id: str, feed_type: Optional[FeedType] = None) -> int:
        stmt = select(func.count()).select_from(FeedEntry).where(
            FeedEntry.user_id == user_id, FeedEntry.expires_at > self._clock()
        )
        if feed_type is not None:
            stmt = stmt.where(FeedEntry.feed_type == FeedType(feed_type).value)
        async with self._sessions() as session:
            return await session.scalar(stmt)

    # ─────────────────────── cleanup ─────────────────────────────────────

    async def purge_expired(self, user_id: Optional[str] = None) -> int:
        """Physically delete expired rows (all users, or one partition)."""
        stmt = delete(FeedEntry).where(FeedEntry.expires_at <= self._clock())
        if user_id is not None:
            stmt = stmt.where(FeedEntry.user_id == user_id)
        async with self._sessions.begin() as session:
            result = await session.execute(stmt)
        return result.rowcount

    async def purge_older_than(self, retention_days: int) -> int:
        """Delete rows whose post is older than the retention horizon."""
        cutoff = self._clock() - timedelta(days=retention_days)
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(FeedEntry).where(FeedEntry.post_created_at < cutoff)
            )
        return result.rowcount
