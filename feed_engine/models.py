"""
SQLAlchemy ORM models for TiDB.

Tables:
  follow_edges       — directed follow graph (follower → following), soft-unfollow
  follow_stats       — cached follower/following counters per user
  block_edges        — blocks (hide content both ways)
  mute_edges         — directional mutes with optional expiry
  feed_entries       — per-user feed partitions written by fan-out
  user_interests     — decaying affinity scores (category / hashtag / seller)
  user_interactions  — append-only interaction log
  trending_content   — top-K trending content per window snapshot
  trending_hashtags  — top-K hashtags per UTC day

Post bodies are owned by the content service; only ids and the few fields
needed for ranking are stored here.
"""
import enum
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from feed_engine.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ──────────────────────────── Enums ───────────────────────────────────────

class FollowStatus(str, enum.Enum):
    ACTIVE = "active"
    UNFOLLOWED = "unfollowed"


class FeedType(str, enum.Enum):
    FOLLOWING = "following"
    TRENDING = "trending"
    SUGGESTED = "suggested"


class InterestType(str, enum.Enum):
    CATEGORY = "category"
    HASHTAG = "hashtag"
    SELLER = "seller"


class WindowType(str, enum.Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def horizon(self) -> timedelta:
        return WINDOW_HORIZONS[self]


WINDOW_HORIZONS = {
    WindowType.HOURLY: timedelta(hours=1),
    WindowType.DAILY: timedelta(hours=24),
    WindowType.WEEKLY: timedelta(days=7),
    WindowType.MONTHLY: timedelta(days=30),
}


class MuteDuration(str, enum.Enum):
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    ONE_WEEK = "7d"
    ONE_MONTH = "30d"
    FOREVER = "forever"

    @property
    def ttl(self) -> Optional[timedelta]:
        """None means the mute never expires."""
        return MUTE_TTLS[self]


MUTE_TTLS = {
    MuteDuration.ONE_HOUR: timedelta(hours=1),
    MuteDuration.ONE_DAY: timedelta(hours=24),
    MuteDuration.ONE_WEEK: timedelta(days=7),
    MuteDuration.ONE_MONTH: timedelta(days=30),
    MuteDuration.FOREVER: None,
}


# ──────────────────────────── Social graph ────────────────────────────────

class FollowEdge(Base):
    __tablename__ = "follow_edges"

    follower_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    following_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(16), default=FollowStatus.ACTIVE.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    unfollowed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        # "who follows user X?", read by fan-out
        Index("idx_follow_following_status", "following_id", "status"),
    )


class FollowStats(Base):
    __tablename__ = "follow_stats"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    follower_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    following_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class BlockEdge(Base):
    __tablename__ = "block_edges"

    blocker_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    blocked_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reason: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_block_blocked", "blocked_id"),)


class MuteEdge(Base):
    __tablename__ = "mute_edges"

    muter_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    muted_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    mute_posts: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    mute_comments: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # NULL = forever
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_mute_expires", "expires_at"),)


# ──────────────────────────── Feed partitions ─────────────────────────────

class FeedEntry(Base):
    __tablename__ = "feed_entries"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    post_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    feed_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    post_created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    relevance_score: Mapped[Optional[float]] = mapped_column(Float)
    # Ordered tags explaining inclusion, e.g. ["following"]
    reasons: Mapped[list] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_feed_user_type_created", "user_id", "feed_type", "post_created_at"),
        Index("idx_feed_user_author", "user_id", "author_id"),
        Index("idx_feed_post", "post_id"),
        Index("idx_feed_expires", "expires_at"),
    )


# ──────────────────────────── Interests ───────────────────────────────────

class UserInterest(Base):
    __tablename__ = "user_interests"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    interest_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    interest_value: Mapped[str] = mapped_column(String(255), primary_key=True)
    score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    interaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_interaction_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_interest_user_score", "user_id", "score"),
        Index("idx_interest_last", "last_interaction_at"),
    )


class UserInteraction(Base):
    __tablename__ = "user_interactions"

    interaction_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content_type: Mapped[str] = mapped_column(String(32), nullable=False)
    content_id: Mapped[str] = mapped_column(String(36), nullable=False)
    interaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    duration_sec: Mapped[Optional[float]] = mapped_column(Float)
    source: Mapped[Optional[str]] = mapped_column(String(64))
    # "metadata" is reserved on declarative classes
    extra: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_interaction_user", "user_id", "created_at"),)


# ──────────────────────────── Trending ────────────────────────────────────

class TrendingContent(Base):
    __tablename__ = "trending_content"

    content_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    content_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    window_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    window_start: Mapped[datetime] = mapped_column(DateTime, primary_key=True)
    window_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    share_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_trending_window", "window_type", "window_start", "rank"),
        Index("idx_trending_end", "window_end"),
    )


class TrendingHashtag(Base):
    __tablename__ = "trending_hashtags"

    hashtag: Mapped[str] = mapped_column(String(255), primary_key=True)
    window_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    window_date: Mapped[datetime] = mapped_column(DateTime, primary_key=True)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    post_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("idx_hashtag_date_rank", "window_date", "rank"),)
