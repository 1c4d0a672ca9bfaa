"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

The content-service shapes (Post, EngagementRecord, HashtagStat) arrive in
camelCase; they accept either spelling and are emitted in snake_case.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from feed_engine.models import InterestType, MuteDuration, WindowType
from feed_engine.timeutil import to_naive_utc


# ──────────────────────────── Content service ─────────────────────────────

class _ContentModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class ProductTag(_ContentModel):
    product_id: Optional[str] = None
    seller_id: Optional[str] = None


class Post(_ContentModel):
    id: str
    user_id: str
    category_id: Optional[str] = None
    seller_id: Optional[str] = None
    hashtags: list[str] = []
    product_tags: list[ProductTag] = []
    like_count: int = 0
    comment_count: int = 0
    save_count: int = 0
    share_count: int = 0
    view_count: int = 0
    published_at: datetime

    @field_validator("published_at")
    @classmethod
    def _naive_utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @property
    def tagged_seller_ids(self) -> list[str]:
        return [t.seller_id for t in self.product_tags if t.seller_id]


class EngagementRecord(_ContentModel):
    post_id: str
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    save_count: int = 0
    published_at: datetime

    @field_validator("published_at")
    @classmethod
    def _naive_utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class HashtagStat(_ContentModel):
    tag: str
    post_count: int = 0
    recent_post_count: int = 0


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedItem(BaseModel):
    """A ranked feed entry. `post` is None when the content service was down."""
    post_id: str
    author_id: Optional[str] = None
    reasons: list[str]
    relevance_score: Optional[float] = None
    post: Optional[Post] = None


class FeedResponse(BaseModel):
    user_id: str
    feed_type: str
    posts: list[FeedItem]
    limit: int
    offset: int
    count: int
    latency_ms: float


class InteractionCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=36)
    content_type: str = Field("post", max_length=32)
    content_id: str = Field(..., min_length=1, max_length=36)
    interaction_type: str = Field(..., max_length=32)
    duration_sec: Optional[float] = None
    source: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class InterestResponse(BaseModel):
    interest_type: InterestType
    interest_value: str
    score: float
    interaction_count: int
    last_interaction_at: datetime

    class Config:
        from_attributes = True


class InterestSummary(BaseModel):
    user_id: str
    categories: list[InterestResponse]
    hashtags: list[InterestResponse]
    sellers: list[InterestResponse]


# ──────────────────────────── Social graph ────────────────────────────────

class FollowListItem(BaseModel):
    user_id: str
    followed_at: datetime


class FollowListResponse(BaseModel):
    user_id: str
    users: list[FollowListItem]
    limit: int
    offset: int


class FollowStatsResponse(BaseModel):
    user_id: str
    follower_count: int
    following_count: int


class BlockRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class MuteRequest(BaseModel):
    mute_posts: bool = True
    mute_comments: bool = False
    duration: MuteDuration = MuteDuration.FOREVER


# ──────────────────────────── Trending ────────────────────────────────────

class TrendingPost(BaseModel):
    content_type: str
    content_id: str
    window_type: WindowType
    window_start: datetime
    window_end: datetime
    score: float
    rank: int
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0

    class Config:
        from_attributes = True


class TrendingHashtagResponse(BaseModel):
    hashtag: str
    window_date: datetime
    score: float
    post_count: int
    rank: int

    class Config:
        from_attributes = True
