"""
Feed assembler — builds the three user-facing feeds.

  following │ paginated read of the user's push partition, newest first
  ──────────┼──────────────────────────────────────────────────────────────
  for-you   │ 60% following · 30% interest suggestions · 10% trending
  ──────────┼──────────────────────────────────────────────────────────────
  explore   │ 60% trending (paged) · 40% interest suggestions

Blended feeds run the same pipeline:

  1. Gather each source (a failing source contributes nothing).
  2. Merge with first-occurrence-wins dedup in source precedence order.
  3. Hydrate every survivor with ONE batch call to the content service.
  4. Drop posts by hidden authors (blocked either way, or post-muted).
  5. Sort by relevance score, highest first (missing score counts as 0).

If hydration itself fails, the following-sourced entries are served
un-hydrated and the discovery sources are dropped, since without content we
cannot tell who authored a suggestion or a trending post.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from opentelemetry import trace

from feed_engine.clients.content_client import ContentClient
from feed_engine.clients.kafka_producer import EventPublisher
from feed_engine.config import settings
from feed_engine.errors import InvalidInputError, UpstreamUnavailableError
from feed_engine.models import InterestType, UserInterest
from feed_engine.schemas import FeedItem, Post
from feed_engine.services.fanout import FanOutWriter
from feed_engine.services.interest import InterestModel
from feed_engine.services.relation_store import RelationStore
from feed_engine.services.trending import TrendingComputer
from feed_engine.telemetry import FEED_CANDIDATES_TOTAL, FEED_LATENCY, UPSTREAM_ERRORS_TOTAL
from feed_engine.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FOR_YOU_SPLIT = (0.6, 0.3, 0.1)     # following, suggested, trending
EXPLORE_SPLIT = (0.6, 0.4)          # trending, suggested

CATEGORY_WEIGHT = 50
HASHTAG_WEIGHT = 30
SELLER_WEIGHT = 40


@dataclass
class Candidate:
    post_id: str
    reasons: list[str]
    score: Optional[float] = None
    author_id: Optional[str] = None


@dataclass
class Suggestion:
    post_id: str
    score: float
    reasons: list[str] = field(default_factory=lambda: ["suggested"])
    author_id: Optional[str] = None


def relevance_score(post: Post, interests: list[UserInterest], now: datetime) -> float:
    """Engagement (log-damped) + recency boost + interest matches."""
    score = (
        math.log10(post.like_count + 1) * 10
        + math.log10(post.comment_count + 1) * 15
        + math.log10(post.save_count + 1) * 20
    )
    age_hours = (now - post.published_at).total_seconds() / 3600
    score += max(0.0, 100 - age_hours)

    sellers = {post.seller_id, *post.tagged_seller_ids} - {None}
    for interest in interests:
        kind = InterestType(interest.interest_type)
        if kind is InterestType.CATEGORY and post.category_id == interest.interest_value:
            score += interest.score * CATEGORY_WEIGHT
        elif kind is InterestType.HASHTAG and interest.interest_value in post.hashtags:
            score += interest.score * HASHTAG_WEIGHT
        elif kind is InterestType.SELLER and interest.interest_value in sellers:
            score += interest.score * SELLER_WEIGHT
    return score


def _merge(*sources: list[Candidate]) -> list[Candidate]:
    seen: set[str] = set()
    merged: list[Candidate] = []
    for source in sources:
        for c in source:
            if c.post_id not in seen:
                seen.add(c.post_id)
                merged.append(c)
    return merged


def _rank(items: list[FeedItem]) -> list[FeedItem]:
    return sorted(items, key=lambda i: i.relevance_score or 0.0, reverse=True)


class FeedAssembler:
    def __init__(
        self,
        relations: RelationStore,
        fanout: FanOutWriter,
        interests: InterestModel,
        trending: TrendingComputer,
        content: ContentClient,
        publisher: Optional[EventPublisher] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._relations = relations
        self._fanout = fanout
        self._interests = interests
        self._trending = trending
        self._content = content
        self._publisher = publisher
        self._clock = clock

    @staticmethod
    def _check_page(limit: int, offset: int) -> None:
        if limit < 1 or limit > settings.feed_max_page_size:
            raise InvalidInputError(
                f"limit must be between 1 and {settings.feed_max_page_size}"
            )
        if offset < 0:
            raise InvalidInputError("offset must be >= 0")

    # ─────────────────────── sources ─────────────────────────────────────

    async def _following_candidates(self, user_id: str, limit: int, offset: int) -> list[Candidate]:
        if limit <= 0:
            return []
        entries = await self._fanout.list_following(user_id, limit, offset)
        return [
            Candidate(
                post_id=e.post_id,
                reasons=list(e.reasons or ["following"]),
                score=e.relevance_score,
                author_id=e.author_id,
            )
            for e in entries
        ]

    async def _trending_candidates(self, limit: int, offset: int = 0) -> list[Candidate]:
        if limit <= 0:
            return []
        items = await self._trending.get_trending_posts(limit=limit, offset=offset)
        return [Candidate(post_id=t.content_id, reasons=["trending"], score=t.score) for t in items]

    async def _suggested_candidates(self, user_id: str, limit: int) -> list[Candidate]:
        if limit <= 0:
            return []
        try:
            suggestions = await self.get_suggested_posts(user_id, limit)
        except UpstreamUnavailableError:
            UPSTREAM_ERRORS_TOTAL.labels(operation="suggestions").inc()
            logger.warning("Suggestions unavailable for %s — serving without them", user_id)
            return []
        return [
            Candidate(post_id=s.post_id, reasons=list(s.reasons), score=s.score, author_id=s.author_id)
            for s in suggestions
        ]

    async def get_suggested_posts(self, user_id: str, limit: int) -> list[Suggestion]:
        """
        Interest-matched posts scored by `relevance_score`. A user with no
        recorded interests gets current trending content instead (cold start).
        """
        interests = await self._interests.get_user_interests(user_id)
        if not interests:
            trending = await self._trending.get_trending_posts(limit=limit)
            return [Suggestion(t.content_id, t.score, reasons=["trending"]) for t in trending]

        by_type: dict[InterestType, list[str]] = {t: [] for t in InterestType}
        for i in interests:
            by_type[InterestType(i.interest_type)].append(i.interest_value)

        posts = await self._content.search_posts(
            categories=by_type[InterestType.CATEGORY],
            hashtags=by_type[InterestType.HASHTAG],
            seller_ids=by_type[InterestType.SELLER],
            limit=limit,
            exclude_author_ids=[user_id],
        )
        now = self._clock()
        return [
            Suggestion(p.id, relevance_score(p, interests, now), author_id=p.user_id)
            for p in posts
            if p.user_id != user_id
        ]

    # ─────────────────────── assembly ────────────────────────────────────

    async def _assemble(self, user_id: str, merged: list[Candidate]) -> list[FeedItem]:
        hidden = await self._relations.get_hidden_authors(user_id)
        try:
            posts = await self._content.get_posts([c.post_id for c in merged])
        except UpstreamUnavailableError:
            UPSTREAM_ERRORS_TOTAL.labels(operation="hydrate").inc()
            logger.warning("Hydration failed for %s — serving following entries only", user_id)
            return _rank([
                FeedItem(
                    post_id=c.post_id,
                    author_id=c.author_id,
                    reasons=c.reasons,
                    relevance_score=c.score,
                )
                for c in merged
                if "following" in c.reasons and c.author_id not in hidden
            ])

        by_id = {p.id: p for p in posts}
        items: list[FeedItem] = []
        for c in merged:
            post = by_id.get(c.post_id)
            if post is None or post.user_id in hidden:
                continue
            items.append(
                FeedItem(
                    post_id=c.post_id,
                    author_id=post.user_id,
                    reasons=c.reasons,
                    relevance_score=c.score,
                    post=post,
                )
            )
        return _rank(items)

    async def get_following_feed(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[FeedItem]:
        """Push-feed rows newest first. Deleted posts and hidden authors are skipped."""
        self._check_page(limit, offset)
        start = time.perf_counter()
        with tracer.start_as_current_span("feed.following") as span:
            span.set_attribute("user.id", user_id)
            candidates = await self._following_candidates(user_id, limit, offset)
            FEED_CANDIDATES_TOTAL.labels(source="following").inc(len(candidates))
            if not candidates:
                return []

            hidden = await self._relations.get_hidden_authors(user_id)
            candidates = [c for c in candidates if c.author_id not in hidden]
            try:
                posts = await self._content.get_posts([c.post_id for c in candidates])
            except UpstreamUnavailableError:
                UPSTREAM_ERRORS_TOTAL.labels(operation="hydrate").inc()
                posts = None

            if posts is None:
                items = [
                    FeedItem(post_id=c.post_id, author_id=c.author_id,
                             reasons=c.reasons, relevance_score=c.score)
                    for c in candidates
                ]
            else:
                by_id = {p.id: p for p in posts}
                items = [
                    FeedItem(post_id=c.post_id, author_id=c.author_id, reasons=c.reasons,
                             relevance_score=c.score, post=by_id[c.post_id])
                    for c in candidates
                    if c.post_id in by_id
                ]
            span.set_attribute("feed.posts_returned", len(items))

        FEED_LATENCY.labels(feed_type="following").observe(time.perf_counter() - start)
        return items

    async def get_for_you_feed(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[FeedItem]:
        self._check_page(limit, offset)
        start = time.perf_counter()
        following_n, suggested_n, trending_n = (math.floor(limit * s) for s in FOR_YOU_SPLIT)

        with tracer.start_as_current_span("feed.for_you") as span:
            span.set_attribute("user.id", user_id)
            following = await self._following_candidates(user_id, following_n, offset)
            suggested = await self._suggested_candidates(user_id, suggested_n)
            trending = await self._trending_candidates(trending_n)

            FEED_CANDIDATES_TOTAL.labels(source="following").inc(len(following))
            FEED_CANDIDATES_TOTAL.labels(source="suggested").inc(len(suggested))
            FEED_CANDIDATES_TOTAL.labels(source="trending").inc(len(trending))

            merged = _merge(following, suggested, trending)
            span.set_attribute("candidates.merged", len(merged))
            items = await self._assemble(user_id, merged) if merged else []
            span.set_attribute("feed.posts_returned", len(items))

        FEED_LATENCY.labels(feed_type="for_you").observe(time.perf_counter() - start)
        return items

    async def get_explore_feed(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[FeedItem]:
        self._check_page(limit, offset)
        start = time.perf_counter()
        trending_n, suggested_n = (math.floor(limit * s) for s in EXPLORE_SPLIT)

        with tracer.start_as_current_span("feed.explore") as span:
            span.set_attribute("user.id", user_id)
            trending = await self._trending_candidates(trending_n, offset)
            suggested = await self._suggested_candidates(user_id, suggested_n)

            FEED_CANDIDATES_TOTAL.labels(source="trending").inc(len(trending))
            FEED_CANDIDATES_TOTAL.labels(source="suggested").inc(len(suggested))

            merged = _merge(trending, suggested)
            items = await self._assemble(user_id, merged) if merged else []
            span.set_attribute("feed.posts_returned", len(items))

        FEED_LATENCY.labels(feed_type="explore").observe(time.perf_counter() - start)
        return items

    async def refresh_feed(self, user_id: str) -> int:
        """
        Sweep the user's expired push-feed rows. Reads already ignore them;
        this reclaims the space. Returns rows removed.
        """
        removed = await self._fanout.purge_expired(user_id)
        if self._publisher is not None:
            await self._publisher.publish(
                "feed.refreshed", user_id, {"userId": user_id, "expiredRemoved": removed}
            )
        logger.info("Refreshed feed for %s (%d expired entries removed)", user_id, removed)
        return removed
