from datetime import datetime, timedelta
from typing import Optional

import pytest

from feed_engine.database import build_engine, build_session_factory, init_db
from feed_engine.dependencies import build_services
from feed_engine.errors import UpstreamUnavailableError
from feed_engine.schemas import EngagementRecord, HashtagStat, Post

T0 = datetime(2024, 6, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeContentClient:
    """In-memory content service. Operations listed in `failing` raise."""

    def __init__(self) -> None:
        self.posts: dict[str, Post] = {}
        self.engagement: list[EngagementRecord] = []
        self.hashtags: list[HashtagStat] = []
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def add_post(self, post_id: str, user_id: str, published_at: datetime = T0, **fields) -> Post:
        post = Post(id=post_id, user_id=user_id, published_at=published_at, **fields)
        self.posts[post_id] = post
        return post

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise UpstreamUnavailableError(f"content service {operation} failed")

    async def get_post(self, post_id: str) -> Optional[Post]:
        self._call("get_post")
        return self.posts.get(post_id)

    async def get_posts(self, post_ids: list[str]) -> list[Post]:
        self._call("get_posts")
        return [self.posts[pid] for pid in post_ids if pid in self.posts]

    async def search_posts(
        self,
        categories=None,
        hashtags=None,
        seller_ids=None,
        limit: int = 20,
        exclude_author_ids=None,
    ) -> list[Post]:
        self._call("search_posts")
        categories = set(categories or [])
        hashtags = set(hashtags or [])
        sellers = set(seller_ids or [])
        excluded = set(exclude_author_ids or [])
        matches = [
            p
            for p in self.posts.values()
            if p.user_id not in excluded
            and (
                p.category_id in categories
                or hashtags.intersection(p.hashtags)
                or sellers.intersection({p.seller_id, *p.tagged_seller_ids})
            )
        ]
        return matches[:limit]

    async def get_engagement_stats(self, start: datetime, end: datetime) -> list[EngagementRecord]:
        self._call("get_engagement_stats")
        return list(self.engagement)

    async def get_hashtag_stats(self) -> list[HashtagStat]:
        self._call("get_hashtag_stats")
        return list(self.hashtags)


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    async def publish(self, event_type: str, key: str, payload: dict) -> None:
        self.events.append((event_type, key, payload))

    def types(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def content() -> FakeContentClient:
    return FakeContentClient()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
async def sessions(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'feed.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def services(sessions, content, publisher, clock):
    return build_services(sessions, content, publisher, cache=None, clock=clock)
