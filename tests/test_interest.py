import pytest
from sqlalchemy import func, select

from feed_engine.models import InterestType, UserInteraction
from feed_engine.services.interest import interaction_weight


@pytest.fixture
def interests(services):
    return services.interests


@pytest.fixture
def post(content):
    return content.add_post(
        "p1",
        "creator",
        category_id="shoes",
        hashtags=["summer", "running"],
        product_tags=[{"productId": "prod-1", "sellerId": "acme"}],
    )


def _scores(rows):
    return {(r.interest_type, r.interest_value): pytest.approx(r.score) for r in rows}


async def _interaction_count(sessions):
    async with sessions() as session:
        return await session.scalar(select(func.count()).select_from(UserInteraction))


def test_interaction_weights():
    assert interaction_weight("like") == 0.5
    assert interaction_weight("click-product") == 0.6
    assert interaction_weight("purchase") == 1.0
    assert interaction_weight("wave") == 0.1


async def test_like_folds_into_category_hashtags_and_sellers(interests, post):
    touched = await interests.record_interaction("u1", "post", "p1", "like")
    assert touched == 4

    rows = await interests.get_user_interests("u1")
    assert _scores(rows) == {
        ("category", "shoes"): 0.5,
        ("hashtag", "summer"): 0.25,
        ("hashtag", "running"): 0.25,
        ("seller", "acme"): 0.15,
    }
    assert rows[0].interest_value == "shoes"


async def test_interactions_accumulate(interests, post):
    await interests.record_interaction("u1", "post", "p1", "like")
    await interests.record_interaction("u1", "post", "p1", "save")

    [category] = await interests.get_interests_by_type("u1", InterestType.CATEGORY)
    assert category.score == pytest.approx(1.3)
    assert category.interaction_count == 2


async def test_interests_are_isolated_per_user(interests, post):
    await interests.record_interaction("u1", "post", "p1", "purchase")
    await interests.record_interaction("u2", "post", "p1", "view")

    [u1] = await interests.get_interests_by_type("u1", InterestType.CATEGORY)
    [u2] = await interests.get_interests_by_type("u2", InterestType.CATEGORY)
    assert u1.score == pytest.approx(1.0)
    assert u2.score == pytest.approx(0.1)
    assert await interests.get_user_interests("u3") == []


async def test_log_survives_content_service_outage(interests, sessions, content, post):
    content.failing.add("get_post")

    assert await interests.record_interaction("u1", "post", "p1", "like", {"source": "feed"}) == 0
    assert await _interaction_count(sessions) == 1
    assert await interests.get_user_interests("u1") == []


async def test_non_post_and_unknown_posts_are_logged_only(interests, sessions):
    assert await interests.record_interaction("u1", "product", "prod-1", "view") == 0
    assert await interests.record_interaction("u1", "post", "missing", "like") == 0
    assert await _interaction_count(sessions) == 2


async def test_interaction_metadata_is_stored(interests, sessions, post):
    await interests.record_interaction(
        "u1", "post", "p1", "dwell", {"durationSec": 12.5, "source": "for_you"}
    )
    async with sessions() as session:
        row = await session.scalar(select(UserInteraction))
    assert row.duration_sec == 12.5
    assert row.source == "for_you"
    assert row.extra == {"durationSec": 12.5, "source": "for_you"}


async def test_decay_shrinks_idle_interests(interests, clock):
    await interests.update_interest("u1", InterestType.CATEGORY, "shoes", 1.0)
    clock.advance(days=8)
    await interests.update_interest("u1", InterestType.CATEGORY, "hats", 1.0)

    assert await interests.decay_interests() == (1, 0)
    scores = _scores(await interests.get_user_interests("u1"))
    assert scores[("category", "shoes")] == 0.9
    assert scores[("category", "hats")] == 1.0


async def test_decay_eventually_deletes(interests, clock):
    await interests.update_interest("u1", InterestType.HASHTAG, "fad", 1.0)
    clock.advance(days=8)

    deleted = 0
    for _ in range(50):
        deleted += (await interests.decay_interests())[1]
    assert deleted == 1
    assert await interests.get_user_interests("u1") == []


async def test_interest_summary_limits(interests):
    for i in range(7):
        await interests.update_interest("u1", InterestType.CATEGORY, f"c{i}", float(i))
    for i in range(12):
        await interests.update_interest("u1", InterestType.HASHTAG, f"h{i}", float(i))
    await interests.update_interest("u1", InterestType.SELLER, "acme", 1.0)

    summary = await interests.get_interest_summary("u1")
    assert [r.interest_value for r in summary["categories"]] == ["c6", "c5", "c4", "c3", "c2"]
    assert len(summary["hashtags"]) == 10
    assert [r.interest_value for r in summary["sellers"]] == ["acme"]
