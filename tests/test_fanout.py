from datetime import timedelta

import pytest

from feed_engine.models import FeedType

from conftest import T0


@pytest.fixture
def fanout(services):
    return services.fanout


async def _follow_all(services, author, followers):
    for follower in followers:
        await services.relations.follow(follower, author)


async def test_fan_out_writes_one_entry_per_follower(services, fanout):
    await _follow_all(services, "creator", ["u1", "u2", "u3"])

    assert await fanout.fan_out_to_followers("creator", "p1", T0) == 3
    for user in ("u1", "u2", "u3"):
        entries = await fanout.list_following(user, limit=10, offset=0)
        assert [(e.post_id, e.reasons, e.author_id) for e in entries] == [
            ("p1", ["following"], "creator")
        ]


async def test_fan_out_is_idempotent_under_redelivery(services, fanout):
    await _follow_all(services, "creator", ["u1", "u2"])

    await fanout.fan_out_to_followers("creator", "p1", T0)
    await fanout.fan_out_to_followers("creator", "p1", T0)

    assert await fanout.get_feed_count("u1") == 1
    assert await fanout.get_feed_count("u2") == 1


async def test_fan_out_skips_unfollowed_and_authorless(services, fanout):
    assert await fanout.fan_out_to_followers("lonely", "p0", T0) == 0

    await _follow_all(services, "creator", ["u1", "u2"])
    await services.relations.unfollow("u2", "creator")
    assert await fanout.fan_out_to_followers("creator", "p1", T0) == 1
    assert await fanout.get_feed_count("u2") == 0


async def test_following_feed_is_newest_first(services, fanout):
    await _follow_all(services, "creator", ["u1"])
    await fanout.fan_out_to_followers("creator", "old", T0 - timedelta(hours=2))
    await fanout.fan_out_to_followers("creator", "new", T0)
    await fanout.fan_out_to_followers("creator", "mid", T0 - timedelta(hours=1))

    page = await fanout.list_following("u1", limit=2, offset=0)
    rest = await fanout.list_following("u1", limit=2, offset=2)
    assert [e.post_id for e in page] == ["new", "mid"]
    assert [e.post_id for e in rest] == ["old"]


async def test_expired_entries_are_invisible_before_the_sweep(services, fanout, clock):
    await _follow_all(services, "creator", ["u1"])
    await fanout.fan_out_to_followers("creator", "p1", T0)

    clock.advance(days=fanout.max_age_days)
    assert await fanout.list_following("u1", limit=10, offset=0) == []
    assert await fanout.get_feed_count("u1") == 0

    assert await fanout.purge_expired() == 1
    assert await fanout.purge_expired() == 0


async def test_purge_expired_for_one_user(services, fanout, clock):
    await _follow_all(services, "creator", ["u1", "u2"])
    await fanout.fan_out_to_followers("creator", "p1", T0)
    clock.advance(days=fanout.max_age_days + 1)

    assert await fanout.purge_expired("u1") == 1
    assert await fanout.purge_expired() == 1


async def test_remove_from_all_feeds(services, fanout):
    await _follow_all(services, "creator", ["u1", "u2"])
    await fanout.fan_out_to_followers("creator", "p1", T0)
    await fanout.fan_out_to_followers("creator", "p2", T0)

    assert await fanout.remove_from_all_feeds("p1") == 2
    assert [e.post_id for e in await fanout.list_following("u1", 10, 0)] == ["p2"]
    assert await fanout.remove_from_user_feed("u2", "p2") == 1
    assert await fanout.get_feed_count("u2") == 0


async def test_remove_blocked_user_feeds_clears_both_directions(services, fanout):
    await services.relations.follow("alice", "bob")
    await services.relations.follow("bob", "alice")
    await services.relations.follow("carol", "bob")
    await fanout.fan_out_to_followers("bob", "bob-post", T0)
    await fanout.fan_out_to_followers("alice", "alice-post", T0)

    assert await fanout.remove_blocked_user_feeds("alice", "bob") == 2
    assert await fanout.get_feed_count("alice") == 0
    assert await fanout.get_feed_count("bob") == 0
    assert await fanout.get_feed_count("carol") == 1


async def test_add_trending_to_feeds(fanout):
    added = await fanout.add_trending_to_feeds(["u1", "u2"], "hot", "creator", T0, 42.0)
    assert added == 2
    await fanout.add_trending_to_feeds(["u1"], "hot", "creator", T0, 42.0)

    assert await fanout.get_feed_count("u1") == 1
    assert await fanout.get_feed_count("u1", FeedType.TRENDING) == 1
    assert await fanout.get_feed_count("u1", FeedType.FOLLOWING) == 0
    assert await fanout.add_trending_to_feeds([], "hot", "creator", T0, 1.0) == 0


async def test_purge_older_than(services, fanout):
    await _follow_all(services, "creator", ["u1"])
    await fanout.fan_out_to_followers("creator", "ancient", T0 - timedelta(days=40))
    await fanout.fan_out_to_followers("creator", "fresh", T0)

    assert await fanout.purge_older_than(30) == 1
    assert [e.post_id for e in await fanout.list_following("u1", 10, 0)] == ["fresh"]
