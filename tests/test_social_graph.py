import pytest

from feed_engine.errors import ForbiddenError, InvalidInputError, NotFoundError
from feed_engine.models import MuteDuration

from conftest import T0


@pytest.fixture
def social(services):
    return services.social


@pytest.mark.parametrize("action", ["follow", "block", "mute", "unfollow", "unblock", "unmute"])
async def test_self_relations_are_rejected(social, action):
    with pytest.raises(InvalidInputError):
        await getattr(social, action)("alice", "alice")


@pytest.mark.parametrize("bad_id", ["", "x" * 37])
async def test_malformed_ids_are_rejected(social, bad_id):
    with pytest.raises(InvalidInputError):
        await social.follow("alice", bad_id)


async def test_cannot_follow_across_a_block(social):
    await social.block("bob", "alice")
    with pytest.raises(ForbiddenError):
        await social.follow("alice", "bob")
    with pytest.raises(ForbiddenError):
        await social.follow("bob", "alice")


async def test_follow_publishes_only_on_change(social, publisher):
    assert await social.follow("alice", "bob") is True
    assert await social.follow("alice", "bob") is False
    assert publisher.types() == ["user.followed"]

    event_type, key, payload = publisher.events[0]
    assert key == "alice:bob"
    assert payload == {"userId": "alice", "targetUserId": "bob"}


async def test_unfollow_unknown_edge(social, publisher):
    with pytest.raises(NotFoundError):
        await social.unfollow("alice", "bob")
    assert publisher.events == []


async def test_block_purges_cross_feed_entries(services, social, publisher):
    await social.follow("alice", "bob")
    await services.fanout.fan_out_to_followers("bob", "bob-post", T0)

    assert await social.block("alice", "bob", reason="spam") == 1
    assert await services.fanout.get_feed_count("alice") == 0
    assert (await social.get_stats("bob")).follower_count == 0
    assert publisher.types() == ["user.followed", "user.blocked"]
    assert await social.get_blocked_users("alice") == ["bob"]

    await social.unblock("alice", "bob")
    assert await social.is_blocked("bob", "alice") is False
    assert publisher.types()[-1] == "user.unblocked"


async def test_mute_accepts_duration_strings(social, publisher, clock):
    expires_at = await social.mute("alice", "bob", duration="24h")
    assert expires_at == clock.now + MuteDuration.ONE_DAY.ttl
    assert await social.is_muted("alice", "bob") is True
    assert publisher.events[-1][2]["duration"] == "24h"

    with pytest.raises(InvalidInputError):
        await social.mute("alice", "carol", duration="2h")

    await social.unmute("alice", "bob")
    assert await social.get_muted_users("alice") == []
    assert publisher.types()[-1] == "user.unmuted"


async def test_paginated_graph_reads(social, clock):
    for follower in ("a", "b", "c"):
        await social.follow(follower, "star")
        clock.advance(seconds=1)

    page = await social.get_followers("star", limit=2, offset=0)
    assert [u.user_id for u in page] == ["c", "b"]
    assert page[0].followed_at == T0.replace(second=2)

    assert [u.user_id for u in await social.get_following("a", 10, 0)] == ["star"]
    stats = await social.get_stats("star")
    assert (stats.follower_count, stats.following_count) == (3, 0)
    assert await social.is_following("a", "star") is True
