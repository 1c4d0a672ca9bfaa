import pytest
from sqlalchemy import select

from feed_engine.errors import NotFoundError
from feed_engine.models import FollowEdge, MuteDuration, MuteEdge


@pytest.fixture
def relations(services):
    return services.relations


async def test_follow_then_unfollow_restores_counters(relations):
    assert await relations.get_stats("alice") == (0, 0)

    assert await relations.follow("bob", "alice") is True
    assert await relations.get_stats("alice") == (1, 0)
    assert await relations.get_stats("bob") == (0, 1)

    await relations.unfollow("bob", "alice")
    assert await relations.get_stats("alice") == (0, 0)
    assert await relations.get_stats("bob") == (0, 0)
    assert await relations.is_following("bob", "alice") is False


async def test_refollow_does_not_double_count(relations):
    await relations.follow("bob", "alice")
    assert await relations.follow("bob", "alice") is False
    assert await relations.get_stats("alice") == (1, 0)

    await relations.unfollow("bob", "alice")
    assert await relations.follow("bob", "alice") is True
    assert await relations.get_stats("alice") == (1, 0)
    assert await relations.count_followers("alice") == 1
    assert await relations.count_following("bob") == 1


async def test_unfollow_without_edge_is_not_found(relations):
    with pytest.raises(NotFoundError):
        await relations.unfollow("bob", "alice")

    await relations.follow("bob", "alice")
    await relations.unfollow("bob", "alice")
    with pytest.raises(NotFoundError):
        await relations.unfollow("bob", "alice")
    assert await relations.get_stats("alice") == (0, 0)


async def test_unfollow_keeps_soft_deleted_edge(relations, sessions, clock):
    await relations.follow("bob", "alice")
    clock.advance(minutes=5)
    await relations.unfollow("bob", "alice")

    async with sessions() as session:
        edge = await session.get(FollowEdge, ("bob", "alice"))
    assert edge.status == "unfollowed"
    assert edge.unfollowed_at == clock.now


async def test_followers_are_paginated_newest_first(relations, clock):
    for follower in ("u1", "u2", "u3"):
        await relations.follow(follower, "star")
        clock.advance(minutes=1)

    first = await relations.get_followers("star", limit=2, offset=0)
    second = await relations.get_followers("star", limit=2, offset=2)
    assert [uid for uid, _ in first] == ["u3", "u2"]
    assert [uid for uid, _ in second] == ["u1"]

    following = await relations.get_following("u1", limit=10, offset=0)
    assert [uid for uid, _ in following] == ["star"]


async def test_block_severs_follows_in_both_directions(relations):
    await relations.follow("alice", "bob")
    await relations.follow("bob", "alice")

    severed = await relations.block("alice", "bob", reason="spam")
    assert severed == 2
    assert await relations.is_following("alice", "bob") is False
    assert await relations.is_following("bob", "alice") is False
    assert await relations.get_stats("alice") == (0, 0)
    assert await relations.get_stats("bob") == (0, 0)


async def test_is_blocked_is_symmetric(relations):
    await relations.block("alice", "bob")
    assert await relations.is_blocked("alice", "bob") is True
    assert await relations.is_blocked("bob", "alice") is True
    assert await relations.is_blocked("alice", "carol") is False

    await relations.unblock("alice", "bob")
    assert await relations.is_blocked("bob", "alice") is False


async def test_block_twice_updates_reason(relations, sessions):
    await relations.block("alice", "bob", reason="spam")
    assert await relations.block("alice", "bob", reason="abuse") == 0
    assert await relations.get_blocked_users("alice") == ["bob"]
    assert await relations.get_blocked_by("bob") == ["alice"]


async def test_unblock_without_block_is_not_found(relations):
    with pytest.raises(NotFoundError):
        await relations.unblock("alice", "bob")


async def test_one_hour_mute_expires_lazily(relations, sessions, clock):
    expires_at = await relations.mute("alice", "bob", duration=MuteDuration.ONE_HOUR)
    assert expires_at == clock.now + MuteDuration.ONE_HOUR.ttl
    assert await relations.is_muted("alice", "bob") is True

    clock.advance(hours=1)
    assert await relations.is_muted("alice", "bob") is False

    async with sessions() as session:
        remaining = (await session.scalars(select(MuteEdge))).all()
    assert remaining == []


async def test_forever_mute_never_expires(relations, clock):
    assert await relations.mute("alice", "bob") is None
    clock.advance(days=3650)
    assert await relations.is_muted("alice", "bob") is True


async def test_renewed_mute_survives(relations, clock):
    await relations.mute("alice", "bob", duration=MuteDuration.ONE_HOUR)
    clock.advance(hours=2)
    await relations.mute("alice", "bob", duration=MuteDuration.ONE_DAY)
    assert await relations.is_muted("alice", "bob") is True


async def test_unmute_without_mute_is_not_found(relations):
    with pytest.raises(NotFoundError):
        await relations.unmute("alice", "bob")


async def test_hidden_authors_union(relations, clock):
    await relations.block("alice", "spammer")
    await relations.block("troll", "alice")
    await relations.mute("alice", "loud")
    await relations.mute("alice", "brief", duration=MuteDuration.ONE_HOUR)
    await relations.mute("alice", "chatty", mute_posts=False, mute_comments=True)

    assert await relations.get_hidden_authors("alice") == {"spammer", "troll", "loud", "brief"}

    clock.advance(hours=2)
    assert await relations.get_hidden_authors("alice") == {"spammer", "troll", "loud"}


async def test_purge_expired_mutes(relations, clock):
    await relations.mute("alice", "bob", duration=MuteDuration.ONE_HOUR)
    await relations.mute("alice", "carol")
    clock.advance(hours=1)

    assert await relations.purge_expired_mutes() == 1
    assert await relations.get_muted_users("alice") == ["carol"]
