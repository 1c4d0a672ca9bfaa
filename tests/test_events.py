from datetime import datetime

import pytest

from feed_engine.workers.events import (
    EventDispatcher,
    MalformedEventError,
    PostCreated,
    PostDeleted,
    parse_event,
)


def test_parse_post_created():
    event = parse_event(
        {
            "type": "post.created",
            "payload": {"postId": "p1", "userId": "c", "publishedAt": "2024-06-01T14:00:00+02:00"},
        }
    )
    assert event == PostCreated(post_id="p1", user_id="c", published_at=datetime(2024, 6, 1, 12))


def test_parse_accepts_zulu_and_snake_case():
    event = parse_event(
        {"type": "post.created",
         "payload": {"post_id": "p1", "user_id": "c", "published_at": "2024-06-01T12:00:00Z"}}
    )
    assert event.published_at == datetime(2024, 6, 1, 12)


@pytest.mark.parametrize("published_at", [1717243200000, 1717243200000.0])
def test_parse_accepts_epoch_milliseconds(published_at):
    event = parse_event(
        {"type": "post.created",
         "payload": {"postId": "p1", "userId": "c", "publishedAt": published_at}}
    )
    assert event.published_at == datetime(2024, 6, 1, 12)


def test_parse_post_deleted():
    assert parse_event({"type": "post.deleted", "payload": {"postId": "p1"}}) == PostDeleted("p1")


@pytest.mark.parametrize(
    "message",
    [
        {"type": "post.created", "payload": {"postId": "p1"}},
        {"type": "post.created", "payload": {"postId": "p1", "userId": "c", "publishedAt": "soon"}},
        {"type": "post.created", "payload": {"postId": "p1", "userId": "c", "publishedAt": True}},
        {"type": "post.deleted", "payload": {}},
        {"type": "post.liked", "payload": {"postId": "p1"}},
        "not-a-dict",
    ],
)
def test_malformed_events(message):
    with pytest.raises(MalformedEventError):
        parse_event(message)


async def test_dispatcher_fans_out_and_removes(services):
    await services.relations.follow("u1", "c")
    dispatcher = EventDispatcher(services.fanout)

    created = {"type": "post.created",
               "payload": {"postId": "p1", "userId": "c", "publishedAt": "2024-06-01T12:00:00Z"}}
    assert await dispatcher.handle_message(created) == 1
    assert await dispatcher.handle_message(created) == 1
    assert await services.fanout.get_feed_count("u1") == 1

    assert await dispatcher.handle_message({"type": "post.deleted", "payload": {"postId": "p1"}}) == 1
    assert await services.fanout.get_feed_count("u1") == 0


async def test_dispatcher_skips_malformed(services):
    dispatcher = EventDispatcher(services.fanout)
    assert await dispatcher.handle_message({"type": "mystery"}) == 0
