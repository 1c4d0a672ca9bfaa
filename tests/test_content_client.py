import json
from datetime import datetime

import httpx
import pytest

from feed_engine.clients.content_client import ContentClient
from feed_engine.dependencies import build_services
from feed_engine.errors import UpstreamUnavailableError

from conftest import T0

POST = {
    "id": "p1",
    "userId": "c",
    "categoryId": "shoes",
    "hashtags": ["summer"],
    "productTags": [{"productId": "x", "sellerId": "acme"}],
    "likeCount": 3,
    "publishedAt": "2024-06-01T12:00:00.000Z",
    "caption": "ignored",
}


def make_client(handler) -> ContentClient:
    return ContentClient(base_url="http://content", transport=httpx.MockTransport(handler))


async def test_get_posts_batches_ids():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [POST]})

    client = make_client(handler)
    await client.start()
    try:
        [post] = await client.get_posts(["p1", "gone"])
    finally:
        await client.stop()

    assert seen == {"path": "/api/posts/batch", "body": {"postIds": ["p1", "gone"]}}
    assert post.user_id == "c"
    assert post.tagged_seller_ids == ["acme"]
    assert post.published_at == datetime(2024, 6, 1, 12)


async def test_get_posts_with_no_ids_skips_the_call():
    def handler(request):
        raise AssertionError("no request expected")

    client = make_client(handler)
    await client.start()
    assert await client.get_posts([]) == []
    await client.stop()


async def test_get_post_404_is_none():
    client = make_client(lambda request: httpx.Response(404, json={"error": "nope"}))
    await client.start()
    assert await client.get_post("missing") is None
    await client.stop()


async def test_search_posts_sends_camel_case():
    captured = {}

    def handler(request):
        captured.update(json.loads(request.content))
        return httpx.Response(200, json={"data": []})

    client = make_client(handler)
    await client.start()
    await client.search_posts(categories=["shoes"], seller_ids=["acme"], limit=5, exclude_author_ids=["u"])
    await client.stop()

    assert captured == {
        "categories": ["shoes"],
        "hashtags": [],
        "sellerIds": ["acme"],
        "limit": 5,
        "excludeAuthorIds": ["u"],
    }


async def test_engagement_stats_window_params():
    def handler(request):
        assert request.url.params["startDate"] == "2024-06-01T11:00:00"
        assert request.url.params["endDate"] == "2024-06-01T12:00:00"
        return httpx.Response(
            200,
            json={"data": [{"postId": "p1", "viewCount": 7, "publishedAt": "2024-06-01T11:30:00Z"}]},
        )

    client = make_client(handler)
    await client.start()
    [record] = await client.get_engagement_stats(datetime(2024, 6, 1, 11), datetime(2024, 6, 1, 12))
    await client.stop()
    assert (record.post_id, record.view_count, record.save_count) == ("p1", 7, 0)


@pytest.mark.parametrize("status", [500, 503])
async def test_server_errors_become_upstream_unavailable(status):
    client = make_client(lambda request: httpx.Response(status))
    await client.start()
    with pytest.raises(UpstreamUnavailableError):
        await client.get_hashtag_stats()
    with pytest.raises(UpstreamUnavailableError):
        await client.get_post("p1")
    await client.stop()


async def test_transport_errors_become_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    await client.start()
    with pytest.raises(UpstreamUnavailableError):
        await client.get_posts(["p1"])
    await client.stop()


async def test_client_must_be_started():
    with pytest.raises(RuntimeError):
        await ContentClient(base_url="http://content").get_posts(["p1"])


async def test_non_json_body_becomes_upstream_unavailable():
    client = make_client(lambda request: httpx.Response(200, text="not json"))
    await client.start()
    with pytest.raises(UpstreamUnavailableError):
        await client.get_posts(["p1"])
    with pytest.raises(UpstreamUnavailableError):
        await client.get_post("p1")
    await client.stop()


async def test_malformed_post_becomes_upstream_unavailable():
    broken = {k: v for k, v in POST.items() if k != "publishedAt"}
    client = make_client(lambda request: httpx.Response(200, json={"data": [broken]}))
    await client.start()
    with pytest.raises(UpstreamUnavailableError):
        await client.search_posts(categories=["shoes"])
    await client.stop()


async def test_for_you_serves_following_when_batch_body_is_garbage(sessions, publisher, clock):
    client = make_client(lambda request: httpx.Response(200, text="not json"))
    await client.start()
    services = build_services(sessions, client, publisher, clock=clock)
    try:
        await services.social.follow("u", "c")
        await services.fanout.fan_out_to_followers("c", "P", T0)

        items = await services.feed.get_for_you_feed("u")
    finally:
        await client.stop()

    assert [(i.post_id, i.post) for i in items] == [("P", None)]
