"""
Content service client.

Posts, their engagement counters and hashtag usage are owned by the content
service. The feed engine only reads them:

  GET  /api/posts/{id}                 → single post (404 → None)
  POST /api/posts/batch                → { postIds } → posts (partial results ok)
  POST /api/posts/search               → interest-matched posts
  GET  /api/posts/engagement-stats     → per-post counters in a time window
  GET  /api/posts/hashtag-stats        → per-hashtag usage counts

Responses are wrapped as { "data": ... }.

Every transport, HTTP or decoding failure surfaces as UpstreamUnavailableError; callers
decide whether to degrade (feed reads) or abandon the run (periodic jobs).
"""
import logging
from datetime import datetime
from typing import Optional

import httpx
from pydantic import ValidationError

from feed_engine.config import settings
from feed_engine.errors import UpstreamUnavailableError
from feed_engine.schemas import EngagementRecord, HashtagStat, Post

logger = logging.getLogger(__name__)


class ContentClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url or settings.content_service_url
        self.timeout = timeout or settings.content_service_timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("ContentClient not started — call start() at startup")
        return self._http

    @staticmethod
    def _data(resp: httpx.Response):
        body = resp.json()
        if not isinstance(body, dict):
            raise ValueError(f"unexpected response body: {type(body).__name__}")
        return body.get("data")

    async def _fetch_many(self, operation: str, model, method: str, url: str, **kwargs) -> list:
        # undecodable or mis-shaped bodies count as an outage, same as a 5xx
        try:
            resp = await self._client().request(method, url, **kwargs)
            resp.raise_for_status()
            return [model.model_validate(item) for item in self._data(resp) or []]
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.warning("Content service %s failed: %s", operation, exc)
            raise UpstreamUnavailableError(f"content service {operation} failed") from exc

    async def get_post(self, post_id: str) -> Optional[Post]:
        try:
            resp = await self._client().get(f"/api/posts/{post_id}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = self._data(resp)
            return Post.model_validate(data) if data else None
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.warning("Content service get_post(%s) failed: %s", post_id, exc)
            raise UpstreamUnavailableError("content service get_post failed") from exc

    async def get_posts(self, post_ids: list[str]) -> list[Post]:
        """Batch fetch. Missing ids are simply absent from the result."""
        if not post_ids:
            return []
        return await self._fetch_many(
            "get_posts", Post, "POST", "/api/posts/batch", json={"postIds": post_ids}
        )

    async def search_posts(
        self,
        categories: Optional[list[str]] = None,
        hashtags: Optional[list[str]] = None,
        seller_ids: Optional[list[str]] = None,
        limit: int = 20,
        exclude_author_ids: Optional[list[str]] = None,
    ) -> list[Post]:
        payload = {
            "categories": categories or [],
            "hashtags": hashtags or [],
            "sellerIds": seller_ids or [],
            "limit": limit,
            "excludeAuthorIds": exclude_author_ids or [],
        }
        return await self._fetch_many(
            "search_posts", Post, "POST", "/api/posts/search", json=payload
        )

    async def get_engagement_stats(
        self, start: datetime, end: datetime
    ) -> list[EngagementRecord]:
        params = {"startDate": start.isoformat(), "endDate": end.isoformat()}
        return await self._fetch_many(
            "get_engagement_stats", EngagementRecord,
            "GET", "/api/posts/engagement-stats", params=params,
        )

    async def get_hashtag_stats(self) -> list[HashtagStat]:
        return await self._fetch_many(
            "get_hashtag_stats", HashtagStat, "GET", "/api/posts/hashtag-stats"
        )
