"""
Feed endpoints:
  GET  /feed/following     — push feed, newest first
  GET  /feed/for-you       — following + suggestions + trending, ranked
  GET  /feed/explore       — trending + suggestions, ranked
  POST /feed/refresh       — sweep the caller's expired feed entries
  POST /feed/interactions  — record an interaction and update interests
  GET  /feed/interests     — the caller's interest summary

The caller is identified by the `user_id` query parameter (auth lives in the
gateway).
"""
import logging
import time
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from opentelemetry import trace

from feed_engine.config import settings
from feed_engine.dependencies import Services, get_services
from feed_engine.schemas import (
    FeedItem,
    FeedResponse,
    InteractionCreate,
    InterestResponse,
    InterestSummary,
)

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)

UserId = Annotated[
    str, Query(min_length=1, max_length=36, description="ID of the requesting user")
]


def _page(
    limit: int = Query(settings.feed_default_page_size, ge=1, le=settings.feed_max_page_size),
    offset: int = Query(0, ge=0),
) -> tuple[int, int]:
    return limit, offset


def _response(
    user_id: str, feed_type: str, posts: list[FeedItem], limit: int, offset: int, started: float
) -> FeedResponse:
    return FeedResponse(
        user_id=user_id,
        feed_type=feed_type,
        posts=posts,
        limit=limit,
        offset=offset,
        count=len(posts),
        latency_ms=round((time.time() - started) * 1000, 2),
    )


@router.get("/following", response_model=FeedResponse, response_model_by_alias=False)
async def following_feed(
    user_id: UserId,
    page: tuple[int, int] = Depends(_page),
    services: Services = Depends(get_services),
):
    started = time.time()
    limit, offset = page
    posts = await services.feed.get_following_feed(user_id, limit, offset)
    return _response(user_id, "following", posts, limit, offset, started)


@router.get("/for-you", response_model=FeedResponse, response_model_by_alias=False)
async def for_you_feed(
    user_id: UserId,
    page: tuple[int, int] = Depends(_page),
    services: Services = Depends(get_services),
):
    started = time.time()
    limit, offset = page
    posts = await services.feed.get_for_you_feed(user_id, limit, offset)
    return _response(user_id, "for_you", posts, limit, offset, started)


@router.get("/explore", response_model=FeedResponse, response_model_by_alias=False)
async def explore_feed(
    user_id: UserId,
    page: tuple[int, int] = Depends(_page),
    services: Services = Depends(get_services),
):
    started = time.time()
    limit, offset = page
    posts = await services.feed.get_explore_feed(user_id, limit, offset)
    return _response(user_id, "explore", posts, limit, offset, started)


@router.post("/refresh")
async def refresh_feed(user_id: UserId, services: Services = Depends(get_services)):
    removed = await services.feed.refresh_feed(user_id)
    return {"user_id": user_id, "expired_removed": removed}


@router.post("/interactions", status_code=status.HTTP_201_CREATED)
async def record_interaction(body: InteractionCreate, services: Services = Depends(get_services)):
    """
    Log an interaction (view, like, save, …). The raw event is always stored;
    interest scores are updated when the content service can describe the post.
    """
    with tracer.start_as_current_span("record_interaction"):
        metadata = dict(body.metadata or {})
        if body.duration_sec is not None:
            metadata["durationSec"] = body.duration_sec
        if body.source is not None:
            metadata["source"] = body.source
        touched = await services.interests.record_interaction(
            body.user_id, body.content_type, body.content_id, body.interaction_type, metadata
        )
    return {"recorded": True, "interests_updated": touched}


@router.get("/interests", response_model=InterestSummary)
async def interest_summary(user_id: UserId, services: Services = Depends(get_services)):
    summary = await services.interests.get_interest_summary(user_id)
    return InterestSummary(
        user_id=user_id,
        **{
            key: [InterestResponse.model_validate(row) for row in rows]
            for key, rows in summary.items()
        },
    )
