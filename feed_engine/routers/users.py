"""
Social graph endpoints (`user_id` query parameter = the caller):
  POST   /users/{id}/follow        — follow
  DELETE /users/{id}/follow        — unfollow
  POST   /users/{id}/block         — block (severs follows, purges feeds)
  DELETE /users/{id}/block         — unblock
  POST   /users/{id}/mute          — mute for a duration
  DELETE /users/{id}/mute          — unmute
  GET    /users/{id}/followers     — paginated followers
  GET    /users/{id}/following     — paginated followees
  GET    /users/{id}/stats         — follower / following counters
  GET    /users/{id}/is-following  — does the caller follow {id}
  GET    /users/{id}/blocked       — users {id} has blocked
  GET    /users/{id}/muted         — users {id} has muted (posts, unexpired)
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from opentelemetry import trace

from feed_engine.dependencies import Services, get_services
from feed_engine.schemas import (
    BlockRequest,
    FollowListResponse,
    FollowStatsResponse,
    MuteRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)

Caller = Annotated[str, Query(min_length=1, max_length=36, description="ID of the acting user")]


# ── Follow ─────────────────────────────────────────────────────────────────

@router.post("/{target_id}/follow")
async def follow_user(
    target_id: str, user_id: Caller, services: Services = Depends(get_services)
):
    """Idempotent: following twice reports `created: false` the second time."""
    with tracer.start_as_current_span("follow_user"):
        created = await services.social.follow(user_id, target_id)
    return {"following": True, "created": created}


@router.delete("/{target_id}/follow", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    target_id: str, user_id: Caller, services: Services = Depends(get_services)
):
    with tracer.start_as_current_span("unfollow_user"):
        await services.social.unfollow(user_id, target_id)


@router.get("/{target_id}/followers", response_model=FollowListResponse)
async def list_followers(
    target_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    users = await services.social.get_followers(target_id, limit, offset)
    return FollowListResponse(user_id=target_id, users=users, limit=limit, offset=offset)


@router.get("/{target_id}/following", response_model=FollowListResponse)
async def list_following(
    target_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    users = await services.social.get_following(target_id, limit, offset)
    return FollowListResponse(user_id=target_id, users=users, limit=limit, offset=offset)


@router.get("/{target_id}/stats", response_model=FollowStatsResponse)
async def follow_stats(target_id: str, services: Services = Depends(get_services)):
    return await services.social.get_stats(target_id)


@router.get("/{target_id}/is-following")
async def is_following(
    target_id: str, user_id: Caller, services: Services = Depends(get_services)
):
    return {"following": await services.social.is_following(user_id, target_id)}


# ── Block ──────────────────────────────────────────────────────────────────

@router.post("/{target_id}/block")
async def block_user(
    target_id: str,
    user_id: Caller,
    body: Optional[BlockRequest] = Body(None),
    services: Services = Depends(get_services),
):
    with tracer.start_as_current_span("block_user"):
        severed = await services.social.block(
            user_id, target_id, body.reason if body else None
        )
    return {"blocked": True, "follows_removed": severed}


@router.delete("/{target_id}/block", status_code=status.HTTP_204_NO_CONTENT)
async def unblock_user(
    target_id: str, user_id: Caller, services: Services = Depends(get_services)
):
    await services.social.unblock(user_id, target_id)


@router.get("/{target_id}/blocked")
async def list_blocked(target_id: str, services: Services = Depends(get_services)):
    return {"user_id": target_id, "blocked": await services.social.get_blocked_users(target_id)}


# ── Mute ───────────────────────────────────────────────────────────────────

@router.post("/{target_id}/mute")
async def mute_user(
    target_id: str,
    user_id: Caller,
    body: Optional[MuteRequest] = Body(None),
    services: Services = Depends(get_services),
):
    body = body or MuteRequest()
    expires_at = await services.social.mute(
        user_id, target_id, body.mute_posts, body.mute_comments, body.duration
    )
    return {"muted": True, "duration": body.duration, "expires_at": expires_at}


@router.delete("/{target_id}/mute", status_code=status.HTTP_204_NO_CONTENT)
async def unmute_user(
    target_id: str, user_id: Caller, services: Services = Depends(get_services)
):
    await services.social.unmute(user_id, target_id)


@router.get("/{target_id}/muted")
async def list_muted(target_id: str, services: Services = Depends(get_services)):
    return {"user_id": target_id, "muted": await services.social.get_muted_users(target_id)}
