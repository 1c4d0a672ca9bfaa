"""
Social graph service — request-level rules around the relation store.

The relation store guarantees atomic edge + counter transitions; this layer
adds what a caller may or may not ask for (no self-relations, no following
across a block), the feed cleanup that must accompany a block, and the
relation events published for downstream consumers.
"""
import logging
from datetime import datetime
from typing import Optional

from opentelemetry import trace

from feed_engine.clients.kafka_producer import EventPublisher
from feed_engine.errors import ForbiddenError, InvalidInputError
from feed_engine.models import MuteDuration
from feed_engine.schemas import FollowListItem, FollowStatsResponse
from feed_engine.services.fanout import FanOutWriter
from feed_engine.services.relation_store import RelationStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_ID_LENGTH = 36


def _check_ids(actor_id: str, target_id: str, action: str) -> None:
    for value in (actor_id, target_id):
        if not value or len(value) > MAX_ID_LENGTH:
            raise InvalidInputError(f"Malformed user id: {value!r}")
    if actor_id == target_id:
        raise InvalidInputError(f"Cannot {action} yourself")


class SocialGraphService:
    def __init__(
        self,
        relations: RelationStore,
        fanout: FanOutWriter,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self._relations = relations
        self._fanout = fanout
        self._publisher = publisher

    async def _publish(self, event_type: str, actor_id: str, target_id: str, **extra) -> None:
        if self._publisher is None:
            return
        payload = {"userId": actor_id, "targetUserId": target_id, **extra}
        await self._publisher.publish(event_type, f"{actor_id}:{target_id}", payload)

    # ─────────────────────── follows ─────────────────────────────────────

    async def follow(self, follower_id: str, following_id: str) -> bool:
        _check_ids(follower_id, following_id, "follow")
        with tracer.start_as_current_span("social.follow") as span:
            span.set_attribute("user.id", follower_id)
            if await self._relations.is_blocked(follower_id, following_id):
                raise ForbiddenError("Cannot follow this user")
            changed = await self._relations.follow(follower_id, following_id)
        if changed:
            await self._publish("user.followed", follower_id, following_id)
        return changed

    async def unfollow(self, follower_id: str, following_id: str) -> None:
        _check_ids(follower_id, following_id, "unfollow")
        await self._relations.unfollow(follower_id, following_id)
        await self._publish("user.unfollowed", follower_id, following_id)

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        return await self._relations.is_following(follower_id, following_id)

    async def get_followers(self, user_id: str, limit: int, offset: int) -> list[FollowListItem]:
        rows = await self._relations.get_followers(user_id, limit, offset)
        return [FollowListItem(user_id=uid, followed_at=at) for uid, at in rows]

    async def get_following(self, user_id: str, limit: int, offset: int) -> list[FollowListItem]:
        rows = await self._relations.get_following(user_id, limit, offset)
        return [FollowListItem(user_id=uid, followed_at=at) for uid, at in rows]

    async def get_stats(self, user_id: str) -> FollowStatsResponse:
        followers, following = await self._relations.get_stats(user_id)
        return FollowStatsResponse(
            user_id=user_id, follower_count=followers, following_count=following
        )

    # ─────────────────────── blocks ──────────────────────────────────────

    async def block(self, blocker_id: str, blocked_id: str, reason: Optional[str] = None) -> int:
        """Block, sever follows both ways, and purge cross feed entries."""
        _check_ids(blocker_id, blocked_id, "block")
        with tracer.start_as_current_span("social.block") as span:
            span.set_attribute("user.id", blocker_id)
            severed = await self._relations.block(blocker_id, blocked_id, reason)
            removed = await self._fanout.remove_blocked_user_feeds(blocker_id, blocked_id)
            span.set_attribute("block.feed_entries_removed", removed)
        logger.info(
            "Block %s → %s: %d follows severed, %d feed entries removed",
            blocker_id, blocked_id, severed, removed,
        )
        await self._publish("user.blocked", blocker_id, blocked_id)
        return severed

    async def unblock(self, blocker_id: str, blocked_id: str) -> None:
        _check_ids(blocker_id, blocked_id, "unblock")
        await self._relations.unblock(blocker_id, blocked_id)
        await self._publish("user.unblocked", blocker_id, blocked_id)

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        return await self._relations.is_blocked(user_a, user_b)

    async def get_blocked_users(self, user_id: str) -> list[str]:
        return await self._relations.get_blocked_users(user_id)

    # ─────────────────────── mutes ───────────────────────────────────────

    async def mute(
        self,
        muter_id: str,
        muted_id: str,
        mute_posts: bool = True,
        mute_comments: bool = False,
        duration: MuteDuration = MuteDuration.FOREVER,
    ) -> Optional[datetime]:
        _check_ids(muter_id, muted_id, "mute")
        try:
            duration = MuteDuration(duration)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown mute duration: {duration!r}") from exc
        expires_at = await self._relations.mute(
            muter_id, muted_id, mute_posts, mute_comments, duration
        )
        await self._publish(
            "user.muted", muter_id, muted_id, duration=duration.value, expiresAt=expires_at
        )
        return expires_at

    async def unmute(self, muter_id: str, muted_id: str) -> None:
        _check_ids(muter_id, muted_id, "unmute")
        await self._relations.unmute(muter_id, muted_id)
        await self._publish("user.unmuted", muter_id, muted_id)

    async def is_muted(self, muter_id: str, muted_id: str) -> bool:
        return await self._relations.is_muted(muter_id, muted_id)

    async def get_muted_users(self, user_id: str) -> list[str]:
        return await self._relations.get_muted_users(user_id)
