"""
Relation store — follow, block and mute edges plus the follower counters.

Counter ownership: a FollowStats row is only ever changed inside the same
transaction as the edge transition that justifies it, and only with
`count = count ± 1` in SQL. A follow edge moves between states with
conditional UPDATEs (`... WHERE status = 'unfollowed'`) or an
insert-if-absent, so the affected row count tells us whether a real
transition happened. Repeating a follow therefore never double-counts, and
two racing requests on the same pair serialise on the edge row.

Mutes expire lazily: reading an expired mute deletes it with a conditional
DELETE that only matches while the row is still expired, so a concurrent
renewal is never lost.
"""
import logging
from datetime import datetime
from typing import Optional

from opentelemetry import trace
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_engine.database import upsert
from feed_engine.errors import NotFoundError
from feed_engine.models import (
    BlockEdge,
    FollowEdge,
    FollowStats,
    FollowStatus,
    MuteDuration,
    MuteEdge,
)
from feed_engine.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ACTIVE = FollowStatus.ACTIVE.value
UNFOLLOWED = FollowStatus.UNFOLLOWED.value


def _pair(follower_id: str, following_id: str):
    return and_(
        FollowEdge.follower_id == follower_id,
        FollowEdge.following_id == following_id,
    )


class RelationStore:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._sessions = sessions
        self._clock = clock

    # ─────────────────────── counters ────────────────────────────────────

    async def _increment(self, session: AsyncSession, user_id: str, column: str) -> None:
        counter = getattr(FollowStats, column)
        await upsert(
            session,
            FollowStats,
            {
                "user_id": user_id,
                "follower_count": 1 if column == "follower_count" else 0,
                "following_count": 1 if column == "following_count" else 0,
            },
            conflict_cols=("user_id",),
            update={column: counter + 1},
        )

    async def _decrement(self, session: AsyncSession, user_id: str, column: str) -> None:
        counter = getattr(FollowStats, column)
        await session.execute(
            update(FollowStats)
            .where(FollowStats.user_id == user_id, counter > 0)
            .values({column: counter - 1})
            .execution_options(synchronize_session=False)
        )

    # ─────────────────────── follow edges ────────────────────────────────

    async def _deactivate(
        self, session: AsyncSession, follower_id: str, following_id: str, now: datetime
    ) -> bool:
        result = await session.execute(
            update(FollowEdge)
            .where(_pair(follower_id, following_id), FollowEdge.status == ACTIVE)
            .values(status=UNFOLLOWED, unfollowed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self._decrement(session, follower_id, "following_count")
        await self._decrement(session, following_id, "follower_count")
        return True

    async def follow(self, follower_id: str, following_id: str) -> bool:
        """
        Make the edge active. Returns True when this call changed state
        (created or reactivated) and therefore moved the counters.
        """
        with tracer.start_as_current_span("relation.follow"):
            async with self._sessions.begin() as session:
                now = self._clock()
                reactivated = await session.execute(
                    update(FollowEdge)
                    .where(_pair(follower_id, following_id), FollowEdge.status == UNFOLLOWED)
                    .values(status=ACTIVE, unfollowed_at=None)
                    .execution_options(synchronize_session=False)
                )
                changed = reactivated.rowcount == 1
                if not changed:
                    created = await upsert(
                        session,
                        FollowEdge,
                        {
                            "follower_id": follower_id,
                            "following_id": following_id,
                            "status": ACTIVE,
                            "created_at": now,
                            "unfollowed_at": None,
                        },
                        conflict_cols=("follower_id", "following_id"),
                    )
                    changed = created == 1
                if changed:
                    await self._increment(session, follower_id, "following_count")
                    await self._increment(session, following_id, "follower_count")

        if changed:
            logger.info("%s followed %s", follower_id, following_id)
        return changed

    async def unfollow(self, follower_id: str, following_id: str) -> None:
        with tracer.start_as_current_span("relation.unfollow"):
            async with self._sessions.begin() as session:
                if not await self._deactivate(session, follower_id, following_id, self._clock()):
                    raise NotFoundError("Not following this user")
        logger.info("%s unfollowed %s", follower_id, following_id)

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        async with self._sessions() as session:
            status = await session.scalar(
                select(FollowEdge.status).where(_pair(follower_id, following_id))
            )
        return status == ACTIVE

    async def get_follower_ids(self, user_id: str) -> list[str]:
        """All active followers. Unbounded — fan-out only, never a request path."""
        async with self._sessions() as session:
            rows = await session.scalars(
                select(FollowEdge.follower_id).where(
                    FollowEdge.following_id == user_id, FollowEdge.status == ACTIVE
                )
            )
            return list(rows)

    async def get_followers(
        self, user_id: str, limit: int, offset: int
    ) -> list[tuple[str, datetime]]:
        async with self._sessions() as session:
            rows = await session.execute(
                select(FollowEdge.follower_id, FollowEdge.created_at)
                .where(FollowEdge.following_id == user_id, FollowEdge.status == ACTIVE)
                .order_by(FollowEdge.created_at.desc(), FollowEdge.follower_id)
                .offset(offset)
                .limit(limit)
            )
            return [(r[0], r[1]) for r in rows.all()]

    async def get_following(
        self, user_id: str, limit: int, offset: int
    ) -> list[tuple[str, datetime]]:
        async with self._sessions() as session:
            rows = await session.execute(
                select(FollowEdge.following_id, FollowEdge.created_at)
                .where(FollowEdge.follower_id == user_id, FollowEdge.status == ACTIVE)
                .order_by(FollowEdge.created_at.desc(), FollowEdge.following_id)
                .offset(offset)
                .limit(limit)
            )
            return [(r[0], r[1]) for r in rows.all()]

    async def get_stats(self, user_id: str) -> tuple[int, int]:
        """(follower_count, following_count); zeros for users never followed."""
        async with self._sessions() as session:
            stats = await session.get(FollowStats, user_id)
        if stats is None:
            return 0, 0
        return stats.follower_count, stats.following_count

    async def count_followers(self, user_id: str) -> int:
        async with self._sessions() as session:
            return await session.scalar(
                select(func.count()).select_from(FollowEdge).where(
                    FollowEdge.following_id == user_id, FollowEdge.status == ACTIVE
                )
            )

    async def count_following(self, user_id: str) -> int:
        async with self._sessions() as session:
            return await session.scalar(
                select(func.count()).select_from(FollowEdge).where(
                    FollowEdge.follower_id == user_id, FollowEdge.status == ACTIVE
                )
            )

    # ─────────────────────── blocks ──────────────────────────────────────

    async def block(
        self, blocker_id: str, blocked_id: str, reason: Optional[str] = None
    ) -> int:
        """
        Upsert the block and sever active follows in both directions, all in
        one transaction. Returns the number of follow edges severed.
        """
        with tracer.start_as_current_span("relation.block"):
            async with self._sessions.begin() as session:
                now = self._clock()
                await upsert(
                    session,
                    BlockEdge,
                    {
                        "blocker_id": blocker_id,
                        "blocked_id": blocked_id,
                        "reason": reason,
                        "created_at": now,
                    },
                    conflict_cols=("blocker_id", "blocked_id"),
                    update={"reason": reason},
                )
                severed = 0
                for a, b in ((blocker_id, blocked_id), (blocked_id, blocker_id)):
                    if await self._deactivate(session, a, b, now):
                        severed += 1

        logger.info("%s blocked %s (severed %d follow edges)", blocker_id, blocked_id, severed)
        return severed

    async def unblock(self, blocker_id: str, blocked_id: str) -> None:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(BlockEdge).where(
                    BlockEdge.blocker_id == blocker_id, BlockEdge.blocked_id == blocked_id
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("User is not blocked")

    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """Symmetric: a block in either direction counts."""
        async with self._sessions() as session:
            found = await session.scalar(
                select(BlockEdge.blocker_id)
                .where(
                    or_(
                        and_(BlockEdge.blocker_id == user_a, BlockEdge.blocked_id == user_b),
                        and_(BlockEdge.blocker_id == user_b, BlockEdge.blocked_id == user_a),
                    )
                )
                .limit(1)
            )
        return found is not None

    async def get_blocked_users(self, user_id: str) -> list[str]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(BlockEdge.blocked_id).where(BlockEdge.blocker_id == user_id)
            )
            return list(rows)

    async def get_blocked_by(self, user_id: str) -> list[str]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(BlockEdge.blocker_id).where(BlockEdge.blocked_id == user_id)
            )
            return list(rows)

    # ─────────────────────── mutes ───────────────────────────────────────

    async def mute(
        self,
        muter_id: str,
        muted_id: str,
        mute_posts: bool = True,
        mute_comments: bool = False,
        duration: MuteDuration = MuteDuration.FOREVER,
    ) -> Optional[datetime]:
        """Create or renew a mute. Returns its expiry (None = forever)."""
        now = self._clock()
        ttl = MuteDuration(duration).ttl
        expires_at = now + ttl if ttl is not None else None
        async with self._sessions.begin() as session:
            await upsert(
                session,
                MuteEdge,
                {
                    "muter_id": muter_id,
                    "muted_id": muted_id,
                    "mute_posts": mute_posts,
                    "mute_comments": mute_comments,
                    "expires_at": expires_at,
                    "created_at": now,
                },
                conflict_cols=("muter_id", "muted_id"),
                update={
                    "mute_posts": mute_posts,
                    "mute_comments": mute_comments,
                    "expires_at": expires_at,
                },
            )
        return expires_at

    async def unmute(self, muter_id: str, muted_id: str) -> None:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(MuteEdge).where(
                    MuteEdge.muter_id == muter_id, MuteEdge.muted_id == muted_id
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("User is not muted")

    async def is_muted(self, muter_id: str, muted_id: str) -> bool:
        now = self._clock()
        async with self._sessions.begin() as session:
            mute = await session.get(MuteEdge, (muter_id, muted_id))
            if mute is None:
                return False
            if mute.expires_at is None or mute.expires_at > now:
                return True

            deleted = await session.execute(
                delete(MuteEdge).where(
                    MuteEdge.muter_id == muter_id,
                    MuteEdge.muted_id == muted_id,
                    MuteEdge.expires_at.is_not(None),
                    MuteEdge.expires_at <= now,
                )
                .execution_options(synchronize_session=False)
            )
            if deleted.rowcount == 0:
                # Renewed between our read and the delete
                return True
        logger.debug("Mute %s → %s expired; removed", muter_id, muted_id)
        return False

    async def get_muted_users(self, user_id: str) -> list[str]:
        """Post-muted users whose mute has not expired."""
        now = self._clock()
        async with self._sessions() as session:
            rows = await session.scalars(
                select(MuteEdge.muted_id).where(
                    MuteEdge.muter_id == user_id,
                    MuteEdge.mute_posts.is_(True),
                    or_(MuteEdge.expires_at.is_(None), MuteEdge.expires_at > now),
                )
            )
            return list(rows)

    async def get_hidden_authors(self, user_id: str) -> set[str]:
        """Authors whose posts must never reach `user_id`'s feeds."""
        blocked = await self.get_blocked_users(user_id)
        blocked_by = await self.get_blocked_by(user_id)
        muted = await self.get_muted_users(user_id)
        return set(blocked) | set(blocked_by) | set(muted)

    async def purge_expired_mutes(self) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(MuteEdge).where(
                    MuteEdge.expires_at.is_not(None), MuteEdge.expires_at <= self._clock()
                )
                .execution_options(synchronize_session=False)
            )
        return result.rowcount
