"""
Interest model — per-user affinity over (category, hashtag, seller).

Every interaction is first appended to user_interactions (committed on its
own), then folded into user_interests. Folding is best-effort: if the content
service cannot describe the post, the raw log row stays and the fold is
skipped.

One interaction on a post touches several rows:
  category        += weight
  each hashtag    += weight × 0.5
  each seller tag += weight × 0.3

Interests that have been idle for `idle_days` decay multiplicatively on each
decay run; rows that fall below `floor` are deleted.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from opentelemetry import trace
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_engine.clients.content_client import ContentClient
from feed_engine.config import settings
from feed_engine.database import upsert
from feed_engine.errors import UpstreamUnavailableError
from feed_engine.models import InterestType, UserInteraction, UserInterest
from feed_engine.telemetry import UPSTREAM_ERRORS_TOTAL
from feed_engine.timeutil import Clock, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INTERACTION_WEIGHTS = {
    "view": 0.1,
    "dwell": 0.2,
    "like": 0.5,
    "comment": 0.7,
    "save": 0.8,
    "share": 0.9,
    "click_product": 0.6,
    "purchase": 1.0,
    "follow": 0.7,
}
DEFAULT_WEIGHT = 0.1

HASHTAG_FACTOR = 0.5
SELLER_FACTOR = 0.3


def interaction_weight(interaction_type: str) -> float:
    return INTERACTION_WEIGHTS.get(interaction_type.replace("-", "_"), DEFAULT_WEIGHT)


class InterestModel:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        content: ContentClient,
        clock: Clock = utcnow,
    ) -> None:
        self._sessions = sessions
        self._content = content
        self._clock = clock

    async def record_interaction(
        self,
        user_id: str,
        content_type: str,
        content_id: str,
        interaction_type: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        """
        Log the interaction, then fold it into affinities.
        Returns the number of interest rows touched (0 if folding was skipped).
        """
        metadata = metadata or {}
        with tracer.start_as_current_span("interest.record_interaction") as span:
            span.set_attribute("user.id", user_id)
            span.set_attribute("interaction.type", interaction_type)

            async with self._sessions.begin() as session:
                session.add(
                    UserInteraction(
                        user_id=user_id,
                        content_type=content_type,
                        content_id=content_id,
                        interaction_type=interaction_type,
                        duration_sec=metadata.get("durationSec") or metadata.get("duration_sec"),
                        source=metadata.get("source"),
                        extra=metadata or None,
                        created_at=self._clock(),
                    )
                )

            try:
                return await self.fold_interaction(
                    user_id, content_type, content_id, interaction_type
                )
            except UpstreamUnavailableError:
                UPSTREAM_ERRORS_TOTAL.labels(operation="interest_fold").inc()
                logger.warning(
                    "Interaction %s on %s logged but not folded (content service down)",
                    interaction_type, content_id,
                )
                return 0

    async def fold_interaction(
        self,
        user_id: str,
        content_type: str,
        content_id: str,
        interaction_type: str,
    ) -> int:
        if content_type != "post":
            return 0

        post = await self._content.get_post(content_id)
        if post is None:
            return 0

        weight = interaction_weight(interaction_type)
        increments: list[tuple[InterestType, str, float]] = []
        if post.category_id:
            increments.append((InterestType.CATEGORY, post.category_id, weight))
        for hashtag in post.hashtags:
            increments.append((InterestType.HASHTAG, hashtag, weight * HASHTAG_FACTOR))
        for seller_id in post.tagged_seller_ids:
            increments.append((InterestType.SELLER, seller_id, weight * SELLER_FACTOR))

        if not increments:
            return 0
        now = self._clock()
        async with self._sessions.begin() as session:
            for interest_type, value, amount in increments:
                await self._bump(session, user_id, interest_type, value, amount, now)
        return len(increments)

    async def _bump(
        self,
        session: AsyncSession,
        user_id: str,
        interest_type: InterestType,
        value: str,
        amount: float,
        now: datetime,
    ) -> None:
        await upsert(
            session,
            UserInterest,
            {
                "user_id": user_id,
                "interest_type": InterestType(interest_type).value,
                "interest_value": value,
                "score": amount,
                "interaction_count": 1,
                "last_interaction_at": now,
            },
            conflict_cols=("user_id", "interest_type", "interest_value"),
            update={
                "score": UserInterest.score + amount,
                "interaction_count": UserInterest.interaction_count + 1,
                "last_interaction_at": now,
            },
        )

    async def update_interest(
        self, user_id: str, interest_type: InterestType, value: str, amount: float
    ) -> None:
        async with self._sessions.begin() as session:
            await self._bump(session, user_id, interest_type, value, amount, self._clock())

    async def get_user_interests(
        self, user_id: str, limit: Optional[int] = None
    ) -> list[UserInterest]:
        """Top-N interests by score, highest first."""
        async with self._sessions() as session:
            rows = await session.scalars(
                select(UserInterest)
                .where(UserInterest.user_id == user_id)
                .order_by(UserInterest.score.desc(), UserInterest.interest_value)
                .limit(limit or settings.interest_top_n)
            )
            return list(rows)

    async def get_interests_by_type(
        self, user_id: str, interest_type: InterestType, limit: int = 10
    ) -> list[UserInterest]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(UserInterest)
                .where(
                    UserInterest.user_id == user_id,
                    UserInterest.interest_type == InterestType(interest_type).value,
                )
                .order_by(UserInterest.score.desc(), UserInterest.interest_value)
                .limit(limit)
            )
            return list(rows)

    async def get_interest_summary(self, user_id: str) -> dict[str, list[UserInterest]]:
        return {
            "categories": await self.get_interests_by_type(user_id, InterestType.CATEGORY, 5),
            "hashtags": await self.get_interests_by_type(user_id, InterestType.HASHTAG, 10),
            "sellers": await self.get_interests_by_type(user_id, InterestType.SELLER, 5),
        }

    async def decay_interests(
        self,
        decay_factor: Optional[float] = None,
        floor: Optional[float] = None,
        idle_days: Optional[int] = None,
    ) -> tuple[int, int]:
        """
        Shrink idle interests and drop the ones that fall below the floor.
        Returns (decayed, deleted).
        """
        factor = decay_factor if decay_factor is not None else settings.interest_decay_factor
        floor = floor if floor is not None else settings.interest_floor
        idle = timedelta(days=idle_days if idle_days is not None else settings.interest_idle_days)
        cutoff = self._clock() - idle

        async with self._sessions.begin() as session:
            decayed = await session.execute(
                update(UserInterest)
                .where(UserInterest.last_interaction_at < cutoff, UserInterest.score >= floor)
                .values(score=UserInterest.score * factor)
                .execution_options(synchronize_session=False)
            )
            deleted = await session.execute(
                delete(UserInterest)
                .where(UserInterest.score < floor)
                .execution_options(synchronize_session=False)
            )
        logger.info(
            "Interest decay (factor=%.2f): %d decayed, %d deleted",
            factor, decayed.rowcount, deleted.rowcount,
        )
        return decayed.rowcount, deleted.rowcount
