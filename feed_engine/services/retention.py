"""
Retention sweeper — the physical cleanup side of lazily-expired data.

Every read path already ignores expired feed entries and mutes; these sweeps
only reclaim storage. Each is idempotent, so a skipped or repeated run is
harmless.
"""
import logging
from typing import Optional

from feed_engine.config import settings
from feed_engine.services.fanout import FanOutWriter
from feed_engine.services.interest import InterestModel
from feed_engine.services.relation_store import RelationStore
from feed_engine.services.trending import TrendingComputer

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(
        self,
        relations: RelationStore,
        fanout: FanOutWriter,
        interests: InterestModel,
        trending: TrendingComputer,
    ) -> None:
        self._relations = relations
        self._fanout = fanout
        self._interests = interests
        self._trending = trending

    async def sweep_expired_feed(self) -> int:
        removed = await self._fanout.purge_expired()
        logger.info("Expired feed sweep: %d entries removed", removed)
        return removed

    async def sweep_old_feed(self, retention_days: Optional[int] = None) -> int:
        days = settings.feed_max_age_days if retention_days is None else retention_days
        removed = await self._fanout.purge_older_than(days)
        logger.info("Old feed sweep (>%d days): %d entries removed", days, removed)
        return removed

    async def decay_interests(self) -> tuple[int, int]:
        return await self._interests.decay_interests()

    async def cleanup_trending(self) -> tuple[int, int]:
        return await self._trending.cleanup_old_trending()

    async def sweep_expired_mutes(self) -> int:
        removed = await self._relations.purge_expired_mutes()
        logger.info("Expired mute sweep: %d mutes removed", removed)
        return removed
