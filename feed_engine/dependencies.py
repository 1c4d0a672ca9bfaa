"""
Service wiring.

Every component is a stateless object built around the session factory and
the external clients. `build_services` assembles the graph once per process
(API lifespan, fan-out worker, Celery task); routers reach it through
`get_services`.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_engine.clients.content_client import ContentClient
from feed_engine.clients.kafka_producer import EventPublisher
from feed_engine.clients.redis_client import TrendingCache
from feed_engine.services.fanout import FanOutWriter
from feed_engine.services.feed_assembler import FeedAssembler
from feed_engine.services.interest import InterestModel
from feed_engine.services.relation_store import RelationStore
from feed_engine.services.retention import RetentionSweeper
from feed_engine.services.social_graph import SocialGraphService
from feed_engine.services.trending import TrendingComputer
from feed_engine.timeutil import Clock, utcnow


@dataclass
class Services:
    relations: RelationStore
    social: SocialGraphService
    fanout: FanOutWriter
    interests: InterestModel
    trending: TrendingComputer
    feed: FeedAssembler
    retention: RetentionSweeper


def build_services(
    sessions: async_sessionmaker[AsyncSession],
    content: ContentClient,
    publisher: Optional[EventPublisher] = None,
    cache: Optional[TrendingCache] = None,
    clock: Clock = utcnow,
) -> Services:
    relations = RelationStore(sessions, clock=clock)
    fanout = FanOutWriter(sessions, relations, clock=clock)
    interests = InterestModel(sessions, content, clock=clock)
    trending = TrendingComputer(sessions, content, cache=cache, clock=clock)
    return Services(
        relations=relations,
        social=SocialGraphService(relations, fanout, publisher),
        fanout=fanout,
        interests=interests,
        trending=trending,
        feed=FeedAssembler(
            relations, fanout, interests, trending, content, publisher=publisher, clock=clock
        ),
        retention=RetentionSweeper(relations, fanout, interests, trending),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the container built during app startup."""
    return request.app.state.services
