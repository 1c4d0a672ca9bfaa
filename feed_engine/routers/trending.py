"""
Trending endpoints:
  GET /trending/posts?window=hourly|daily|weekly|monthly
  GET /trending/hashtags
"""
from fastapi import APIRouter, Depends, Query

from feed_engine.config import settings
from feed_engine.dependencies import Services, get_services
from feed_engine.models import WindowType
from feed_engine.schemas import TrendingHashtagResponse, TrendingPost

router = APIRouter()


@router.get("/posts", response_model=list[TrendingPost])
async def trending_posts(
    window: WindowType = Query(WindowType(settings.trending_default_window)),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    return await services.trending.get_trending_posts(window, limit, offset)


@router.get("/hashtags", response_model=list[TrendingHashtagResponse])
async def trending_hashtags(
    limit: int = Query(20, ge=1, le=50),
    services: Services = Depends(get_services),
):
    return await services.trending.get_trending_hashtags(limit)
