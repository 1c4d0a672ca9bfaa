"""
Feed Service API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create tables if not present (TiDB)
  3. Start the content-service HTTP client
  4. Connect to Redis (trending cache; optional)
  5. Start the Kafka producer (relation / feed events)
  6. Wire the engine components onto app.state
  7. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from feed_engine.config import settings
from feed_engine.database import AsyncSessionLocal, init_db
from feed_engine.dependencies import build_services
from feed_engine.errors import FeedEngineError
from feed_engine.telemetry import setup_tracing, instrument_app
from feed_engine.clients.content_client import ContentClient
from feed_engine.clients.kafka_producer import EventPublisher
from feed_engine.clients.redis_client import TrendingCache, init_redis
from feed_engine.routers import feed, trending, users

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Feed Service (env=%s)", settings.environment)

    await init_db()

    content = ContentClient()
    await content.start()

    redis = None
    cache = None
    try:
        redis = await init_redis()
        cache = TrendingCache(redis)
    except Exception as exc:
        logger.warning("Redis unavailable (%s) — trending served from TiDB only", exc)

    publisher = EventPublisher()
    try:
        await publisher.start()
    except Exception as exc:
        logger.warning("Kafka unavailable (%s) — relation events will be dropped", exc)

    app.state.services = build_services(AsyncSessionLocal, content, publisher, cache)
    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await publisher.stop()
    await content.stop()
    if redis is not None:
        await redis.aclose()


app = FastAPI(
    title="Feed Service",
    description=(
        "Social feed engine: fan-out-on-write following feed, interest-based "
        "suggestions and trending content blended into ranked feeds."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(FeedEngineError)
async def feed_engine_error_handler(request: Request, exc: FeedEngineError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(trending.router, prefix="/trending", tags=["Trending"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
