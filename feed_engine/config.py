"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "social_feed"
    # Full URL override (tests and local runs point this at SQLite)
    database_url: str = ""
    db_pool_size: int = 20
    db_max_overflow: int = 10

    @property
    def tidb_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    trending_cache_ttl: int = 300        # 5 min TTL for cached trending lists

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_post_events: str = "post-events"
    kafka_topic_feed_events: str = "feed-events"
    kafka_consumer_group: str = "feed-fanout-worker"

    # ── Content service (posts live there, not here) ───────────────────────
    content_service_url: str = "http://content-service:3017"
    content_service_timeout: float = 5.0

    # ── Feed ───────────────────────────────────────────────────────────────
    feed_max_age_days: int = 30          # feed entry expiry horizon
    feed_default_page_size: int = 20
    feed_max_page_size: int = 50

    # ── Interest model ─────────────────────────────────────────────────────
    interest_decay_factor: float = 0.9
    interest_floor: float = 0.01         # rows below this are deleted
    interest_idle_days: int = 7          # only idle interests decay
    interest_top_n: int = 20

    # ── Trending ───────────────────────────────────────────────────────────
    trending_top_k: int = 100
    hashtag_top_k: int = 50
    trending_retention_days: int = 7
    trending_default_window: str = "daily"

    # ── Background jobs (Celery beat) ──────────────────────────────────────
    celery_broker_url: str = "redis://redis:6379/1"
    enable_background_jobs: bool = True

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feed-service"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
