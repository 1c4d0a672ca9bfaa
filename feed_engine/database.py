"""
Async SQLAlchemy engine + session factory for TiDB (MySQL-protocol).

TiDB is wire-compatible with MySQL 5.7, so we use the aiomysql driver.
The engine is created once at startup and reused across all requests.

Every engine component receives the session factory rather than a session,
so each operation opens its own transaction (`async with sessions.begin()`).
That transaction is the unit that keeps an edge write and its counter updates
all-or-nothing.
"""
import logging
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from feed_engine.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        echo=False,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.tidb_url)
AsyncSessionLocal = build_session_factory(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables if they don't exist (idempotent)."""
    # Import for side effect: registers every table on Base.metadata
    from feed_engine import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


# ─────────────────────────── Upserts ─────────────────────────────────────
# MySQL/TiDB speak ON DUPLICATE KEY UPDATE / INSERT IGNORE; SQLite and
# PostgreSQL speak ON CONFLICT. The statement is picked per dialect so the
# atomic increment happens inside the database, never as read-then-write.

def _dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


def build_insert(
    session: AsyncSession,
    model: Any,
    values: dict | list[dict],
    conflict_cols: Iterable[str],
    update: Optional[dict] = None,
):
    """
    Build an INSERT that either updates `update` columns or is skipped when a
    row with the same `conflict_cols` already exists.

    `update` values may reference the existing row, e.g.
    ``{"score": UserInterest.score + 0.5}``.
    """
    table = model.__table__
    dialect = _dialect_name(session)

    if dialect == "mysql":
        from sqlalchemy.dialects.mysql import insert as mysql_insert

        stmt = mysql_insert(table).values(values)
        if update:
            return stmt.on_duplicate_key_update(**update)
        return stmt.prefix_with("IGNORE")

    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        from sqlalchemy.dialects.sqlite import insert as dialect_insert

    stmt = dialect_insert(table).values(values)
    if update:
        return stmt.on_conflict_do_update(index_elements=list(conflict_cols), set_=update)
    return stmt.on_conflict_do_nothing(index_elements=list(conflict_cols))


async def upsert(
    session: AsyncSession,
    model: Any,
    values: dict | list[dict],
    conflict_cols: Iterable[str],
    update: Optional[dict] = None,
) -> int:
    """Execute `build_insert` and return the affected row count."""
    result = await session.execute(
        build_insert(session, model, values, conflict_cols, update)
    )
    return result.rowcount
