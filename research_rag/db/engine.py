# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy everywhere.
# The whole RAG core is asyncio-based (remote API calls, throttled
# background embedding), so every query goes through an AsyncSession on
# the asyncpg driver. There is no sync engine.
#
# Celery workers are synchronous, so each task drives the async pipeline
# with asyncio.run(), which creates and closes a fresh event loop per task.
# Pooled asyncpg connections are bound to the loop that opened them, so
# worker code must NOT reuse the module-level pooled engine across tasks.
# create_worker_session_factory() builds a NullPool engine for that case:
# every session opens a new connection and closes it on exit.
#
# COMMIT POLICY:
# PgDatastore opens one short session per operation and commits it
# explicitly before the session closes.
# =============================================================================

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from research_rag.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - pool_size=5 / max_overflow=10: fine for a single API process. Tune
#   based on expected concurrency.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=5,
    max_overflow=10,
)

# ---------------------------------------------------------------------------
# Session Factory
# ---------------------------------------------------------------------------
# - expire_on_commit=False: Prevents SQLAlchemy from marking loaded objects
#   as expired after commit. Without this, reading an attribute after
#   commit would trigger a lazy load, which fails in async context.
# ---------------------------------------------------------------------------
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def create_worker_engine(database_url: str | None = None) -> AsyncEngine:
    """Engine without connection pooling, safe to use under asyncio.run()."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo,
        poolclass=NullPool,
    )


def create_worker_session_factory(
    engine: AsyncEngine | None = None,
) -> async_sessionmaker[AsyncSession]:
    """Session factory for Celery tasks (one event loop per task)."""
    return async_sessionmaker(
        bind=engine or create_worker_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )

