# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine for the budget ledger. Only SqlBudgetStore talks
# to the database, and every caller of the store runs on an event loop
# (agents directly, Celery tasks through the worker loop), so there is no sync
# engine.
#
# The engine is created lazily: processes running with the in-memory
# budget store never open a connection pool or import the driver.
#
# SESSION LIFECYCLE:
#   async with get_session() as session:
#       session.add(...)
#   # commits on exit, rolls back on exception
# =============================================================================

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobagents.config import settings

_async_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Lazily create and cache the async engine.

    - echo=settings.debug: log SQL statements in development.
    - pool_size / max_overflow: small pool, budget writes are short.
    """
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _async_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Lazily create the session factory.

    expire_on_commit=False: loaded rows stay readable after commit without
    another round-trip, which would fail outside the session in async code.
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Session scope: commit on success, rollback on exception."""
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
