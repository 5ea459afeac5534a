"""Async database engine management for SQLAlchemy 2.0+.

Uses PostgreSQL with asyncpg in production; any async SQLAlchemy URL
(e.g. sqlite+aiosqlite) works for development and tests. Connection
pooling lives entirely inside the engine.
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gatekeeper.app.core.config import settings
from gatekeeper.app.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_async_engine(database_url: str | None = None) -> AsyncEngine:
    """Get or create the async database engine.

    Cached with lru_cache so the whole process shares one pool.

    Args:
        database_url: Optional database URL. Uses settings if not provided.

    Returns:
        AsyncEngine instance
    """
    url = database_url or settings.database_url

    if "sqlite" in url.lower():
        engine = create_async_engine(url, echo=False)
        logger.info("Created SQLite async engine")
        return engine

    engine = create_async_engine(
        url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        connect_args={"command_timeout": settings.db_command_timeout},
    )
    logger.info(
        f"Created PostgreSQL async engine (pool_size={settings.db_pool_size}, "
        f"max_overflow={settings.db_max_overflow}, "
        f"pool_timeout={settings.db_pool_timeout}s)"
    )
    return engine


def get_async_session_maker(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Build a session maker bound to engine (the shared engine by default)."""
    return async_sessionmaker(
        bind=engine or get_async_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def close_async_engine() -> None:
    """Dispose the shared engine.

    Call this on application shutdown to release database connections.
    """
    if get_async_engine.cache_info().currsize == 0:
        return

    engine = get_async_engine()
    try:
        await engine.dispose()
        logger.debug("Async engine disposed successfully")
    except RuntimeError:
        # Pool connections bound to an event loop that is already closed
        logger.debug("Engine dispose encountered RuntimeError (event loop mismatch)")

    get_async_engine.cache_clear()
