"""
Database Connection Management
Async SQLAlchemy engine and session factory for the API process
Source: https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
Verified: 2025-11-02

Services never share a session: each operation opens its own from the
factory (see sha_claims.services.base.transaction). Celery tasks build a
short-lived engine per task instead of using the process-wide one.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from sha_claims.api.config import get_settings
from sha_claims.utils.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Process-wide engine, created on first use.

    Source: https://docs.sqlalchemy.org/en/20/core/pooling.html#setting-pool-recycle
    """
    global _engine

    if _engine is None:
        settings = get_settings()
        logger.info(f"Connecting to {settings.database_url.split('@')[-1]}")

        if settings.is_testing:
            _engine = create_async_engine(settings.database_url, poolclass=NullPool)
        else:
            _engine = create_async_engine(
                settings.database_url,
                echo=settings.DEBUG,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_pre_ping=True,
            )

    return _engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory every service is built around."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Services return ORM objects after commit
        autoflush=False,
    )


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker

    if _session_maker is None:
        _session_maker = create_session_maker(get_engine())
    return _session_maker


async def close_db_connection() -> None:
    """Dispose the process-wide engine on application shutdown."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
        logger.info("Database engine disposed")


async def check_db_connection(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """
    Run a trivial query through `session_factory`.

    Returns:
        True when the database answered, False otherwise
    """
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
