"""Database client and connection management with SQLAlchemy."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from matcha_auth.config.settings import settings
from matcha_auth.database.base import Base

logger = logging.getLogger(__name__)

# Global SQLAlchemy engine
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get the SQLAlchemy async engine instance."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the SQLAlchemy async session factory."""
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


def create_engine_for_url(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, enabling foreign keys on SQLite.

    SQLite ignores ON DELETE CASCADE unless the pragma is set per connection.
    """
    engine = create_async_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, _):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def bind_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Install ``engine`` as the global engine and return a session factory for it."""
    global _engine, _async_session_factory

    _engine = engine
    _async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return _async_session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Get an async database session.

    Commits when the block exits normally and rolls back on error.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(User))
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables known to the ORM metadata."""
    # Import models so they register on Base.metadata
    from matcha_auth.features.auth import models as _auth_models  # noqa: F401
    from matcha_auth.features.user import action_tokens as _action_tokens  # noqa: F401
    from matcha_auth.features.user import models as _user_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_db() -> bool:
    """Return True if the database answers a trivial query."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")
        return False


async def init_db() -> None:
    """Create the engine from settings, bind the session factory and check connectivity.

    Tables are only created here when ``database_auto_create`` is set.
    """
    try:
        logger.info(f"Connecting to database at {settings.database_url.split('@')[-1]}")

        engine_kwargs: dict = {"echo": settings.database_echo}
        if not settings.database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_recycle=settings.database_pool_recycle,
                pool_pre_ping=True,
            )

        engine = create_engine_for_url(settings.database_url, **engine_kwargs)
        bind_session_factory(engine)

        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        if settings.database_auto_create:
            await create_tables(engine)

        logger.info("Database initialization complete")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db() -> None:
    """Close database connection gracefully."""
    global _engine, _async_session_factory

    if _engine is not None:
        logger.info("Closing database connection")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")
