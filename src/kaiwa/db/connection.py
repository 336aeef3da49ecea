"""
Database connection and session management for the conversation engine.

Uses SQLAlchemy 2.0 async engine (asyncpg in deployments, aiosqlite locally).
"""

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from kaiwa.models import Base
from kaiwa.settings import get_settings

# Load environment variables
load_dotenv()


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the global async database engine.

    Returns:
        AsyncEngine configured from KAIWA_DATABASE_URL
    """
    global _engine

    if _engine is None:
        settings = get_settings()
        options: dict = {"echo": settings.sql_echo, "pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            options.update(pool_size=5, max_overflow=10)
        _engine = create_async_engine(settings.database_url, **options)

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the global async session factory.

    Returns:
        Async session factory for creating database sessions
    """
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Allow accessing attributes after commit
        )

    return _session_factory


async def create_all() -> None:
    """Create every table that does not exist yet (local development)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engine() -> None:
    """
    Close the database engine and release all connections.

    Call this during application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
