"""Database session management for Review Automations.

Provides async database connections using SQLAlchemy 2.0 async API.
The engine and its workers are long-running and concurrent, so repositories
take the session factory and open one short session per operation.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from packages.core.src.config import get_config

from .models import Base

# Local development fallback when RA_POSTGRES_URL is not set
SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./review_automations.db"

# Engine will be created lazily
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def resolve_database_url(url: str | None) -> str:
    """Normalize a configured URL to an async driver URL."""
    if not url:
        return SQLITE_FALLBACK_URL
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        config = get_config()
        if config.is_production and not config.postgres_url:
            raise RuntimeError(
                "Database URL not configured. Set RA_POSTGRES_URL environment variable."
            )

        database_url = resolve_database_url(config.postgres_url)
        if database_url.startswith("sqlite"):
            _engine = create_async_engine(database_url, echo=False)
        else:
            _engine = create_async_engine(
                database_url,
                echo=False,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,  # Verify connections before use
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the async session factory."""
    global AsyncSessionLocal
    if AsyncSessionLocal is None:
        engine = get_engine()
        AsyncSessionLocal = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return AsyncSessionLocal


async def init_db() -> None:
    """Initialize database tables.

    Creates all tables if they don't exist.
    In production, use Alembic migrations instead.
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session.

    Usage:
        async with get_db() as db:
            automation = await db.get(Automation, automation_id)
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
