"""
Fleet Registry - Database Configuration
Async SQLAlchemy (PostgreSQL via asyncpg in production, SQLite via aiosqlite locally)
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all tables."""
    pass


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for a database URL."""
    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create missing tables (local development and tests; production uses Alembic)."""
    # Tables register themselves on Base.metadata when imported
    from fleet_registry.storage import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
