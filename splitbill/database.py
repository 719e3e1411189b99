"""
Database Connection Module
Handles the session store's database connection using the SQLAlchemy async engine.

The engine is created on first use, so importing the package does not need
a database driver for development mode.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from splitbill.core.config import get_settings


# Base class for all our models
class Base(DeclarativeBase):
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the async engine for DATABASE_URL."""
    settings = get_settings()
    options = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=5,  # Connection pool size
            max_overflow=10,  # Extra connections when pool is full
            pool_pre_ping=True,
        )
    return create_async_engine(settings.database_url, **options)


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the engine."""
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    from splitbill import models  # noqa: F401  (registers the tables)

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections at shutdown."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
    get_session_maker.cache_clear()
    get_engine.cache_clear()
