"""SQLAlchemy async database setup and engine configuration."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import get_settings


def create_db_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create and configure async SQLAlchemy engine.

    Args:
        database_url: Overrides ``DATABASE_URL`` from settings.

    Returns:
        Async SQLAlchemy engine instance.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO)
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise every connection sees its own empty database.
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    elif not url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_recycle=1800)
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create async session factory.

    Args:
        engine: SQLAlchemy async engine instance.

    Returns:
        Async sessionmaker instance.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create the document tables.

    This should be called once at application startup.
    """
    from db.base import Base
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections.

    This should be called at application shutdown.
    """
    await engine.dispose()
