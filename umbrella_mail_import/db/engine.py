"""Async SQLAlchemy engine and session factory for the import store."""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..config import DatabaseConfig
from .models import Base


def _make_engine(config: DatabaseConfig) -> AsyncEngine:
    kwargs: dict = {"echo": config.echo}
    # In-memory sqlite pools reject pool sizing arguments.
    if make_url(config.url).get_backend_name() != "sqlite":
        kwargs.update(pool_size=config.pool_size, max_overflow=config.max_overflow)
    return create_async_engine(config.url, **kwargs)


def _make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class DatabaseEngine:
    """Holds the engine and its session factory.

    Created once at startup and shared by every repository.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.engine = _make_engine(config)
        self.session = _make_session_factory(self.engine)

    async def create_all(self) -> None:
        """Create any missing tables (local development and tests)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()
