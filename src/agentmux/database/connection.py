"""Database connection management for Agentmux.

Factory functions for the SQLAlchemy async engine and session factory,
configured from DatabaseConfig. The default URL uses aiosqlite so the
execution record store needs no server.

Example usage:
    >>> engine = get_engine(DatabaseConfig(url="sqlite+aiosqlite:///agentmux.db"))
    >>> SessionFactory = get_session_factory(engine)
    >>> await init_db(engine)
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from agentmux.config import DatabaseConfig
from agentmux.database.models.base import Base


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration."""
    return create_async_engine(config.url, echo=config.echo)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Sessions use expire_on_commit=False so attributes stay readable after
    commit without lazy loads, which async sessions cannot do implicitly.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
