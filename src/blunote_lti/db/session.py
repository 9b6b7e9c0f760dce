"""
Database Session Management

Provides the async SQLAlchemy engine and session factory used by the
database-backed login state store.
"""

from __future__ import annotations

from typing import Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base


def create_session_factory(
    database_url: str,
    *,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create an async engine and its session factory.

    Usage:
        engine, factory = create_session_factory(settings.database_url)
        store = SqlStateStore(factory)
    """
    engine = create_async_engine(
        database_url,
        echo=echo,  # Set True for SQL debugging
        pool_pre_ping=True,
    )

    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables. Deployments with migrations can skip this."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
