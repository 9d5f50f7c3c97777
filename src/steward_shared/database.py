"""Async engine and session helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel


def normalize_database_url(url: str) -> str:
    """Force the asyncpg driver on plain postgres URLs."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix) :]
    return url


def create_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create async engine with pool defaults suited to a single bot process.

    Args:
        database_url: PostgreSQL connection URL (driver is coerced to asyncpg)
        **kwargs: Additional engine arguments

    Returns:
        Configured AsyncEngine
    """
    defaults = {
        "pool_size": kwargs.pop("pool_size", 5),
        "max_overflow": kwargs.pop("max_overflow", 10),
        "pool_pre_ping": kwargs.pop("pool_pre_ping", True),
        "echo": kwargs.pop("echo", False),
    }
    defaults.update(kwargs)

    return create_async_engine(normalize_database_url(database_url), **defaults)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def check_connection(engine: AsyncEngine) -> None:
    """Round-trip a trivial query; raises if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_db(engine: AsyncEngine) -> None:
    """Create the schema directly (development only; production uses Alembic)."""
    from . import models  # noqa: F401  registers tables on SQLModel.metadata

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(SQLModel.metadata.create_all)
