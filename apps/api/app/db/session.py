from __future__ import annotations

import os
from collections.abc import AsyncIterator

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

load_dotenv()


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _raw_database_url() -> str:
    # API runtime prefers the pooled DSN; migrations and the worker use DATABASE_URL.
    database_url = os.getenv("DATABASE_POOL_URL") or os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_POOL_URL or DATABASE_URL must be set for DB sessions.")
    return database_url


def to_async_driver(dsn: str) -> str:
    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql+psycopg://"):
        return dsn.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    if dsn.startswith("postgresql://"):
        return dsn.replace("postgresql://", "postgresql+asyncpg://", 1)
    if dsn.startswith("sqlite+aiosqlite://"):
        return dsn
    if dsn.startswith("sqlite:///"):
        return dsn.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    raise RuntimeError("DATABASE_URL must use a PostgreSQL or SQLite DSN.")


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = to_async_driver(_raw_database_url())
        if url.startswith("sqlite"):
            _engine = create_async_engine(url, connect_args={"timeout": 10})
        else:
            _engine = create_async_engine(
                url,
                pool_pre_ping=True,
                pool_size=5,
                pool_timeout=10,
                connect_args={"statement_cache_size": 0, "command_timeout": 10},
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
            autocommit=False,
        )
    return _session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    session_factory = get_session_factory()
    async with session_factory() as session:
        yield session
