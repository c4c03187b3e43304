"""Database engine, session factory, and base model.

The coordinator shares its database with the agent registry and the agents'
result writers: aiosqlite for local dev, asyncpg against PostgreSQL in
production. Every poll in ``services.agent_wait`` opens a short session of its
own.
"""

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool

from coordinator.config import settings

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=30000",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with the pool policy for the URL's backend.

    - in-memory SQLite: a single shared connection (StaticPool)
    - file SQLite: a fresh connection per session (NullPool) in WAL mode
    - PostgreSQL: a small pre-pinged pool
    """
    if not url.startswith("sqlite"):
        return create_async_engine(
            url, echo=echo, pool_size=5, max_overflow=10, pool_pre_ping=True
        )

    in_memory = ":memory:" in url
    new_engine = create_async_engine(
        url,
        echo=echo,
        poolclass=StaticPool if in_memory else NullPool,
        connect_args={"timeout": 60, "check_same_thread": False},
    )

    @event.listens_for(new_engine.sync_engine, "connect")
    def _apply_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        for pragma in SQLITE_PRAGMAS:
            if in_memory and "journal_mode" in pragma:
                continue
            cursor.execute(pragma)
        cursor.close()

    return new_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency for the read endpoints.

    Writes go through the orchestrator's own sessions, so this one is never
    committed; anything left open is rolled back on close.
    """
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create missing tables for dev and first runs. Production uses Alembic."""
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


async def dispose_db() -> None:
    await engine.dispose()
