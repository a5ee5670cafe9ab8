"""Database engine and async session factory."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from carebook.config import get_settings
from carebook.core.models import Base

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def get_database_url() -> str:
    return get_settings().database_url


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite's deferred BEGIN lets two writers both hold a read lock and then
    deadlock on upgrade; BEGIN IMMEDIATE serialises them on the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine configured for the backend in *url*."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(url, echo=echo)
        _use_immediate_transactions(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache
def _get_engine() -> AsyncEngine:
    settings = get_settings()
    return create_engine_from_url(get_database_url(), echo=settings.database_echo)


@lru_cache
def get_session_factory() -> SessionFactory:
    return create_session_factory(_get_engine())


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables (dev only; production uses migrations)."""
    engine = engine or _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def ping(session_factory: SessionFactory) -> bool:
    """Round-trip a trivial query; used by readiness checks."""
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
    return True
