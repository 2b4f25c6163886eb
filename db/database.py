"""Database engine and session management for the merge engine.

Any SQLAlchemy async URL works. PostgreSQL (asyncpg) gets a pooled engine
configured from settings:
- DB_POOL_SIZE: Persistent connections (default: 5)
- DB_MAX_OVERFLOW: Extra connections under load (default: 5)
- DB_POOL_RECYCLE: Connection recycle time in seconds (default: 3600)

SQLite (aiosqlite) is used for local runs and tests. The pysqlite driver
manages transactions on its own and silently breaks SAVEPOINT and rollback
semantics; the listeners in ``_take_over_sqlite_transactions`` hand that
control back to SQLAlchemy, as recommended in the SQLAlchemy SQLite dialect
documentation.

There are no retries here: a failed query surfaces immediately and the
caller's transaction rolls back.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from config import get_settings
from utils.logging import get_logger

logger = get_logger(__name__)

engine: AsyncEngine | None = None
async_session_maker: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for SQLAlchemy declarative models."""

    pass


def _take_over_sqlite_transactions(async_engine: AsyncEngine) -> None:
    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        # Stop pysqlite from emitting its own BEGIN, and enforce FK cascades
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine suited to the database behind ``url``."""
    if url.startswith("sqlite"):
        kwargs = {"echo": echo}
        if ":memory:" in url or url.endswith("sqlite+aiosqlite://"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        async_engine = create_async_engine(url, **kwargs)
        _take_over_sqlite_transactions(async_engine)
        return async_engine

    settings = get_settings()
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle,
    )


def create_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(async_engine: AsyncEngine) -> None:
    # Register the mapped tables on Base.metadata before create_all
    import models.tables  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_database(url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Initialize the module-level engine and session factory, creating tables."""
    global engine, async_session_maker
    settings = get_settings()
    url = url or settings.database_url

    logger.info(
        "Initializing database",
        extra={"database_url": settings._mask_url(url)},
    )

    engine = create_engine_for(url, echo=settings.debug)
    async_session_maker = create_session_maker(engine)
    await create_tables(engine)

    logger.info("Database initialized")
    return async_session_maker


async def close_database() -> None:
    """Dispose of the module-level engine."""
    global engine, async_session_maker
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
    engine = None
    async_session_maker = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    if async_session_maker is None:
        raise RuntimeError("Database not initialized; call init_database() first")

    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
