"""Async database utilities and session management."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseConfig
from .logging_setup import get_logger
from .models import Base

LOGGER = get_logger(__name__)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()


async def create_engine_with_retries(config: DatabaseConfig) -> AsyncEngine:
    """Create an async engine and verify connectivity, backing off between attempts."""

    delay = config.retry_backoff_seconds
    attempts = 0
    last_error: OperationalError | None = None

    while attempts <= config.connect_retries:
        engine = create_async_engine(config.url, echo=config.echo, pool_pre_ping=True)
        _enable_sqlite_foreign_keys(engine.sync_engine)
        try:
            async with engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            return engine
        except OperationalError as error:
            await engine.dispose()
            last_error = error
            attempts += 1
            if attempts > config.connect_retries:
                break
            LOGGER.warning(
                "database.connect_failed",
                attempt=attempts,
                max_retries=config.connect_retries,
                retry_in_seconds=delay,
            )
            await asyncio.sleep(delay)
            delay *= 2

    assert last_error is not None
    raise last_error


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory for the given engine."""

    return async_sessionmaker(bind=engine, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Provide a transactional scope around a series of operations."""

    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_schema(engine: AsyncEngine) -> None:
    """Create every table known to the ORM metadata if missing."""

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    LOGGER.info("database.schema_ready", tables=len(Base.metadata.tables))


__all__ = [
    "create_engine_with_retries",
    "create_session_factory",
    "init_schema",
    "session_scope",
]
