"""Assemble a database-backed :class:`ReactivityEngine` from configuration."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from .config import AppConfig
from .database import create_engine_with_retries, create_session_factory, init_schema
from .repositories import SqlArtistRegistry, SqlCacheStore, SqlCatalog, SqlMetricsSource, SqlReactivityStore
from .service import ReactivityEngine


@asynccontextmanager
async def open_engine(config: AppConfig, *, create_schema: bool = False) -> AsyncIterator[ReactivityEngine]:
    db_engine = await create_engine_with_retries(config.database)
    try:
        if create_schema:
            await init_schema(db_engine)
        session_factory = create_session_factory(db_engine)
        options = {
            "timeout_seconds": config.database.fetch_timeout_seconds,
            "retry_config": config.retry,
        }
        yield ReactivityEngine(
            catalog=SqlCatalog(session_factory, **options),
            metrics=SqlMetricsSource(session_factory, **options),
            registry=SqlArtistRegistry(session_factory, **options),
            cache_store=SqlCacheStore(session_factory, **options),
            sink=SqlReactivityStore(session_factory, **options),
            config=config,
        )
    finally:
        await db_engine.dispose()


__all__ = ["open_engine"]
