"""TTL cache for artist weekly aggregates, one entry per (entity, region)."""
from __future__ import annotations

import asyncio
import datetime as dt
import weakref
from dataclasses import dataclass
from typing import Awaitable, Callable

from .collaborators import CacheStore
from .errors import UpstreamFailure
from .logging_setup import get_logger
from .records import CacheEntry, Region, WeeklyMetricComparison

LOGGER = get_logger(__name__)

DEFAULT_TTL = dt.timedelta(hours=12)

Refresh = Callable[[], Awaitable[WeeklyMetricComparison]]
Clock = Callable[[], dt.datetime]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _check_ttl(ttl: dt.timedelta, *, allow_zero: bool = False) -> dt.timedelta:
    if ttl < dt.timedelta(0) or (ttl == dt.timedelta(0) and not allow_zero):
        raise ValueError("ttl must be positive")
    return ttl


@dataclass(frozen=True, slots=True)
class CacheLookup:
    entry: CacheEntry
    from_cache: bool
    stale: bool = False


class MetricsCache:
    """Serve stored aggregates while fresh and recompute them once expired.

    Refreshes for the same key are serialised through a per-key lock; the
    stored entry is only ever replaced as a whole after a successful
    recomputation.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        ttl: dt.timedelta = DEFAULT_TTL,
        serve_stale_on_error: bool = True,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.ttl = _check_ttl(ttl)
        self.serve_stale_on_error = serve_stale_on_error
        self.clock = clock
        # Entries disappear once no refresh holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[tuple[int, Region], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: tuple[int, Region]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get_or_refresh(
        self,
        entity_id: int,
        region: Region,
        refresh: Refresh,
        *,
        ttl: dt.timedelta | None = None,
    ) -> CacheLookup:
        """Return the stored entry for the key or recompute it through ``refresh``.

        A per-call ``ttl`` overrides the configured one; ``timedelta(0)`` always
        recomputes.
        """

        ttl = self.ttl if ttl is None else _check_ttl(ttl, allow_zero=True)
        current = await self.store.load_entry(entity_id, region)
        if current is not None and current.is_fresh(self.clock(), ttl):
            return CacheLookup(entry=current, from_cache=True)

        lock = self._lock_for((entity_id, region))
        async with lock:
            # Another refresh may have completed while this one waited.
            current = await self.store.load_entry(entity_id, region)
            if current is not None and current.is_fresh(self.clock(), ttl):
                return CacheLookup(entry=current, from_cache=True)

            try:
                comparison = await refresh()
            except UpstreamFailure:
                if current is not None and self.serve_stale_on_error:
                    LOGGER.warning(
                        "cache.refresh_failed_serving_stale",
                        entity_id=entity_id,
                        region=region.value,
                        computed_at=current.computed_at.isoformat(),
                        exc_info=True,
                    )
                    return CacheLookup(entry=current, from_cache=True, stale=True)
                raise

            entry = CacheEntry(
                entity_id=entity_id,
                region=region,
                this_week=comparison.this_week,
                last_week=comparison.last_week,
                percent_change=comparison.percent_change,
                computed_at=self.clock(),
            )
            await self.store.replace_entry(entry)
            LOGGER.info(
                "cache.refreshed",
                entity_id=entity_id,
                region=region.value,
                source=comparison.source,
                replaced=current is not None,
            )
            return CacheLookup(entry=entry, from_cache=False)


__all__ = ["CacheLookup", "DEFAULT_TTL", "MetricsCache", "utcnow"]
