"""High-level operations exposed to API, report and CLI callers."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .aggregation import Aggregator
from .batch import BatchSummary, ReactivityBatch, compute_song_reactivity, utc_today
from .cache import CacheLookup, MetricsCache, utcnow
from .collaborators import ArtistRegistry, CacheStore, CatalogSource, MetricsSource, ReactivitySink
from .config import AppConfig
from .logging_setup import get_logger
from .reactivity import ReactivityScorer
from .records import (
    ArtistIdentity,
    ArtistSong,
    CacheEntry,
    DailyPoint,
    ReactivityResult,
    Region,
    SocialLink,
    StoredReactivity,
    TrackedArtist,
)
from .references import parse_artist_url, parse_sound_url
from .resolver import IdentifierResolver, IdentityCache
from .workers import run_bounded

LOGGER = get_logger(__name__)

DEFAULT_TOP_LIMIT = 7


@dataclass(frozen=True, slots=True)
class ArtistMetrics:
    identity: ArtistIdentity
    metrics: CacheEntry
    from_cache: bool
    stale: bool = False


@dataclass(slots=True)
class LinkReport:
    """Per-sound outcome of a linking request."""

    linked: list[SocialLink] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)


class SoundNotFound(LookupError):
    pass


class ReactivityEngine:
    """Wire the resolver, aggregator, cache, scorer and batch over one set of collaborators."""

    def __init__(
        self,
        *,
        catalog: CatalogSource,
        metrics: MetricsSource,
        registry: ArtistRegistry,
        cache_store: CacheStore,
        sink: ReactivitySink,
        config: AppConfig | None = None,
        identity_cache: IdentityCache | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
        today: Callable[[], dt.date] = utc_today,
    ) -> None:
        self.config = config or AppConfig()
        self.catalog = catalog
        self.metrics = metrics
        self.registry = registry
        self.sink = sink
        self.resolver = IdentifierResolver(
            catalog,
            identity_cache if identity_cache is not None else IdentityCache(self.config.cache.identity_cache_size),
        )
        self.aggregator = Aggregator(metrics)
        self.cache = MetricsCache(
            cache_store,
            ttl=self.config.cache.ttl,
            serve_stale_on_error=self.config.cache.serve_stale_on_error,
            clock=clock,
        )
        self.scorer = ReactivityScorer.from_config(self.config.reactivity)
        self.batch = ReactivityBatch(
            registry,
            metrics,
            self.scorer,
            sink,
            regions=self.config.batch.regions,
            window_months=self.config.reactivity.window_months,
            max_concurrency=self.config.batch.max_concurrency,
            today=today,
        )

    def _region(self, region: Region | str | None) -> Region:
        if region is None:
            return self.config.reactivity.region
        return Region.parse(region)

    async def resolve_artist(self, artist_ref: str) -> ArtistIdentity | None:
        """Resolve an artist URL or bare external id to its catalog identity."""

        external_id = parse_artist_url(artist_ref) if "://" in artist_ref else artist_ref.strip()
        if not external_id:
            LOGGER.info("service.invalid_artist_reference", artist_ref=artist_ref)
            return None
        return await self.resolver.resolve(external_id)

    async def get_artist_metrics(
        self, artist_ref: str, region: Region | str | None = None
    ) -> ArtistMetrics | None:
        region = self._region(region)
        identity = await self.resolve_artist(artist_ref)
        if identity is None:
            return None

        async def _refresh():
            song_ids, _ = await self.resolver.resolve_unified_song_ids(identity)
            return await self.aggregator.aggregate(
                song_ids, region, account_id=identity.internal_account_id
            )

        lookup: CacheLookup = await self.cache.get_or_refresh(
            identity.internal_account_id, region, _refresh
        )
        return ArtistMetrics(
            identity=identity,
            metrics=lookup.entry,
            from_cache=lookup.from_cache,
            stale=lookup.stale,
        )

    async def get_song_reactivity(
        self,
        artist_id: int,
        unified_song_id: int,
        region: Region | str | None,
        start: dt.date,
        end: dt.date,
    ) -> ReactivityResult:
        if end < start:
            raise ValueError("end date precedes start date")
        return await compute_song_reactivity(
            self.registry,
            self.metrics,
            self.scorer,
            artist_id,
            unified_song_id,
            self._region(region),
            start,
            end,
        )

    async def run_reactivity_batch(self) -> BatchSummary:
        return await self.batch.run_all()

    async def get_artist_streaming_timeseries(
        self,
        artist_ref: str,
        region: Region | str | None,
        start: dt.date,
        end: dt.date,
    ) -> list[DailyPoint]:
        """Weekly streaming totals across the artist's mapped songs."""

        identity = await self.resolve_artist(artist_ref)
        if identity is None:
            return []
        song_ids, _ = await self.resolver.resolve_unified_song_ids(identity)
        if not song_ids:
            return []
        return await self.metrics.fetch_weekly_streaming_series(song_ids, self._region(region), start, end)

    async def _linked_sound_ids(self, artist_id: int) -> list[int]:
        links = await self.registry.list_social_links(artist_id)
        return list(dict.fromkeys(link.sound_id for link in links))

    async def get_artist_social_timeseries(
        self, artist_id: int, start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        sound_ids = await self._linked_sound_ids(artist_id)
        if not sound_ids:
            return []
        return await self.metrics.fetch_daily_social_activity(sound_ids, start, end)

    async def get_artist_social_timeseries_by_sound(
        self, artist_id: int, start: dt.date, end: dt.date
    ) -> dict[int, list[DailyPoint]]:
        sound_ids = await self._linked_sound_ids(artist_id)
        if not sound_ids:
            return {}
        return dict(await self.metrics.fetch_daily_social_activity_by_sound(sound_ids, start, end))

    async def track_artist(self, artist_ref: str) -> TrackedArtist | None:
        """Find or create the tracked artist and refresh its mapped song list."""

        identity = await self.resolve_artist(artist_ref)
        if identity is None:
            return None
        artist = await self.registry.create_artist(identity)

        refs = await self.resolver.list_track_refs(identity.internal_account_id)
        mapped = [ref for ref in refs if ref.is_mapped]
        details = await self.catalog.fetch_track_details([ref.internal_track_id for ref in mapped])
        titles = {detail.track_id: detail.title for detail in details}
        songs: dict[int, ArtistSong] = {}
        for ref in mapped:
            songs.setdefault(
                ref.unified_song_id,
                ArtistSong(
                    unified_song_id=ref.unified_song_id,
                    track_id=ref.internal_track_id,
                    name=titles.get(ref.internal_track_id),
                ),
            )
        await self.registry.replace_songs(artist.id, list(songs.values()))
        LOGGER.info(
            "service.artist_tracked",
            artist_id=artist.id,
            songs=len(songs),
            tracks=len(refs),
            unmapped=len(refs) - len(mapped),
        )
        return artist

    async def link_social_sounds(
        self,
        artist_id: int,
        sound_ids: Iterable[int],
        unified_song_id: int | None = None,
    ) -> LinkReport:
        """Link each sound to the artist independently and report every outcome."""

        async def _link(sound_id: int) -> SocialLink:
            details = await self.catalog.fetch_sound_details(sound_id)
            if details is None:
                raise SoundNotFound(f"sound {sound_id} not found")
            isrc = None
            if details.track_id is not None:
                tracks = await self.catalog.fetch_track_details([details.track_id])
                isrc = tracks[0].isrc if tracks else None
            return await self.registry.add_social_link(
                artist_id, details, unified_song_id=unified_song_id, isrc=isrc
            )

        report = LinkReport()
        outcomes = await run_bounded(
            list(dict.fromkeys(sound_ids)),
            _link,
            max_concurrency=self.config.batch.max_concurrency,
        )
        for outcome in outcomes:
            if outcome.ok:
                report.linked.append(outcome.result)
            else:
                LOGGER.warning(
                    "service.sound_link_failed",
                    artist_id=artist_id,
                    sound_id=outcome.item,
                    error=str(outcome.error),
                )
                report.failed.append((outcome.item, str(outcome.error)))
        LOGGER.info(
            "service.sounds_linked",
            artist_id=artist_id,
            linked=len(report.linked),
            failed=len(report.failed),
        )
        return report

    async def link_sound_url(
        self, artist_id: int, url: str, unified_song_id: int | None = None
    ) -> LinkReport | None:
        reference = parse_sound_url(url)
        if reference is None:
            LOGGER.info("service.invalid_sound_reference", url=url)
            return None
        sound_id = await self.resolver.resolve_sound_id(reference.external_sound_id)
        if sound_id is None:
            return None
        return await self.link_social_sounds(artist_id, [sound_id], unified_song_id)

    async def remove_artist(self, artist_id: int) -> bool:
        """Stop tracking an artist; its song list and sound links are removed with it.

        Previously persisted reactivity scores are kept. Returns ``False`` when
        the artist was not tracked.
        """

        removed = await self.registry.remove_artist(artist_id)
        LOGGER.info("service.artist_removed", artist_id=artist_id, removed=removed)
        return removed

    async def remove_social_link(self, link_id: int) -> bool:
        removed = await self.registry.remove_social_link(link_id)
        LOGGER.info("service.social_link_removed", link_id=link_id, removed=removed)
        return removed

    async def get_top_reactive_songs(
        self, limit: int = DEFAULT_TOP_LIMIT, region: Region | str | None = None
    ) -> list[StoredReactivity]:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError("limit must be a positive integer")
        return await self.sink.top_reactive(limit, self._region(region))


__all__ = ["ArtistMetrics", "DEFAULT_TOP_LIMIT", "LinkReport", "ReactivityEngine", "SoundNotFound"]
