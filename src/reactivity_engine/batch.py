"""Scheduled recomputation of stored reactivity scores."""
from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from dateutil.relativedelta import relativedelta

from .collaborators import ArtistRegistry, MetricsSource, ReactivitySink
from .logging_setup import get_logger
from .reactivity import ReactivityScorer
from .records import ArtistSong, ReactivityKey, ReactivityResult, Region, TrackedArtist
from .workers import run_bounded

LOGGER = get_logger(__name__)


def utc_today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


def calculation_window(months: int, today: dt.date | None = None) -> tuple[dt.date, dt.date]:
    """Return the ``(start, end)`` dates covering the last ``months`` months."""

    if months < 1:
        raise ValueError("months must be at least 1")
    end = today or utc_today()
    return end - relativedelta(months=months), end


async def compute_song_reactivity(
    registry: ArtistRegistry,
    metrics: MetricsSource,
    scorer: ReactivityScorer,
    artist_id: int,
    unified_song_id: int,
    region: Region,
    start: dt.date,
    end: dt.date,
) -> ReactivityResult:
    """Score one song: its daily streams against its linked sounds' daily posts."""

    streaming = await metrics.fetch_daily_streaming(unified_song_id, region, start, end)
    links = await registry.list_social_links(artist_id, unified_song_id)
    sound_ids = list(dict.fromkeys(link.sound_id for link in links))
    social = []
    if sound_ids:
        social = await metrics.fetch_daily_social_activity(sound_ids, start, end)
    else:
        LOGGER.info("reactivity.no_linked_sounds", artist_id=artist_id, unified_song_id=unified_song_id)
    LOGGER.debug(
        "reactivity.inputs",
        artist_id=artist_id,
        unified_song_id=unified_song_id,
        region=region.value,
        streaming_points=len(streaming),
        social_points=len(social),
        sounds=len(sound_ids),
    )
    return scorer.score(streaming, social, start, end)


@dataclass(slots=True)
class BatchSummary:
    """Counters reported at the end of a batch run."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0
    artists: int = 0
    elapsed_seconds: float = 0.0
    window: tuple[dt.date, dt.date] | None = None
    failed_songs: list[tuple[int, int, str]] = field(default_factory=list)


@dataclass(slots=True)
class _ArtistTally:
    processed: int = 0
    errors: int = 0
    skipped: bool = False


class ReactivityBatch:
    """Recompute reactivity for every tracked song with linked social sounds."""

    def __init__(
        self,
        registry: ArtistRegistry,
        metrics: MetricsSource,
        scorer: ReactivityScorer,
        sink: ReactivitySink,
        *,
        regions: Sequence[Region] = (Region.US,),
        window_months: int = 1,
        max_concurrency: int = 4,
        today: Callable[[], dt.date] = utc_today,
    ) -> None:
        if not regions:
            raise ValueError("at least one region is required")
        self.registry = registry
        self.metrics = metrics
        self.scorer = scorer
        self.sink = sink
        self.regions = list(dict.fromkeys(regions))
        self.window_months = window_months
        self.max_concurrency = max_concurrency
        self.today = today

    async def run_all(self) -> BatchSummary:
        start_time = time.perf_counter()
        start, end = calculation_window(self.window_months, self.today())
        summary = BatchSummary(window=(start, end))

        try:
            artists = await self.registry.list_artists()
        except Exception:
            LOGGER.exception("batch.artist_listing_failed")
            summary.errors += 1
            summary.elapsed_seconds = time.perf_counter() - start_time
            self._log_summary(summary)
            return summary

        summary.artists = len(artists)
        LOGGER.info(
            "batch.started",
            artists=len(artists),
            regions=[region.value for region in self.regions],
            start=start.isoformat(),
            end=end.isoformat(),
            max_concurrency=self.max_concurrency,
        )

        async def _work(artist: TrackedArtist) -> _ArtistTally:
            return await self._process_artist(artist, start, end, summary)

        outcomes = await run_bounded(artists, _work, max_concurrency=self.max_concurrency)
        for outcome in outcomes:
            if not outcome.ok:
                LOGGER.error(
                    "batch.artist_failed",
                    artist_id=outcome.item.id,
                    error=repr(outcome.error),
                    exc_info=outcome.error,
                )
                summary.errors += 1
                continue
            tally = outcome.result
            summary.processed += tally.processed
            summary.errors += tally.errors
            if tally.skipped:
                summary.skipped += 1

        summary.elapsed_seconds = time.perf_counter() - start_time
        self._log_summary(summary)
        return summary

    async def _process_artist(
        self,
        artist: TrackedArtist,
        start: dt.date,
        end: dt.date,
        summary: BatchSummary,
    ) -> _ArtistTally:
        tally = _ArtistTally()
        songs = await self.registry.list_songs(artist.id)
        links = await self.registry.list_social_links(artist.id)
        linked_ids = {link.unified_song_id for link in links if link.unified_song_id is not None}
        targets: list[ArtistSong] = [song for song in songs if song.unified_song_id in linked_ids]

        if not targets:
            LOGGER.info(
                "batch.artist_skipped",
                artist_id=artist.id,
                songs=len(songs),
                links=len(links),
            )
            tally.skipped = True
            return tally

        for song in targets:
            for region in self.regions:
                try:
                    result = await compute_song_reactivity(
                        self.registry,
                        self.metrics,
                        self.scorer,
                        artist.id,
                        song.unified_song_id,
                        region,
                        start,
                        end,
                    )
                    await self.sink.persist_reactivity(
                        result,
                        ReactivityKey(song.unified_song_id, region, self.window_months),
                        artist_id=artist.id,
                        song_name=song.name,
                        artist_name=artist.name,
                    )
                except Exception as exc:
                    LOGGER.exception(
                        "batch.song_failed",
                        artist_id=artist.id,
                        unified_song_id=song.unified_song_id,
                        region=region.value,
                    )
                    tally.errors += 1
                    summary.failed_songs.append((artist.id, song.unified_song_id, repr(exc)))
                    continue
                tally.processed += 1
        return tally

    @staticmethod
    def _log_summary(summary: BatchSummary) -> None:
        LOGGER.info(
            "batch.finished",
            artists=summary.artists,
            processed=summary.processed,
            errors=summary.errors,
            skipped=summary.skipped,
            elapsed_seconds=round(summary.elapsed_seconds, 3),
        )


__all__ = ["BatchSummary", "ReactivityBatch", "calculation_window", "compute_song_reactivity", "utc_today"]
