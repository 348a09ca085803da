import datetime as dt
import pathlib
import sys

SRC_ROOT = pathlib.Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import pytest

from reactivity_engine.config import AppConfig
from reactivity_engine.errors import UpstreamFailure
from reactivity_engine.memory import (
    InMemoryCacheStore,
    InMemoryCatalog,
    InMemoryMetricsSource,
    InMemoryReactivityStore,
    InMemoryRegistry,
)
from reactivity_engine.records import (
    ArtistIdentity,
    DailyPoint,
    ReactivityGrade,
    ReactivityKey,
    ReactivityResult,
    Region,
    SoundDetails,
    TrackDetails,
    TrackRef,
    WeeklyMetric,
)
from reactivity_engine.service import ReactivityEngine

ARTIST_URL = "https://open.spotify.com/artist/abc123?si=share"
NOW = dt.datetime(2024, 7, 1, 9, 0, tzinfo=dt.timezone.utc)
START = dt.date(2024, 6, 1)


class Clock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self) -> dt.datetime:
        return self.now


def build_engine(clock=None):
    catalog = InMemoryCatalog(
        accounts=[ArtistIdentity("abc123", 42, display_name="Artist", image_url="https://img")],
        tracks={42: [TrackRef(1, 9001), TrackRef(2, 9002), TrackRef(3, None)]},
        sounds={"7001": 11},
        sound_details=[
            SoundDetails(11, name="Sound A", author="@artist", track_id=1),
            SoundDetails(12, name="Sound B", author="@artist"),
        ],
        track_details=[TrackDetails(1, title="First Song", isrc="USAAA0000001"), TrackDetails(2, title="Second Song")],
    )
    metrics = InMemoryMetricsSource()
    metrics.add_weekly(Region.US, WeeklyMetric(9001, 300, 200))
    metrics.add_weekly(Region.US, WeeklyMetric(9002, None, 200))
    metrics.add_account_weekly(Region.GLOBAL, WeeklyMetric(42, 500, 400))
    engine = ReactivityEngine(
        catalog=catalog,
        metrics=metrics,
        registry=InMemoryRegistry(),
        cache_store=InMemoryCacheStore(),
        sink=InMemoryReactivityStore(),
        config=AppConfig(),
        clock=clock or Clock(),
    )
    return engine, catalog, metrics


@pytest.mark.asyncio
async def test_artist_metrics_are_cached_per_region() -> None:
    engine, _, metrics = build_engine()

    first = await engine.get_artist_metrics(ARTIST_URL, "us")
    second = await engine.get_artist_metrics(ARTIST_URL, Region.US)
    fallback = await engine.get_artist_metrics("abc123", Region.GLOBAL)

    assert not first.from_cache
    assert second.from_cache
    assert first.metrics.this_week == 300
    assert first.metrics.last_week == 400
    assert first.metrics.percent_change == pytest.approx(-0.25)
    assert first.identity.internal_account_id == 42
    assert len(metrics.weekly_requests) == 2
    assert (fallback.metrics.this_week, fallback.metrics.last_week) == (500, 400)
    assert fallback.metrics.percent_change == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_artist_metrics_refresh_after_ttl() -> None:
    clock = Clock()
    engine, _, metrics = build_engine(clock)

    await engine.get_artist_metrics(ARTIST_URL, Region.US)
    clock.now = NOW + dt.timedelta(hours=12)
    refreshed = await engine.get_artist_metrics(ARTIST_URL, Region.US)

    assert not refreshed.from_cache
    assert refreshed.metrics.computed_at == clock.now


@pytest.mark.asyncio
async def test_unknown_or_invalid_artist_is_none() -> None:
    engine, _, _ = build_engine()

    assert await engine.get_artist_metrics("https://open.spotify.com/artist/nope", Region.US) is None
    assert await engine.get_artist_metrics("https://example.com/artist/abc123", Region.US) is None
    assert await engine.get_artist_streaming_timeseries("https://example.com/x", Region.US, START, START) == []


@pytest.mark.asyncio
async def test_track_artist_populates_mapped_songs_once() -> None:
    engine, _, _ = build_engine()

    artist = await engine.track_artist(ARTIST_URL)
    again = await engine.track_artist("abc123")
    songs = await engine.registry.list_songs(artist.id)

    assert again.id == artist.id
    assert len(await engine.registry.list_artists()) == 1
    assert [(song.unified_song_id, song.name) for song in songs] == [(9001, "First Song"), (9002, "Second Song")]


@pytest.mark.asyncio
async def test_link_social_sounds_reports_each_outcome() -> None:
    engine, _, _ = build_engine()
    artist = await engine.track_artist(ARTIST_URL)

    report = await engine.link_social_sounds(artist.id, [11, 12, 99, 11], unified_song_id=9001)

    assert sorted(link.sound_id for link in report.linked) == [11, 12]
    assert [sound_id for sound_id, _ in report.failed] == [99]
    by_sound = {link.sound_id: link for link in report.linked}
    assert by_sound[11].isrc == "USAAA0000001"
    assert by_sound[11].handle == "@artist"
    assert by_sound[12].isrc is None
    assert len(await engine.registry.list_social_links(artist.id, 9001)) == 2


@pytest.mark.asyncio
async def test_removed_links_and_artists_leave_the_registry() -> None:
    engine, _, _ = build_engine()
    artist = await engine.track_artist(ARTIST_URL)
    report = await engine.link_social_sounds(artist.id, [11, 12], unified_song_id=9001)
    wrong = next(link for link in report.linked if link.sound_id == 12)

    assert await engine.remove_social_link(wrong.id)
    assert not await engine.remove_social_link(wrong.id)
    assert [link.sound_id for link in await engine.registry.list_social_links(artist.id)] == [11]

    assert await engine.remove_artist(artist.id)
    assert not await engine.remove_artist(artist.id)
    assert await engine.registry.get_artist(artist.id) is None
    assert await engine.registry.list_social_links(artist.id) == []
    summary = await engine.run_reactivity_batch()
    assert (summary.artists, summary.processed) == (0, 0)


@pytest.mark.asyncio
async def test_link_sound_url_uses_identity_cache() -> None:
    engine, catalog, _ = build_engine()
    artist = await engine.track_artist(ARTIST_URL)

    report = await engine.link_sound_url(artist.id, "https://www.tiktok.com/music/Sound-A-7001")
    repeat = await engine.link_sound_url(artist.id, "https://www.tiktok.com/music/Sound-A-7001")

    assert [link.sound_id for link in report.linked] == [11]
    assert repeat.linked[0].id == report.linked[0].id
    assert catalog.sound_lookups == 1
    assert await engine.link_sound_url(artist.id, "https://www.tiktok.com/music/Unknown-404") is None
    assert await engine.link_sound_url(artist.id, "https://example.com/music/x-1") is None


@pytest.mark.asyncio
async def test_song_reactivity_and_timeseries() -> None:
    engine, _, metrics = build_engine()
    artist = await engine.track_artist(ARTIST_URL)
    await engine.link_social_sounds(artist.id, [11, 12], unified_song_id=9001)
    for offset in range(4):
        day = START + dt.timedelta(days=offset)
        metrics.daily_streaming[(Region.US, 9001)].append(DailyPoint(day, 100.0 + offset * 10))
        metrics.social[11].append(DailyPoint(day, 1.0 + offset))
        metrics.social[12].append(DailyPoint(day, 2.0))
    metrics.weekly_streaming[(Region.US, 9001)].append(DailyPoint(START + dt.timedelta(days=6), 700.0))
    metrics.weekly_streaming[(Region.US, 9002)].append(DailyPoint(START + dt.timedelta(days=6), 300.0))
    end = START + dt.timedelta(days=6)

    result = await engine.get_song_reactivity(artist.id, 9001, "US", START, end)
    social = await engine.get_artist_social_timeseries(artist.id, START, end)
    by_sound = await engine.get_artist_social_timeseries_by_sound(artist.id, START, end)
    weekly = await engine.get_artist_streaming_timeseries(ARTIST_URL, Region.US, START, end)

    assert result.paired_samples == 4
    assert result.grade is ReactivityGrade.A
    assert [point.value for point in social] == [3.0, 4.0, 5.0, 6.0]
    assert set(by_sound) == {11, 12}
    assert [point.value for point in by_sound[12]] == [2.0] * 4
    assert weekly == [DailyPoint(START + dt.timedelta(days=6), 1000.0)]

    with pytest.raises(ValueError):
        await engine.get_song_reactivity(artist.id, 9001, "US", end, START)


@pytest.mark.asyncio
async def test_song_reactivity_propagates_upstream_failure() -> None:
    engine, _, metrics = build_engine()

    async def broken(*args, **kwargs):
        raise UpstreamFailure("fetch_daily_streaming")

    metrics.fetch_daily_streaming = broken

    with pytest.raises(UpstreamFailure):
        await engine.get_song_reactivity(1, 9001, Region.US, START, START + dt.timedelta(days=3))


@pytest.mark.asyncio
async def test_top_reactive_songs_ranking() -> None:
    engine, _, _ = build_engine()
    rows = [
        (1, 0.55, ReactivityGrade.D),
        (2, 0.95, ReactivityGrade.A),
        (3, None, ReactivityGrade.NOT_AVAILABLE),
        (4, 0.85, ReactivityGrade.B),
    ]
    for song_id, correlation, grade in rows:
        await engine.sink.persist_reactivity(
            ReactivityResult(correlation, grade),
            ReactivityKey(song_id, Region.US, 1),
            artist_id=1,
            song_name=f"Song {song_id}",
        )

    top = await engine.get_top_reactive_songs(2)
    everything = await engine.get_top_reactive_songs(10, Region.US)

    assert [(row.rank, row.unified_song_id) for row in top] == [(1, 2), (2, 4)]
    assert [row.unified_song_id for row in everything] == [2, 4, 1]
    assert await engine.get_top_reactive_songs(5, Region.GLOBAL) == []
    with pytest.raises(ValueError):
        await engine.get_top_reactive_songs(0)
