import asyncio
import datetime as dt
import pathlib
import sys

SRC_ROOT = pathlib.Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from reactivity_engine.config import AppConfig, DatabaseConfig, RetryConfig
from reactivity_engine.database import create_engine_with_retries, create_session_factory, init_schema, session_scope
from reactivity_engine.errors import UpstreamFailure
from reactivity_engine.models import (
    AccountWeeklyMetric,
    ArtistSongRow,
    DailySongMetric,
    SocialLinkRow,
    SocialSound,
    SocialSoundMetric,
    StreamingAccount,
    StreamingAccountTrack,
    StreamingTrack,
    UnifiedSongTrack,
)
from reactivity_engine.records import (
    ArtistIdentity,
    ArtistSong,
    CacheEntry,
    DailyPoint,
    ReactivityGrade,
    ReactivityKey,
    ReactivityResult,
    Region,
    SoundDetails,
)
from reactivity_engine.repositories import (
    SqlArtistRegistry,
    SqlCacheStore,
    SqlCatalog,
    SqlMetricsSource,
    SqlReactivityStore,
)
from reactivity_engine.runtime import open_engine

DAY = dt.date(2024, 6, 3)
FAST_RETRY = RetryConfig(attempts=1, backoff_seconds=0.01, backoff_max_seconds=0.01)


@pytest_asyncio.fixture
async def session_factory(tmp_path: pathlib.Path):
    engine = await create_engine_with_retries(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))
    await init_schema(engine)
    factory = create_session_factory(engine)
    async with session_scope(factory) as session:
        session.add_all(
            [
                StreamingAccount(id=1, external_id="abc123", name="Artist"),
                StreamingTrack(id=10, title="First", isrc="USAAA0000001"),
                StreamingTrack(id=11, title="Second"),
                StreamingTrack(id=12, title="Unmapped"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                StreamingAccountTrack(account_id=1, track_id=10),
                StreamingAccountTrack(account_id=1, track_id=11),
                StreamingAccountTrack(account_id=1, track_id=12),
                UnifiedSongTrack(track_id=10, unified_song_id=500),
                UnifiedSongTrack(track_id=11, unified_song_id=501),
                SocialSound(id=7, external_id="7001", name="Sound", author="@artist", track_id=10),
                SocialSound(id=8, external_id="8001", name="Other"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                DailySongMetric(unified_song_id=500, region="US", metric_date=DAY, this_day=10, this_week=70, last_week=60),
                DailySongMetric(
                    unified_song_id=500,
                    region="US",
                    metric_date=DAY + dt.timedelta(days=1),
                    this_day=12,
                    this_week=80,
                    last_week=65,
                    end_of_week=True,
                ),
                DailySongMetric(
                    unified_song_id=500,
                    region="US",
                    metric_date=DAY + dt.timedelta(days=1),
                    this_day=15,
                    this_week=90,
                    last_week=65,
                    end_of_week=True,
                ),
                DailySongMetric(
                    unified_song_id=501,
                    region="US",
                    metric_date=DAY + dt.timedelta(days=1),
                    this_day=5,
                    this_week=None,
                    last_week=30,
                    end_of_week=True,
                ),
                DailySongMetric(unified_song_id=501, region="GLOBAL", metric_date=DAY, this_week=999, last_week=999),
                AccountWeeklyMetric(account_id=1, region="US", metric_date=DAY, this_period=100, last_period=90),
                AccountWeeklyMetric(
                    account_id=1, region="US", metric_date=DAY + dt.timedelta(days=7), this_period=500, last_period=400
                ),
                SocialSoundMetric(sound_id=7, created_at=dt.datetime(2024, 6, 3, 8, 0), post_count=3),
                SocialSoundMetric(sound_id=7, created_at=dt.datetime(2024, 6, 3, 20, 0), post_count=4),
                SocialSoundMetric(sound_id=8, created_at=dt.datetime(2024, 6, 3, 9, 0), post_count=1),
                SocialSoundMetric(sound_id=7, created_at=dt.datetime(2024, 6, 5, 9, 0), post_count=2),
                SocialSoundMetric(sound_id=7, created_at=dt.datetime(2024, 6, 9, 9, 0), post_count=50),
            ]
        )
    yield factory
    await engine.dispose()


@pytest.mark.asyncio
async def test_catalog_maps_rows_to_records(session_factory) -> None:
    catalog = SqlCatalog(session_factory)

    identity = await catalog.resolve_external_account("abc123")
    refs = await catalog.list_track_refs(identity.internal_account_id)

    assert identity == ArtistIdentity("abc123", 1, display_name="Artist")
    assert [(ref.internal_track_id, ref.unified_song_id) for ref in refs] == [(10, 500), (11, 501), (12, None)]
    assert await catalog.resolve_external_account("missing") is None
    assert await catalog.resolve_sound_id("7001") == 7
    assert await catalog.resolve_sound_id("nope") is None
    assert await catalog.fetch_sound_details(7) == SoundDetails(7, name="Sound", author="@artist", track_id=10)
    details = await catalog.fetch_track_details([10, 99])
    assert [(d.track_id, d.isrc) for d in details] == [(10, "USAAA0000001")]


@pytest.mark.asyncio
async def test_weekly_metrics_use_latest_row_per_song(session_factory) -> None:
    metrics = SqlMetricsSource(session_factory)

    rows = await metrics.fetch_weekly_metrics_by_ids([500, 501, 502], Region.US)
    account = await metrics.fetch_weekly_metrics_by_account(1, Region.US)

    by_song = {row.entity_id: row for row in rows}
    assert set(by_song) == {500, 501}
    assert (by_song[500].this_week, by_song[500].last_week) == (90, 65)
    assert by_song[501].this_week is None
    assert (account.this_week, account.last_week) == (500, 400)
    assert await metrics.fetch_weekly_metrics_by_account(1, Region.GLOBAL) is None
    assert await metrics.fetch_weekly_metrics_by_ids([], Region.US) == []


@pytest.mark.asyncio
async def test_daily_series_queries(session_factory) -> None:
    metrics = SqlMetricsSource(session_factory)
    end = DAY + dt.timedelta(days=4)

    streaming = await metrics.fetch_daily_streaming(500, Region.US, DAY, end)
    weekly = await metrics.fetch_weekly_streaming_series([500, 501], Region.US, DAY, end)
    social = await metrics.fetch_daily_social_activity([7, 8], DAY, end)
    per_sound = await metrics.fetch_daily_social_activity_by_sound([7, 8, 9], DAY, end)

    assert streaming == [DailyPoint(DAY, 10.0), DailyPoint(DAY + dt.timedelta(days=1), 15.0)]
    assert weekly == [DailyPoint(DAY + dt.timedelta(days=1), 90.0)]
    assert social == [DailyPoint(DAY, 8.0), DailyPoint(DAY + dt.timedelta(days=2), 2.0)]
    assert per_sound[7] == [DailyPoint(DAY, 7.0), DailyPoint(DAY + dt.timedelta(days=2), 2.0)]
    assert per_sound[8] == [DailyPoint(DAY, 1.0)]
    assert per_sound[9] == []


@pytest.mark.asyncio
async def test_registry_find_or_create_and_links(session_factory) -> None:
    registry = SqlArtistRegistry(session_factory, retry_config=FAST_RETRY)

    artist = await registry.create_artist(ArtistIdentity("abc123", 1, display_name="Artist"))
    again = await registry.create_artist(ArtistIdentity("abc123", 1, image_url="https://img"))
    await registry.replace_songs(artist.id, [ArtistSong(500, 10, "First"), ArtistSong(501, 11, "Second")])
    await registry.replace_songs(artist.id, [ArtistSong(500, 10, "First")])
    link = await registry.add_social_link(artist.id, SoundDetails(7, "Sound", "@artist"), unified_song_id=500, isrc="X")
    duplicate = await registry.add_social_link(artist.id, SoundDetails(7, "Sound", "@artist"))

    assert again.id == artist.id
    assert again.name == "Artist"
    assert again.image_url == "https://img"
    assert [row.id for row in await registry.list_artists()] == [artist.id]
    assert await registry.get_artist(artist.id) == again
    assert await registry.get_artist(999) is None
    assert [song.unified_song_id for song in await registry.list_songs(artist.id)] == [500]
    assert duplicate.id == link.id
    assert duplicate.unified_song_id == 500
    assert [l.sound_id for l in await registry.list_social_links(artist.id, 500)] == [7]
    assert await registry.list_social_links(artist.id, 501) == []


@pytest.mark.asyncio
async def test_registry_removal_cascades_to_songs_and_links(session_factory) -> None:
    registry = SqlArtistRegistry(session_factory, retry_config=FAST_RETRY)
    artist = await registry.create_artist(ArtistIdentity("abc123", 1, display_name="Artist"))
    await registry.replace_songs(artist.id, [ArtistSong(500, 10, "First"), ArtistSong(501, 11, "Second")])
    kept = await registry.add_social_link(artist.id, SoundDetails(7, "Sound"), unified_song_id=500)
    wrong = await registry.add_social_link(artist.id, SoundDetails(8, "Other"), unified_song_id=501)

    assert await registry.remove_social_link(wrong.id)
    assert not await registry.remove_social_link(wrong.id)
    assert await registry.list_social_links(artist.id) == [kept]

    assert await registry.remove_artist(artist.id)
    assert not await registry.remove_artist(artist.id)
    assert await registry.list_artists() == []
    async with session_scope(session_factory) as session:
        songs = (await session.execute(select(func.count()).select_from(ArtistSongRow))).scalar_one()
        links = (await session.execute(select(func.count()).select_from(SocialLinkRow))).scalar_one()
    assert (songs, links) == (0, 0)


@pytest.mark.asyncio
async def test_cache_store_replaces_whole_entry(session_factory) -> None:
    store = SqlCacheStore(session_factory, retry_config=FAST_RETRY)
    computed = dt.datetime(2024, 6, 3, 12, 0, tzinfo=dt.timezone.utc)

    await store.replace_entry(CacheEntry(1, Region.US, 10.0, 0.0, None, computed))
    await store.replace_entry(CacheEntry(1, Region.US, 20.0, 10.0, 1.0, computed + dt.timedelta(hours=13)))

    entry = await store.load_entry(1, Region.US)
    assert (entry.this_week, entry.last_week, entry.percent_change) == (20.0, 10.0, 1.0)
    assert entry.computed_at == computed + dt.timedelta(hours=13)
    assert entry.computed_at.tzinfo is not None
    assert await store.load_entry(1, Region.GLOBAL) is None


@pytest.mark.asyncio
async def test_reactivity_upsert_and_ranking(session_factory) -> None:
    store = SqlReactivityStore(session_factory, retry_config=FAST_RETRY)
    scores = [
        (500, 0.5, ReactivityGrade.D),
        (501, 0.92, ReactivityGrade.A),
        (502, None, ReactivityGrade.NOT_AVAILABLE),
        (503, 0.75, ReactivityGrade.C),
    ]
    for song_id, correlation, grade in scores:
        await store.persist_reactivity(
            ReactivityResult(correlation, grade),
            ReactivityKey(song_id, Region.US, 1),
            artist_id=1,
            song_name=f"Song {song_id}",
            artist_name="Artist",
        )
    await store.persist_reactivity(
        ReactivityResult(0.85, ReactivityGrade.B),
        ReactivityKey(500, Region.US, 1),
        artist_id=1,
        song_name="Song 500",
        artist_name="Artist",
    )
    await store.persist_reactivity(
        ReactivityResult(0.99, ReactivityGrade.A), ReactivityKey(500, Region.US, 3), artist_id=1
    )

    top = await store.top_reactive(3, Region.US)

    assert [(row.rank, row.unified_song_id, row.correlation) for row in top] == [
        (1, 500, 0.99),
        (2, 501, 0.92),
        (3, 500, 0.85),
    ]
    assert top[1].grade is ReactivityGrade.A
    assert top[1].song_name == "Song 501"
    assert await store.top_reactive(5, Region.GLOBAL) == []
    assert len(await store.top_reactive(10, Region.US)) == 4


@pytest.mark.asyncio
async def test_database_errors_become_upstream_failures(tmp_path: pathlib.Path) -> None:
    engine = await create_engine_with_retries(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"))
    factory = create_session_factory(engine)
    try:
        with pytest.raises(UpstreamFailure):
            await SqlCatalog(factory).resolve_external_account("abc123")
        with pytest.raises(UpstreamFailure):
            await SqlCacheStore(factory, retry_config=FAST_RETRY).replace_entry(
                CacheEntry(1, Region.US, 1.0, 1.0, 0.0, dt.datetime.now(dt.timezone.utc))
            )
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_timed_out_fetch_is_treated_as_not_found(session_factory) -> None:
    catalog = SqlCatalog(session_factory, timeout_seconds=0.01)

    async def slow(session):
        await asyncio.sleep(1)
        return ["late"]

    assert await catalog._read("slow_fetch", slow, []) == []


@pytest.mark.asyncio
async def test_open_engine_wires_sql_collaborators(tmp_path: pathlib.Path) -> None:
    config = AppConfig.model_validate({"database": {"url": f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"}})

    async with open_engine(config, create_schema=True) as engine:
        assert await engine.get_artist_metrics("abc123", Region.US) is None
        summary = await engine.run_reactivity_batch()

    assert (summary.processed, summary.errors) == (0, 0)
