"""SQL-backed collaborators.

Each repository converts rows into the records of :mod:`reactivity_engine.records`
before returning them. Reads run under a timeout and report a timeout as "not
found"; writes are retried and database errors surface as
:class:`~reactivity_engine.errors.UpstreamFailure`.
"""
from __future__ import annotations

import asyncio
import datetime as dt
from collections import defaultdict
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .alignment import MERGE_LATEST, collapse_by_date, to_date
from .config import RetryConfig
from .database import session_scope
from .errors import UpstreamFailure
from .logging_setup import get_logger
from .models import (
    STREAMING_METRIC_TYPE,
    AccountWeeklyMetric,
    ArtistSongRow,
    DailySongMetric,
    MetricsCacheRow,
    SocialLinkRow,
    SocialSound,
    SocialSoundMetric,
    SongReactivityScore,
    StreamingAccount,
    StreamingAccountTrack,
    StreamingTrack,
    TrackedArtistRow,
    UnifiedSongTrack,
)
from .records import (
    ArtistIdentity,
    ArtistSong,
    CacheEntry,
    DailyPoint,
    ReactivityGrade,
    ReactivityKey,
    ReactivityResult,
    Region,
    SocialLink,
    SoundDetails,
    StoredReactivity,
    TrackDetails,
    TrackedArtist,
    TrackRef,
    WeeklyMetric,
)

LOGGER = get_logger(__name__)

T = TypeVar("T")
Work = Callable[[AsyncSession], Awaitable[T]]


def _is_sqlite(session: AsyncSession) -> bool:
    bind = session.bind
    return bind is not None and bind.dialect.name == "sqlite"


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _naive_utc(value: dt.datetime) -> dt.datetime:
    return _as_utc(value).replace(tzinfo=None)


def _day_bounds(start: dt.date, end: dt.date) -> tuple[dt.datetime, dt.datetime]:
    lower = dt.datetime.combine(to_date(start), dt.time.min)
    upper = dt.datetime.combine(to_date(end) + dt.timedelta(days=1), dt.time.min)
    return lower, upper


class _Repository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float = 30.0,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.retry_config = retry_config or RetryConfig()

    async def _in_session(self, work: Work[T]) -> T:
        async with session_scope(self.session_factory) as session:
            return await work(session)

    async def _read(self, operation: str, work: Work[T], default: T) -> T:
        try:
            return await asyncio.wait_for(self._in_session(work), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "repository.fetch_timeout",
                operation=operation,
                timeout_seconds=self.timeout_seconds,
            )
            return default
        except SQLAlchemyError as exc:
            raise UpstreamFailure(operation) from exc

    async def _write(self, operation: str, work: Work[T]) -> T:
        @retry(
            stop=stop_after_attempt(self.retry_config.attempts),
            wait=wait_exponential(
                multiplier=self.retry_config.backoff_seconds,
                max=self.retry_config.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(SQLAlchemyError),
        )
        async def _execute() -> T:
            return await self._in_session(work)

        try:
            return await _execute()
        except RetryError as exc:
            LOGGER.error(
                "repository.write_failed",
                operation=operation,
                attempts=self.retry_config.attempts,
            )
            raise UpstreamFailure(operation) from exc


class SqlCatalog(_Repository):
    async def resolve_external_account(self, external_id: str) -> ArtistIdentity | None:
        async def _work(session: AsyncSession) -> ArtistIdentity | None:
            row = (
                await session.execute(
                    select(StreamingAccount).where(StreamingAccount.external_id == external_id)
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            return ArtistIdentity(
                external_id=row.external_id,
                internal_account_id=row.id,
                display_name=row.name,
                image_url=row.image_url,
            )

        return await self._read("resolve_external_account", _work, None)

    async def list_track_refs(self, account_id: int) -> list[TrackRef]:
        async def _work(session: AsyncSession) -> list[TrackRef]:
            stmt = (
                select(StreamingAccountTrack.track_id, UnifiedSongTrack.unified_song_id)
                .outerjoin(UnifiedSongTrack, UnifiedSongTrack.track_id == StreamingAccountTrack.track_id)
                .where(StreamingAccountTrack.account_id == account_id)
                .order_by(StreamingAccountTrack.track_id)
            )
            return [
                TrackRef(internal_track_id=int(track_id), unified_song_id=song_id)
                for track_id, song_id in (await session.execute(stmt)).all()
            ]

        return await self._read("list_track_refs", _work, [])

    async def resolve_sound_id(self, external_sound_id: str) -> int | None:
        async def _work(session: AsyncSession) -> int | None:
            return (
                await session.execute(
                    select(SocialSound.id).where(SocialSound.external_id == external_sound_id)
                )
            ).scalar_one_or_none()

        return await self._read("resolve_sound_id", _work, None)

    async def fetch_sound_details(self, sound_id: int) -> SoundDetails | None:
        async def _work(session: AsyncSession) -> SoundDetails | None:
            row = await session.get(SocialSound, sound_id)
            if row is None:
                return None
            return SoundDetails(sound_id=row.id, name=row.name, author=row.author, track_id=row.track_id)

        return await self._read("fetch_sound_details", _work, None)

    async def fetch_track_details(self, track_ids: Sequence[int]) -> list[TrackDetails]:
        if not track_ids:
            return []

        async def _work(session: AsyncSession) -> list[TrackDetails]:
            rows = (
                await session.execute(
                    select(StreamingTrack).where(StreamingTrack.id.in_(list(track_ids)))
                )
            ).scalars()
            return [TrackDetails(track_id=row.id, title=row.title, isrc=row.isrc) for row in rows]

        return await self._read("fetch_track_details", _work, [])


class SqlMetricsSource(_Repository):
    async def fetch_weekly_metrics_by_ids(
        self, ids: Sequence[int], region: Region
    ) -> list[WeeklyMetric]:
        if not ids:
            return []

        async def _work(session: AsyncSession) -> list[WeeklyMetric]:
            ranked = (
                select(
                    DailySongMetric.unified_song_id,
                    DailySongMetric.this_week,
                    DailySongMetric.last_week,
                    func.row_number()
                    .over(
                        partition_by=DailySongMetric.unified_song_id,
                        order_by=(
                            DailySongMetric.metric_date.desc(),
                            DailySongMetric.loaded_at.desc(),
                            DailySongMetric.id.desc(),
                        ),
                    )
                    .label("row_number"),
                )
                .where(
                    DailySongMetric.unified_song_id.in_(list(ids)),
                    DailySongMetric.region == region.value,
                    DailySongMetric.metric_type == STREAMING_METRIC_TYPE,
                )
                .subquery()
            )
            stmt = select(ranked.c.unified_song_id, ranked.c.this_week, ranked.c.last_week).where(
                ranked.c.row_number == 1
            )
            return [
                WeeklyMetric(entity_id=int(song_id), this_week=this_week, last_week=last_week)
                for song_id, this_week, last_week in (await session.execute(stmt)).all()
            ]

        return await self._read("fetch_weekly_metrics_by_ids", _work, [])

    async def fetch_weekly_metrics_by_account(
        self, account_id: int, region: Region
    ) -> WeeklyMetric | None:
        async def _work(session: AsyncSession) -> WeeklyMetric | None:
            row = (
                await session.execute(
                    select(AccountWeeklyMetric)
                    .where(
                        AccountWeeklyMetric.account_id == account_id,
                        AccountWeeklyMetric.region == region.value,
                    )
                    .order_by(AccountWeeklyMetric.metric_date.desc(), AccountWeeklyMetric.id.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            return WeeklyMetric(entity_id=account_id, this_week=row.this_period, last_week=row.last_period)

        return await self._read("fetch_weekly_metrics_by_account", _work, None)

    async def fetch_daily_streaming(
        self, unified_song_id: int, region: Region, start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        async def _work(session: AsyncSession) -> list[DailyPoint]:
            stmt = (
                select(DailySongMetric.metric_date, DailySongMetric.this_day)
                .where(
                    DailySongMetric.unified_song_id == unified_song_id,
                    DailySongMetric.region == region.value,
                    DailySongMetric.metric_type == STREAMING_METRIC_TYPE,
                    DailySongMetric.metric_date.between(to_date(start), to_date(end)),
                )
                .order_by(DailySongMetric.metric_date, DailySongMetric.loaded_at, DailySongMetric.id)
            )
            points = [
                DailyPoint(date=to_date(day), value=value)
                for day, value in (await session.execute(stmt)).all()
            ]
            return collapse_by_date(points, how=MERGE_LATEST)

        return await self._read("fetch_daily_streaming", _work, [])

    async def fetch_weekly_streaming_series(
        self, unified_song_ids: Sequence[int], region: Region, start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        if not unified_song_ids:
            return []

        async def _work(session: AsyncSession) -> list[DailyPoint]:
            latest = (
                select(
                    DailySongMetric.metric_date,
                    DailySongMetric.this_week,
                    func.row_number()
                    .over(
                        partition_by=(DailySongMetric.unified_song_id, DailySongMetric.metric_date),
                        order_by=(DailySongMetric.loaded_at.desc(), DailySongMetric.id.desc()),
                    )
                    .label("row_number"),
                )
                .where(
                    DailySongMetric.unified_song_id.in_(list(unified_song_ids)),
                    DailySongMetric.region == region.value,
                    DailySongMetric.metric_type == STREAMING_METRIC_TYPE,
                    DailySongMetric.end_of_week.is_(True),
                    DailySongMetric.metric_date.between(to_date(start), to_date(end)),
                )
                .subquery()
            )
            stmt = (
                select(latest.c.metric_date, func.sum(latest.c.this_week))
                .where(latest.c.row_number == 1)
                .group_by(latest.c.metric_date)
                .order_by(latest.c.metric_date)
            )
            return [
                DailyPoint(date=to_date(day), value=None if total is None else float(total))
                for day, total in (await session.execute(stmt)).all()
            ]

        return await self._read("fetch_weekly_streaming_series", _work, [])

    async def fetch_daily_social_activity(
        self, sound_ids: Sequence[int], start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        if not sound_ids:
            return []
        lower, upper = _day_bounds(start, end)

        async def _work(session: AsyncSession) -> list[DailyPoint]:
            day = func.date(SocialSoundMetric.created_at)
            stmt = (
                select(day, func.sum(SocialSoundMetric.post_count))
                .where(
                    SocialSoundMetric.sound_id.in_(list(sound_ids)),
                    SocialSoundMetric.created_at >= lower,
                    SocialSoundMetric.created_at < upper,
                )
                .group_by(day)
                .order_by(day)
            )
            return [
                DailyPoint(date=to_date(value_day), value=float(total or 0))
                for value_day, total in (await session.execute(stmt)).all()
            ]

        return await self._read("fetch_daily_social_activity", _work, [])

    async def fetch_daily_social_activity_by_sound(
        self, sound_ids: Sequence[int], start: dt.date, end: dt.date
    ) -> dict[int, list[DailyPoint]]:
        if not sound_ids:
            return {}
        lower, upper = _day_bounds(start, end)

        async def _work(session: AsyncSession) -> dict[int, list[DailyPoint]]:
            day = func.date(SocialSoundMetric.created_at)
            stmt = (
                select(SocialSoundMetric.sound_id, day, func.sum(SocialSoundMetric.post_count))
                .where(
                    SocialSoundMetric.sound_id.in_(list(sound_ids)),
                    SocialSoundMetric.created_at >= lower,
                    SocialSoundMetric.created_at < upper,
                )
                .group_by(SocialSoundMetric.sound_id, day)
                .order_by(SocialSoundMetric.sound_id, day)
            )
            series: dict[int, list[DailyPoint]] = defaultdict(list)
            for sound_id, value_day, total in (await session.execute(stmt)).all():
                series[int(sound_id)].append(DailyPoint(date=to_date(value_day), value=float(total or 0)))
            return {sound_id: series.get(sound_id, []) for sound_id in sound_ids}

        return await self._read("fetch_daily_social_activity_by_sound", _work, {})


def _artist_record(row: TrackedArtistRow) -> TrackedArtist:
    return TrackedArtist(
        id=row.id,
        external_id=row.external_id,
        internal_account_id=row.internal_account_id,
        name=row.name,
        image_url=row.image_url,
    )


def _link_record(row: SocialLinkRow) -> SocialLink:
    return SocialLink(
        id=row.id,
        artist_id=row.artist_id,
        sound_id=row.sound_id,
        unified_song_id=row.unified_song_id,
        sound_name=row.sound_name,
        handle=row.handle,
        isrc=row.isrc,
    )


class SqlArtistRegistry(_Repository):
    async def list_artists(self) -> list[TrackedArtist]:
        async def _work(session: AsyncSession) -> list[TrackedArtist]:
            rows = (await session.execute(select(TrackedArtistRow).order_by(TrackedArtistRow.id))).scalars()
            return [_artist_record(row) for row in rows]

        return await self._read("list_artists", _work, [])

    async def get_artist(self, artist_id: int) -> TrackedArtist | None:
        async def _work(session: AsyncSession) -> TrackedArtist | None:
            row = await session.get(TrackedArtistRow, artist_id)
            return None if row is None else _artist_record(row)

        return await self._read("get_artist", _work, None)

    async def get_artist_by_external_id(self, external_id: str) -> TrackedArtist | None:
        async def _work(session: AsyncSession) -> TrackedArtist | None:
            row = (
                await session.execute(
                    select(TrackedArtistRow).where(TrackedArtistRow.external_id == external_id)
                )
            ).scalar_one_or_none()
            return None if row is None else _artist_record(row)

        return await self._read("get_artist_by_external_id", _work, None)

    async def create_artist(self, identity: ArtistIdentity) -> TrackedArtist:
        async def _work(session: AsyncSession) -> TrackedArtist:
            lookup = select(TrackedArtistRow).where(TrackedArtistRow.external_id == identity.external_id)
            if _is_sqlite(session):
                await session.execute(
                    sqlite_insert(TrackedArtistRow)
                    .values(
                        external_id=identity.external_id,
                        internal_account_id=identity.internal_account_id,
                        name=identity.display_name,
                        image_url=identity.image_url,
                    )
                    .on_conflict_do_nothing(index_elements=[TrackedArtistRow.external_id])
                )
                row = (await session.execute(lookup)).scalar_one()
            else:
                row = (await session.execute(lookup)).scalar_one_or_none()
                if row is None:
                    row = TrackedArtistRow(
                        external_id=identity.external_id,
                        internal_account_id=identity.internal_account_id,
                    )
                    session.add(row)
            if identity.display_name:
                row.name = identity.display_name
            if identity.image_url:
                row.image_url = identity.image_url
            await session.flush()
            return _artist_record(row)

        artist = await self._write("create_artist", _work)
        LOGGER.info("registry.artist_tracked", artist_id=artist.id, external_id=artist.external_id)
        return artist

    async def list_songs(self, artist_id: int) -> list[ArtistSong]:
        async def _work(session: AsyncSession) -> list[ArtistSong]:
            rows = (
                await session.execute(
                    select(ArtistSongRow).where(ArtistSongRow.artist_id == artist_id).order_by(ArtistSongRow.id)
                )
            ).scalars()
            return [
                ArtistSong(unified_song_id=row.unified_song_id, track_id=row.track_id, name=row.name)
                for row in rows
            ]

        return await self._read("list_songs", _work, [])

    async def replace_songs(self, artist_id: int, songs: Sequence[ArtistSong]) -> None:
        unique = {song.unified_song_id: song for song in songs}

        async def _work(session: AsyncSession) -> None:
            await session.execute(delete(ArtistSongRow).where(ArtistSongRow.artist_id == artist_id))
            session.add_all(
                ArtistSongRow(
                    artist_id=artist_id,
                    unified_song_id=song.unified_song_id,
                    track_id=song.track_id,
                    name=song.name,
                )
                for song in unique.values()
            )

        await self._write("replace_songs", _work)

    async def list_social_links(
        self, artist_id: int, unified_song_id: int | None = None
    ) -> list[SocialLink]:
        async def _work(session: AsyncSession) -> list[SocialLink]:
            stmt = select(SocialLinkRow).where(SocialLinkRow.artist_id == artist_id)
            if unified_song_id is not None:
                stmt = stmt.where(SocialLinkRow.unified_song_id == unified_song_id)
            rows = (await session.execute(stmt.order_by(SocialLinkRow.id))).scalars()
            return [_link_record(row) for row in rows]

        return await self._read("list_social_links", _work, [])

    async def add_social_link(
        self,
        artist_id: int,
        details: SoundDetails,
        *,
        unified_song_id: int | None = None,
        isrc: str | None = None,
    ) -> SocialLink:
        async def _work(session: AsyncSession) -> SocialLink:
            lookup = select(SocialLinkRow).where(
                SocialLinkRow.artist_id == artist_id,
                SocialLinkRow.sound_id == details.sound_id,
            )
            values: dict[str, Any] = {
                "artist_id": artist_id,
                "sound_id": details.sound_id,
                "unified_song_id": unified_song_id,
                "sound_name": details.name,
                "handle": details.author,
                "isrc": isrc,
            }
            if _is_sqlite(session):
                await session.execute(
                    sqlite_insert(SocialLinkRow)
                    .values(**values)
                    .on_conflict_do_nothing(
                        index_elements=[SocialLinkRow.artist_id, SocialLinkRow.sound_id]
                    )
                )
                row = (await session.execute(lookup)).scalar_one()
            else:
                row = (await session.execute(lookup)).scalar_one_or_none()
                if row is None:
                    row = SocialLinkRow(**values)
                    session.add(row)
                    await session.flush()
            return _link_record(row)

        return await self._write("add_social_link", _work)

    async def remove_artist(self, artist_id: int) -> bool:
        async def _work(session: AsyncSession) -> bool:
            row = await session.get(
                TrackedArtistRow,
                artist_id,
                options=[selectinload(TrackedArtistRow.songs), selectinload(TrackedArtistRow.links)],
            )
            if row is None:
                return False
            # Songs and links go with the artist through the delete-orphan cascade.
            await session.delete(row)
            return True

        removed = await self._write("remove_artist", _work)
        LOGGER.info("registry.artist_removed", artist_id=artist_id, removed=removed)
        return removed

    async def remove_social_link(self, link_id: int) -> bool:
        async def _work(session: AsyncSession) -> bool:
            result = await session.execute(delete(SocialLinkRow).where(SocialLinkRow.id == link_id))
            return result.rowcount > 0

        removed = await self._write("remove_social_link", _work)
        LOGGER.info("registry.social_link_removed", link_id=link_id, removed=removed)
        return removed


class SqlCacheStore(_Repository):
    async def load_entry(self, entity_id: int, region: Region) -> CacheEntry | None:
        async def _work(session: AsyncSession) -> CacheEntry | None:
            row = await session.get(MetricsCacheRow, (entity_id, region.value))
            if row is None:
                return None
            return CacheEntry(
                entity_id=row.entity_id,
                region=Region(row.region),
                this_week=row.this_week,
                last_week=row.last_week,
                percent_change=row.percent_change,
                computed_at=_as_utc(row.computed_at),
            )

        return await self._read("load_cache_entry", _work, None)

    async def replace_entry(self, entry: CacheEntry) -> None:
        values = {
            "entity_id": entry.entity_id,
            "region": entry.region.value,
            "this_week": entry.this_week,
            "last_week": entry.last_week,
            "percent_change": entry.percent_change,
            "computed_at": _naive_utc(entry.computed_at),
        }

        async def _work(session: AsyncSession) -> None:
            if _is_sqlite(session):
                stmt = sqlite_insert(MetricsCacheRow).values(**values)
                await session.execute(
                    stmt.on_conflict_do_update(
                        index_elements=[MetricsCacheRow.entity_id, MetricsCacheRow.region],
                        set_={
                            "this_week": stmt.excluded.this_week,
                            "last_week": stmt.excluded.last_week,
                            "percent_change": stmt.excluded.percent_change,
                            "computed_at": stmt.excluded.computed_at,
                        },
                    )
                )
            else:
                await session.merge(MetricsCacheRow(**values))

        await self._write("replace_cache_entry", _work)


class SqlReactivityStore(_Repository):
    async def persist_reactivity(
        self,
        result: ReactivityResult,
        key: ReactivityKey,
        *,
        artist_id: int,
        song_name: str | None = None,
        artist_name: str | None = None,
    ) -> None:
        values = {
            "unified_song_id": key.unified_song_id,
            "region": key.region.value,
            "window_months": key.window_months,
            "artist_id": artist_id,
            "song_name": song_name,
            "artist_name": artist_name,
            "correlation": result.correlation,
            "grade": result.grade.value,
            "calculated_at": _naive_utc(dt.datetime.now(dt.timezone.utc)),
        }
        updated = ("artist_id", "song_name", "artist_name", "correlation", "grade", "calculated_at")

        async def _work(session: AsyncSession) -> None:
            if _is_sqlite(session):
                stmt = sqlite_insert(SongReactivityScore).values(**values)
                await session.execute(
                    stmt.on_conflict_do_update(
                        index_elements=[
                            SongReactivityScore.unified_song_id,
                            SongReactivityScore.region,
                            SongReactivityScore.window_months,
                        ],
                        set_={column: stmt.excluded[column] for column in updated},
                    )
                )
                return
            row = (
                await session.execute(
                    select(SongReactivityScore).where(
                        SongReactivityScore.unified_song_id == key.unified_song_id,
                        SongReactivityScore.region == key.region.value,
                        SongReactivityScore.window_months == key.window_months,
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                session.add(SongReactivityScore(**values))
                return
            for column in updated:
                setattr(row, column, values[column])

        await self._write("persist_reactivity", _work)
        LOGGER.debug(
            "reactivity.persisted",
            unified_song_id=key.unified_song_id,
            region=key.region.value,
            window_months=key.window_months,
            grade=result.grade.value,
        )

    async def top_reactive(self, limit: int, region: Region) -> list[StoredReactivity]:
        async def _work(session: AsyncSession) -> list[StoredReactivity]:
            ordering = (
                SongReactivityScore.correlation.is_(None),
                SongReactivityScore.correlation.desc(),
                SongReactivityScore.id,
            )
            rank = func.row_number().over(order_by=ordering).label("rank")
            stmt = (
                select(rank, SongReactivityScore)
                .where(
                    SongReactivityScore.region == region.value,
                    SongReactivityScore.grade != ReactivityGrade.NOT_AVAILABLE.value,
                )
                .order_by(*ordering)
                .limit(limit)
            )
            return [
                StoredReactivity(
                    rank=int(position),
                    unified_song_id=row.unified_song_id,
                    song_name=row.song_name,
                    artist_id=row.artist_id,
                    artist_name=row.artist_name,
                    correlation=row.correlation,
                    grade=ReactivityGrade(row.grade),
                )
                for position, row in (await session.execute(stmt)).all()
            ]

        return await self._read("top_reactive", _work, [])


__all__ = [
    "SqlArtistRegistry",
    "SqlCacheStore",
    "SqlCatalog",
    "SqlMetricsSource",
    "SqlReactivityStore",
]
