"""In-process collaborators backed by plain dictionaries.

Useful for tests and for embedding the engine where no database is
available. Each class satisfies the matching protocol in
:mod:`reactivity_engine.collaborators`.
"""
from __future__ import annotations

import datetime as dt
import itertools
from collections import defaultdict
from dataclasses import replace
from typing import Iterable, Mapping, Sequence

from .alignment import MERGE_LATEST, collapse_by_date, to_date
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


def _within(points: Iterable[DailyPoint], start: dt.date, end: dt.date) -> list[DailyPoint]:
    return sorted(
        (point for point in points if start <= to_date(point.date) <= end),
        key=lambda point: to_date(point.date),
    )


def _sum_by_date(points: Iterable[DailyPoint]) -> list[DailyPoint]:
    totals: dict[dt.date, float] = defaultdict(float)
    for point in points:
        totals[to_date(point.date)] += point.value or 0.0
    return [DailyPoint(date=day, value=totals[day]) for day in sorted(totals)]


class InMemoryCatalog:
    def __init__(
        self,
        accounts: Iterable[ArtistIdentity] = (),
        tracks: Mapping[int, Sequence[TrackRef]] | None = None,
        sounds: Mapping[str, int] | None = None,
        sound_details: Iterable[SoundDetails] = (),
        track_details: Iterable[TrackDetails] = (),
    ) -> None:
        self.accounts = {identity.external_id: identity for identity in accounts}
        self.tracks = {key: list(value) for key, value in (tracks or {}).items()}
        self.sounds = dict(sounds or {})
        self.sound_details = {details.sound_id: details for details in sound_details}
        self.track_details = {details.track_id: details for details in track_details}
        self.sound_lookups = 0

    async def resolve_external_account(self, external_id: str) -> ArtistIdentity | None:
        return self.accounts.get(external_id)

    async def list_track_refs(self, account_id: int) -> list[TrackRef]:
        return list(self.tracks.get(account_id, []))

    async def resolve_sound_id(self, external_sound_id: str) -> int | None:
        self.sound_lookups += 1
        return self.sounds.get(external_sound_id)

    async def fetch_sound_details(self, sound_id: int) -> SoundDetails | None:
        return self.sound_details.get(sound_id)

    async def fetch_track_details(self, track_ids: Sequence[int]) -> list[TrackDetails]:
        return [self.track_details[track_id] for track_id in track_ids if track_id in self.track_details]


class InMemoryMetricsSource:
    def __init__(self) -> None:
        self.weekly: dict[tuple[Region, int], WeeklyMetric] = {}
        self.account_weekly: dict[tuple[Region, int], WeeklyMetric] = {}
        self.daily_streaming: dict[tuple[Region, int], list[DailyPoint]] = defaultdict(list)
        self.weekly_streaming: dict[tuple[Region, int], list[DailyPoint]] = defaultdict(list)
        self.social: dict[int, list[DailyPoint]] = defaultdict(list)
        self.weekly_requests: list[tuple[int, ...]] = []

    def add_weekly(self, region: Region, metric: WeeklyMetric) -> None:
        self.weekly[(region, metric.entity_id)] = metric

    def add_account_weekly(self, region: Region, metric: WeeklyMetric) -> None:
        self.account_weekly[(region, metric.entity_id)] = metric

    async def fetch_weekly_metrics_by_ids(self, ids: Sequence[int], region: Region) -> list[WeeklyMetric]:
        self.weekly_requests.append(tuple(ids))
        return [self.weekly[(region, song_id)] for song_id in ids if (region, song_id) in self.weekly]

    async def fetch_weekly_metrics_by_account(self, account_id: int, region: Region) -> WeeklyMetric | None:
        return self.account_weekly.get((region, account_id))

    async def fetch_daily_streaming(
        self, unified_song_id: int, region: Region, start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        points = _within(self.daily_streaming.get((region, unified_song_id), []), start, end)
        return collapse_by_date(points, how=MERGE_LATEST)

    async def fetch_weekly_streaming_series(
        self, unified_song_ids: Sequence[int], region: Region, start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        points = itertools.chain.from_iterable(
            self.weekly_streaming.get((region, song_id), []) for song_id in unified_song_ids
        )
        return _sum_by_date(_within(points, start, end))

    async def fetch_daily_social_activity(
        self, sound_ids: Sequence[int], start: dt.date, end: dt.date
    ) -> list[DailyPoint]:
        points = itertools.chain.from_iterable(self.social.get(sound_id, []) for sound_id in sound_ids)
        return _sum_by_date(_within(points, start, end))

    async def fetch_daily_social_activity_by_sound(
        self, sound_ids: Sequence[int], start: dt.date, end: dt.date
    ) -> dict[int, list[DailyPoint]]:
        return {
            sound_id: _sum_by_date(_within(self.social.get(sound_id, []), start, end))
            for sound_id in sound_ids
        }


class InMemoryRegistry:
    def __init__(self) -> None:
        self.artists: dict[int, TrackedArtist] = {}
        self.songs: dict[int, list[ArtistSong]] = {}
        self.links: list[SocialLink] = []
        self._artist_ids = itertools.count(1)
        self._link_ids = itertools.count(1)

    async def list_artists(self) -> list[TrackedArtist]:
        return [self.artists[key] for key in sorted(self.artists)]

    async def get_artist(self, artist_id: int) -> TrackedArtist | None:
        return self.artists.get(artist_id)

    async def get_artist_by_external_id(self, external_id: str) -> TrackedArtist | None:
        return next((a for a in self.artists.values() if a.external_id == external_id), None)

    async def create_artist(self, identity: ArtistIdentity) -> TrackedArtist:
        existing = await self.get_artist_by_external_id(identity.external_id)
        if existing is not None:
            updated = replace(
                existing,
                name=identity.display_name or existing.name,
                image_url=identity.image_url or existing.image_url,
            )
            self.artists[existing.id] = updated
            return updated
        artist = TrackedArtist(
            id=next(self._artist_ids),
            external_id=identity.external_id,
            internal_account_id=identity.internal_account_id,
            name=identity.display_name,
            image_url=identity.image_url,
        )
        self.artists[artist.id] = artist
        return artist

    async def list_songs(self, artist_id: int) -> list[ArtistSong]:
        return list(self.songs.get(artist_id, []))

    async def replace_songs(self, artist_id: int, songs: Sequence[ArtistSong]) -> None:
        self.songs[artist_id] = list(songs)

    async def list_social_links(
        self, artist_id: int, unified_song_id: int | None = None
    ) -> list[SocialLink]:
        return [
            link
            for link in self.links
            if link.artist_id == artist_id
            and (unified_song_id is None or link.unified_song_id == unified_song_id)
        ]

    async def add_social_link(
        self,
        artist_id: int,
        details: SoundDetails,
        *,
        unified_song_id: int | None = None,
        isrc: str | None = None,
    ) -> SocialLink:
        for link in self.links:
            if link.artist_id == artist_id and link.sound_id == details.sound_id:
                return link
        link = SocialLink(
            id=next(self._link_ids),
            artist_id=artist_id,
            sound_id=details.sound_id,
            unified_song_id=unified_song_id,
            sound_name=details.name,
            handle=details.author,
            isrc=isrc,
        )
        self.links.append(link)
        return link

    async def remove_artist(self, artist_id: int) -> bool:
        if self.artists.pop(artist_id, None) is None:
            return False
        self.songs.pop(artist_id, None)
        self.links = [link for link in self.links if link.artist_id != artist_id]
        return True

    async def remove_social_link(self, link_id: int) -> bool:
        remaining = [link for link in self.links if link.id != link_id]
        removed = len(remaining) != len(self.links)
        self.links = remaining
        return removed


class InMemoryCacheStore:
    def __init__(self) -> None:
        self.entries: dict[tuple[int, Region], CacheEntry] = {}
        self.writes = 0

    async def load_entry(self, entity_id: int, region: Region) -> CacheEntry | None:
        return self.entries.get((entity_id, region))

    async def replace_entry(self, entry: CacheEntry) -> None:
        self.entries[(entry.entity_id, entry.region)] = entry
        self.writes += 1


class InMemoryReactivityStore:
    def __init__(self) -> None:
        self.rows: dict[ReactivityKey, tuple[ReactivityResult, int, str | None, str | None]] = {}

    async def persist_reactivity(
        self,
        result: ReactivityResult,
        key: ReactivityKey,
        *,
        artist_id: int,
        song_name: str | None = None,
        artist_name: str | None = None,
    ) -> None:
        self.rows[key] = (result, artist_id, song_name, artist_name)

    async def top_reactive(self, limit: int, region: Region) -> list[StoredReactivity]:
        candidates = [
            (key, row)
            for key, row in self.rows.items()
            if key.region == region and row[0].grade != ReactivityGrade.NOT_AVAILABLE
        ]
        candidates.sort(
            key=lambda item: (item[1][0].correlation is None, -(item[1][0].correlation or 0.0))
        )
        return [
            StoredReactivity(
                rank=rank,
                unified_song_id=key.unified_song_id,
                song_name=song_name,
                artist_id=artist_id,
                artist_name=artist_name,
                correlation=result.correlation,
                grade=result.grade,
            )
            for rank, (key, (result, artist_id, song_name, artist_name)) in enumerate(
                candidates[:limit], start=1
            )
        ]


__all__ = [
    "InMemoryCacheStore",
    "InMemoryCatalog",
    "InMemoryMetricsSource",
    "InMemoryRegistry",
    "InMemoryReactivityStore",
]
