"""Interfaces the engine consumes from its data-access collaborators.

Implementations map their own rows onto the records in :mod:`records`; the
engine only ever receives those records. A lookup without a match returns
``None`` (or an empty sequence) and a timed-out fetch behaves the same way.
Collaborator failures surface as :class:`~reactivity_engine.errors.UpstreamFailure`.
"""
from __future__ import annotations

import datetime as dt
from typing import Mapping, Protocol, Sequence

from .records import (
    ArtistIdentity,
    ArtistSong,
    CacheEntry,
    DailyPoint,
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


class MetricsSource(Protocol):
    async def fetch_weekly_metrics_by_ids(
        self, ids: Sequence[int], region: Region
    ) -> list[WeeklyMetric]: ...

    async def fetch_weekly_metrics_by_account(
        self, account_id: int, region: Region
    ) -> WeeklyMetric | None: ...

    async def fetch_daily_streaming(
        self, unified_song_id: int, region: Region, start: dt.date, end: dt.date
    ) -> list[DailyPoint]: ...

    async def fetch_weekly_streaming_series(
        self, unified_song_ids: Sequence[int], region: Region, start: dt.date, end: dt.date
    ) -> list[DailyPoint]: ...

    async def fetch_daily_social_activity(
        self, sound_ids: Sequence[int], start: dt.date, end: dt.date
    ) -> list[DailyPoint]: ...

    async def fetch_daily_social_activity_by_sound(
        self, sound_ids: Sequence[int], start: dt.date, end: dt.date
    ) -> Mapping[int, list[DailyPoint]]: ...


class CatalogSource(Protocol):
    async def resolve_external_account(self, external_id: str) -> ArtistIdentity | None: ...

    async def list_track_refs(self, account_id: int) -> list[TrackRef]: ...

    async def resolve_sound_id(self, external_sound_id: str) -> int | None: ...

    async def fetch_sound_details(self, sound_id: int) -> SoundDetails | None: ...

    async def fetch_track_details(self, track_ids: Sequence[int]) -> list[TrackDetails]: ...


class ArtistRegistry(Protocol):
    async def list_artists(self) -> list[TrackedArtist]: ...

    async def get_artist(self, artist_id: int) -> TrackedArtist | None: ...

    async def get_artist_by_external_id(self, external_id: str) -> TrackedArtist | None: ...

    async def create_artist(self, identity: ArtistIdentity) -> TrackedArtist: ...

    async def list_songs(self, artist_id: int) -> list[ArtistSong]: ...

    async def replace_songs(self, artist_id: int, songs: Sequence[ArtistSong]) -> None: ...

    async def list_social_links(
        self, artist_id: int, unified_song_id: int | None = None
    ) -> list[SocialLink]: ...

    async def add_social_link(
        self,
        artist_id: int,
        details: SoundDetails,
        *,
        unified_song_id: int | None = None,
        isrc: str | None = None,
    ) -> SocialLink: ...

    async def remove_artist(self, artist_id: int) -> bool: ...

    async def remove_social_link(self, link_id: int) -> bool: ...


class CacheStore(Protocol):
    async def load_entry(self, entity_id: int, region: Region) -> CacheEntry | None: ...

    async def replace_entry(self, entry: CacheEntry) -> None: ...


class ReactivitySink(Protocol):
    async def persist_reactivity(
        self,
        result: ReactivityResult,
        key: ReactivityKey,
        *,
        artist_id: int,
        song_name: str | None = None,
        artist_name: str | None = None,
    ) -> None: ...

    async def top_reactive(self, limit: int, region: Region) -> list[StoredReactivity]: ...


__all__ = ["ArtistRegistry", "CacheStore", "CatalogSource", "MetricsSource", "ReactivitySink"]
