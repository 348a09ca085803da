"""Typed records exchanged between the engine and its collaborators."""
from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass


class Region(str, enum.Enum):
    """Metrics partition under which weekly and daily figures are tracked."""

    US = "US"
    GLOBAL = "GLOBAL"

    @classmethod
    def parse(cls, value: str | Region) -> Region:
        if isinstance(value, Region):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown region '{value}'") from None


class ReactivityGrade(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    NOT_AVAILABLE = "N/A"


@dataclass(frozen=True, slots=True)
class ArtistIdentity:
    external_id: str
    internal_account_id: int
    display_name: str | None = None
    image_url: str | None = None


@dataclass(frozen=True, slots=True)
class TrackRef:
    internal_track_id: int
    unified_song_id: int | None = None

    @property
    def is_mapped(self) -> bool:
        return self.unified_song_id is not None


@dataclass(frozen=True, slots=True)
class MappingCoverage:
    """How many of an account's tracks carry a unified song mapping."""

    total: int
    mapped: int

    @property
    def unmapped(self) -> int:
        return self.total - self.mapped


@dataclass(frozen=True, slots=True)
class WeeklyMetric:
    """One entity's weekly figures. ``None`` means no data, not zero."""

    entity_id: int
    this_week: float | None = None
    last_week: float | None = None


@dataclass(frozen=True, slots=True)
class DailyPoint:
    date: dt.date
    value: float | None = None


@dataclass(frozen=True, slots=True)
class AlignedSeries:
    """Two value sequences laid out on one contiguous daily axis."""

    dates: tuple[dt.date, ...]
    first: tuple[float | None, ...]
    second: tuple[float | None, ...]

    def __len__(self) -> int:
        return len(self.dates)

    def paired(self) -> list[tuple[float, float]]:
        """Return the value pairs for days where both series carry data."""

        return [
            (a, b)
            for a, b in zip(self.first, self.second)
            if a is not None and b is not None
        ]


@dataclass(frozen=True, slots=True)
class ReactivityResult:
    correlation: float | None
    grade: ReactivityGrade
    paired_samples: int = 0


@dataclass(frozen=True, slots=True)
class WeeklyMetricComparison:
    """Artist-level weekly totals produced by the aggregator.

    ``source`` records which path produced the figures: ``"track"`` for summed
    song rows, ``"account"`` for the artist-level fallback record and
    ``"empty"`` when neither path had data.
    """

    this_week: float
    last_week: float
    percent_change: float | None
    source: str = "track"
    rows_returned: int = 0
    rows_requested: int = 0

    @property
    def used_fallback(self) -> bool:
        return self.source != "track"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    entity_id: int
    region: Region
    this_week: float
    last_week: float
    percent_change: float | None
    computed_at: dt.datetime

    def is_fresh(self, now: dt.datetime, ttl: dt.timedelta) -> bool:
        return now - self.computed_at < ttl


@dataclass(frozen=True, slots=True)
class ReactivityKey:
    """Idempotency key for stored reactivity scores."""

    unified_song_id: int
    region: Region
    window_months: int


@dataclass(frozen=True, slots=True)
class TrackedArtist:
    id: int
    external_id: str
    internal_account_id: int
    name: str | None = None
    image_url: str | None = None


@dataclass(frozen=True, slots=True)
class ArtistSong:
    unified_song_id: int
    track_id: int | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class SocialLink:
    id: int
    artist_id: int
    sound_id: int
    unified_song_id: int | None = None
    sound_name: str | None = None
    handle: str | None = None
    isrc: str | None = None


@dataclass(frozen=True, slots=True)
class SoundDetails:
    sound_id: int
    name: str | None = None
    author: str | None = None
    track_id: int | None = None


@dataclass(frozen=True, slots=True)
class TrackDetails:
    track_id: int
    title: str | None = None
    isrc: str | None = None


@dataclass(frozen=True, slots=True)
class SoundReference:
    external_sound_id: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class StoredReactivity:
    rank: int
    unified_song_id: int
    song_name: str | None
    artist_id: int
    artist_name: str | None
    correlation: float | None
    grade: ReactivityGrade


__all__ = [
    "AlignedSeries",
    "ArtistIdentity",
    "ArtistSong",
    "CacheEntry",
    "DailyPoint",
    "MappingCoverage",
    "ReactivityGrade",
    "ReactivityKey",
    "ReactivityResult",
    "Region",
    "SocialLink",
    "SoundDetails",
    "SoundReference",
    "StoredReactivity",
    "TrackDetails",
    "TrackRef",
    "TrackedArtist",
    "WeeklyMetric",
    "WeeklyMetricComparison",
]
