"""SQLAlchemy models for the warehouse tables read by the engine and the tables it owns."""
from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

STREAMING_METRIC_TYPE = "Streaming On-Demand Audio"


class Base(DeclarativeBase):
    pass


# Warehouse side


class StreamingAccount(Base):
    __tablename__ = "streaming_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(256))
    image_url: Mapped[Optional[str]] = mapped_column(String(512))

    tracks: Mapped[list["StreamingAccountTrack"]] = relationship(back_populates="account")


class StreamingTrack(Base):
    __tablename__ = "streaming_tracks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[Optional[str]] = mapped_column(String(256))
    isrc: Mapped[Optional[str]] = mapped_column(String(16), index=True)


class StreamingAccountTrack(Base):
    __tablename__ = "streaming_account_tracks"
    __table_args__ = (
        UniqueConstraint("account_id", "track_id", name="uq_account_track"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("streaming_accounts.id"), nullable=False, index=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("streaming_tracks.id"), nullable=False)

    account: Mapped[StreamingAccount] = relationship(back_populates="tracks")


class UnifiedSongTrack(Base):
    __tablename__ = "unified_song_tracks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("streaming_tracks.id"), unique=True, nullable=False)
    unified_song_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


class DailySongMetric(Base):
    __tablename__ = "daily_song_metrics"
    __table_args__ = (
        Index("ix_daily_song_metric_lookup", "unified_song_id", "region", "metric_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unified_song_id: Mapped[int] = mapped_column(Integer, nullable=False)
    region: Mapped[str] = mapped_column(String(16), nullable=False)
    metric_type: Mapped[str] = mapped_column(String(64), nullable=False, default=STREAMING_METRIC_TYPE)
    metric_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    this_day: Mapped[Optional[float]] = mapped_column(Float)
    this_week: Mapped[Optional[float]] = mapped_column(Float)
    last_week: Mapped[Optional[float]] = mapped_column(Float)
    end_of_week: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    loaded_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, server_default=func.current_timestamp())


class AccountWeeklyMetric(Base):
    __tablename__ = "account_weekly_metrics"
    __table_args__ = (
        Index("ix_account_weekly_lookup", "account_id", "region", "metric_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("streaming_accounts.id"), nullable=False)
    region: Mapped[str] = mapped_column(String(16), nullable=False)
    metric_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    this_period: Mapped[Optional[float]] = mapped_column(Float)
    last_period: Mapped[Optional[float]] = mapped_column(Float)


class SocialSound(Base):
    __tablename__ = "social_sounds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(256))
    author: Mapped[Optional[str]] = mapped_column(String(256))
    track_id: Mapped[Optional[int]] = mapped_column(ForeignKey("streaming_tracks.id"))

    metrics: Mapped[list["SocialSoundMetric"]] = relationship(back_populates="sound")


class SocialSoundMetric(Base):
    __tablename__ = "social_sound_metrics"
    __table_args__ = (
        Index("ix_social_sound_metric_lookup", "sound_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sound_id: Mapped[int] = mapped_column(ForeignKey("social_sounds.id"), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    post_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sound: Mapped[SocialSound] = relationship(back_populates="metrics")


# Engine side


class TrackedArtistRow(Base):
    __tablename__ = "tracked_artists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    internal_account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(256))
    image_url: Mapped[Optional[str]] = mapped_column(String(512))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, server_default=func.current_timestamp())

    songs: Mapped[list["ArtistSongRow"]] = relationship(
        back_populates="artist", cascade="all, delete-orphan"
    )
    links: Mapped[list["SocialLinkRow"]] = relationship(
        back_populates="artist", cascade="all, delete-orphan"
    )


class ArtistSongRow(Base):
    __tablename__ = "artist_songs"
    __table_args__ = (
        UniqueConstraint("artist_id", "unified_song_id", name="uq_artist_song"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("tracked_artists.id"), nullable=False)
    unified_song_id: Mapped[int] = mapped_column(Integer, nullable=False)
    track_id: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[Optional[str]] = mapped_column(String(256))

    artist: Mapped[TrackedArtistRow] = relationship(back_populates="songs")


class SocialLinkRow(Base):
    __tablename__ = "social_links"
    __table_args__ = (
        UniqueConstraint("artist_id", "sound_id", name="uq_artist_sound"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artist_id: Mapped[int] = mapped_column(ForeignKey("tracked_artists.id"), nullable=False)
    sound_id: Mapped[int] = mapped_column(Integer, nullable=False)
    unified_song_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    sound_name: Mapped[Optional[str]] = mapped_column(String(256))
    handle: Mapped[Optional[str]] = mapped_column(String(256))
    isrc: Mapped[Optional[str]] = mapped_column(String(16))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, server_default=func.current_timestamp())

    artist: Mapped[TrackedArtistRow] = relationship(back_populates="links")


class MetricsCacheRow(Base):
    __tablename__ = "metrics_cache"

    entity_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    region: Mapped[str] = mapped_column(String(16), primary_key=True)
    this_week: Mapped[float] = mapped_column(Float, nullable=False)
    last_week: Mapped[float] = mapped_column(Float, nullable=False)
    percent_change: Mapped[Optional[float]] = mapped_column(Float)
    computed_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SongReactivityScore(Base):
    __tablename__ = "song_reactivity_scores"
    __table_args__ = (
        UniqueConstraint("unified_song_id", "region", "window_months", name="uq_reactivity_score"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unified_song_id: Mapped[int] = mapped_column(Integer, nullable=False)
    region: Mapped[str] = mapped_column(String(16), nullable=False)
    window_months: Mapped[int] = mapped_column(Integer, nullable=False)
    artist_id: Mapped[int] = mapped_column(Integer, nullable=False)
    song_name: Mapped[Optional[str]] = mapped_column(String(256))
    artist_name: Mapped[Optional[str]] = mapped_column(String(256))
    correlation: Mapped[Optional[float]] = mapped_column(Float)
    grade: Mapped[str] = mapped_column(String(8), nullable=False)
    calculated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)


__all__ = [
    "AccountWeeklyMetric",
    "ArtistSongRow",
    "Base",
    "DailySongMetric",
    "MetricsCacheRow",
    "STREAMING_METRIC_TYPE",
    "SocialLinkRow",
    "SocialSound",
    "SocialSoundMetric",
    "SongReactivityScore",
    "StreamingAccount",
    "StreamingAccountTrack",
    "StreamingTrack",
    "TrackedArtistRow",
    "UnifiedSongTrack",
]
