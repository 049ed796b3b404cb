"""Pydantic models for the canonical content model (channels, movies, series, guide)."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

UNCATEGORIZED = "Uncategorized"


class ContentType(str, enum.Enum):
    LIVE = "live"
    MOVIE = "movie"
    SERIES_EPISODE = "series"


class SeriesInfo(BaseModel):
    """Series name and numbering extracted from an episode title."""
    model_config = ConfigDict(frozen=True)

    series_name: str
    season_number: int = Field(ge=1)
    episode_number: int = Field(ge=1)


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_type: ContentType
    series_info: Optional[SeriesInfo] = None


class EntryWarning(BaseModel):
    """A non-fatal, per-entry problem. Accumulated, never raised."""

    kind: str
    message: str
    line: Optional[int] = None
    ordinal: Optional[int] = None
    ref: Optional[str] = None


class RawEntry(BaseModel):
    """One playable unit as read from a provider, before series grouping."""

    display_name: str = ""
    stream_url: str
    logo_url: Optional[str] = None
    group_title: str = UNCATEGORIZED
    epg_id: Optional[str] = None
    catchup_days: int = Field(default=0, ge=0)
    catchup_source: Optional[str] = None
    channel_number: Optional[int] = None
    ordinal: int = Field(ge=0)
    content_type: ContentType = ContentType.LIVE
    series_name: Optional[str] = None
    season_number: Optional[int] = Field(default=None, ge=1)
    episode_number: Optional[int] = Field(default=None, ge=1)
    provider_id: Optional[str] = None
    container_extension: Optional[str] = None

    @model_validator(mode="after")
    def _check_series_fields(self) -> "RawEntry":
        if self.content_type == ContentType.SERIES_EPISODE:
            if self.series_name is None or self.season_number is None or self.episode_number is None:
                raise ValueError("series episodes need series_name, season_number and episode_number")
        return self


class Channel(BaseModel):
    """A live entry promoted to a persisted entity."""

    id: str
    source_id: str
    name: str = ""
    stream_url: str
    logo_url: Optional[str] = None
    group_title: str = UNCATEGORIZED
    epg_id: Optional[str] = None
    catchup_days: int = 0
    catchup_source: Optional[str] = None
    channel_number: Optional[int] = None
    order: int = 0
    provider_id: Optional[str] = None
    # User-owned, never written by sync.
    is_favorite: bool = False

    def catalog_fields(self) -> dict:
        return self.model_dump(exclude={"is_favorite"})


class Movie(BaseModel):
    id: str
    source_id: str
    name: str = ""
    stream_url: str
    logo_url: Optional[str] = None
    group_title: str = UNCATEGORIZED
    order: int = 0
    provider_id: Optional[str] = None
    container_extension: Optional[str] = None
    rating: Optional[float] = None
    is_favorite: bool = False

    def catalog_fields(self) -> dict:
        return self.model_dump(exclude={"is_favorite"})


class Episode(BaseModel):
    season_number: int = Field(ge=1)
    episode_number: int = Field(ge=1)
    name: str = ""
    stream_url: str
    ordinal: int = 0
    provider_id: Optional[str] = None
    container_extension: Optional[str] = None
    plot: Optional[str] = None
    duration_secs: Optional[int] = None
    logo_url: Optional[str] = None

    @property
    def key(self) -> tuple[int, int]:
        return self.season_number, self.episode_number


class Series(BaseModel):
    """A named series within one source; episodes unique on (season, episode)."""

    id: str
    source_id: str
    name: str
    group_title: str = UNCATEGORIZED
    logo_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    plot: Optional[str] = None
    genre: Optional[str] = None
    rating: Optional[float] = None
    release_year: Optional[int] = None
    order: int = 0
    provider_id: Optional[str] = None
    episodes: list[Episode] = Field(default_factory=list)
    is_favorite: bool = False

    def catalog_fields(self) -> dict:
        return self.model_dump(exclude={"is_favorite", "episodes"})

    @property
    def seasons(self) -> list[int]:
        return sorted({ep.season_number for ep in self.episodes})


class EpgChannel(BaseModel):
    id: str
    display_name: str
    icon_url: Optional[str] = None


class EpgProgram(BaseModel):
    """A guide entry, keyed by the provider's EPG channel id (not by Channel.id)."""

    channel_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    category: Optional[str] = None
    icon_url: Optional[str] = None

    @model_validator(mode="after")
    def _check_time_range(self) -> "EpgProgram":
        if self.start_time >= self.end_time:
            raise ValueError("programme must end after it starts")
        return self


class M3UParseResult(BaseModel):
    """Output of :func:`tvsync.services.m3u_service.parse_m3u`.

    ``series`` maps series name to its episodes, ordered by name, each list
    ordered by (season, episode).
    """

    entries: list[RawEntry] = Field(default_factory=list)
    channels: list[RawEntry] = Field(default_factory=list)
    movies: list[RawEntry] = Field(default_factory=list)
    series: dict[str, list[RawEntry]] = Field(default_factory=dict)
    warnings: list[EntryWarning] = Field(default_factory=list)

    @property
    def total_items(self) -> int:
        return len(self.entries)


class XmltvParseResult(BaseModel):
    channels: list[EpgChannel] = Field(default_factory=list)
    programs: list[EpgProgram] = Field(default_factory=list)
    warnings: list[EntryWarning] = Field(default_factory=list)
