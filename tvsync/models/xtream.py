"""Xtream Codes response shapes and their canonical counterparts.

Every upstream field is optional at the boundary: panels disagree on types
(ids as numbers or strings, ``"0"`` vs ``0`` vs ``null``) and routinely omit
keys. Fallback rules are applied in the client's transform step, not here.
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tvsync.models.catalog import Episode, Series

PLAYER_API = "player_api.php"
XMLTV_API = "xmltv.php"

# Group title used when a stream's category id is unknown to the category list.
FALLBACK_GROUPS = {
    "live": "Live",
    "vod": "Films",
    "series": "Series",
}


class StreamKind(str, enum.Enum):
    LIVE = "live"
    VOD = "vod"
    SERIES = "series"


CATEGORY_ACTIONS = {
    StreamKind.LIVE: "get_live_categories",
    StreamKind.VOD: "get_vod_categories",
    StreamKind.SERIES: "get_series_categories",
}


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# Raw upstream shapes
# ---------------------------------------------------------------------------

class XtreamUserInfo(_Lenient):
    username: Optional[str] = None
    message: Optional[str] = None
    auth: Optional[int] = None
    status: Optional[str] = None
    exp_date: Optional[int] = None
    is_trial: Optional[str] = None
    active_cons: Optional[int] = None
    max_connections: Optional[int] = None
    created_at: Optional[int] = None
    allowed_output_formats: list[str] = Field(default_factory=list)

    _ints = field_validator("auth", "exp_date", "active_cons", "max_connections", "created_at", mode="before")(
        lambda v: _to_int(v)
    )
    _strs = field_validator("username", "message", "status", "is_trial", mode="before")(lambda v: _to_str(v))

    @field_validator("allowed_output_formats", mode="before")
    @classmethod
    def _formats(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(x) for x in v]


class XtreamServerInfo(_Lenient):
    url: Optional[str] = None
    port: Optional[str] = None
    https_port: Optional[str] = None
    server_protocol: Optional[str] = None
    timezone: Optional[str] = None
    timestamp_now: Optional[int] = None

    _strs = field_validator("url", "port", "https_port", "server_protocol", "timezone", mode="before")(
        lambda v: _to_str(v)
    )
    _ints = field_validator("timestamp_now", mode="before")(lambda v: _to_int(v))


class XtreamAuthResponse(_Lenient):
    user_info: Optional[XtreamUserInfo] = None
    server_info: Optional[XtreamServerInfo] = None


class XtreamCategory(_Lenient):
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    parent_id: Optional[int] = None

    _strs = field_validator("category_id", "category_name", mode="before")(lambda v: _to_str(v))
    _ints = field_validator("parent_id", mode="before")(lambda v: _to_int(v))


class XtreamLiveStream(_Lenient):
    num: Optional[int] = None
    name: Optional[str] = None
    stream_id: Optional[str] = None
    stream_icon: Optional[str] = None
    epg_channel_id: Optional[str] = None
    category_id: Optional[str] = None
    tv_archive: Optional[int] = None
    tv_archive_duration: Optional[int] = None

    _strs = field_validator("name", "stream_id", "stream_icon", "epg_channel_id", "category_id", mode="before")(
        lambda v: _to_str(v)
    )
    _ints = field_validator("num", "tv_archive", "tv_archive_duration", mode="before")(lambda v: _to_int(v))


class XtreamVodStream(_Lenient):
    num: Optional[int] = None
    name: Optional[str] = None
    stream_id: Optional[str] = None
    stream_icon: Optional[str] = None
    category_id: Optional[str] = None
    container_extension: Optional[str] = None
    rating_5based: Optional[float] = None

    _strs = field_validator("name", "stream_id", "stream_icon", "category_id", "container_extension", mode="before")(
        lambda v: _to_str(v)
    )
    _ints = field_validator("num", mode="before")(lambda v: _to_int(v))
    _floats = field_validator("rating_5based", mode="before")(lambda v: _to_float(v))


class XtreamSeriesItem(_Lenient):
    num: Optional[int] = None
    series_id: Optional[str] = None
    name: Optional[str] = None
    cover: Optional[str] = None
    plot: Optional[str] = None
    genre: Optional[str] = None
    releaseDate: Optional[str] = None
    rating_5based: Optional[float] = None
    backdrop_path: list[str] = Field(default_factory=list)
    category_id: Optional[str] = None

    _strs = field_validator("series_id", "name", "cover", "plot", "genre", "releaseDate", "category_id", mode="before")(
        lambda v: _to_str(v)
    )
    _ints = field_validator("num", mode="before")(lambda v: _to_int(v))
    _floats = field_validator("rating_5based", mode="before")(lambda v: _to_float(v))

    @field_validator("backdrop_path", mode="before")
    @classmethod
    def _backdrops(cls, v):
        if not v:
            return []
        if isinstance(v, str):
            return [v]
        return [str(x) for x in v if x]


class XtreamEpisodeInfo(_Lenient):
    movie_image: Optional[str] = None
    plot: Optional[str] = None
    duration_secs: Optional[int] = None

    _strs = field_validator("movie_image", "plot", mode="before")(lambda v: _to_str(v))
    _ints = field_validator("duration_secs", mode="before")(lambda v: _to_int(v))


class XtreamEpisode(_Lenient):
    id: Optional[str] = None
    episode_num: Optional[int] = None
    title: Optional[str] = None
    container_extension: Optional[str] = None
    season: Optional[int] = None
    info: Optional[XtreamEpisodeInfo] = None

    _strs = field_validator("id", "title", "container_extension", mode="before")(lambda v: _to_str(v))
    _ints = field_validator("episode_num", "season", mode="before")(lambda v: _to_int(v))

    @field_validator("info", mode="before")
    @classmethod
    def _info(cls, v):
        # Some panels send [] instead of {} for an empty info block.
        return v if isinstance(v, dict) else None


class XtreamSeriesInfo(_Lenient):
    info: Optional[XtreamSeriesItem] = None
    episodes: dict[str, list[XtreamEpisode]] = Field(default_factory=dict)

    @field_validator("info", mode="before")
    @classmethod
    def _info(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator("episodes", mode="before")
    @classmethod
    def _episodes(cls, v):
        if isinstance(v, dict):
            return {str(k): (eps if isinstance(eps, list) else []) for k, eps in v.items()}
        if isinstance(v, list):
            # Flat list form: group by each episode's own season field.
            grouped: dict[str, list] = {}
            for ep in v:
                if isinstance(ep, dict):
                    grouped.setdefault(str(ep.get("season", "1")), []).append(ep)
            return grouped
        return {}


class XtreamVodInfoBlock(_Lenient):
    name: Optional[str] = None
    o_name: Optional[str] = None
    movie_image: Optional[str] = None
    cover_big: Optional[str] = None
    plot: Optional[str] = None
    description: Optional[str] = None
    releasedate: Optional[str] = None
    release_date: Optional[str] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    cast: Optional[str] = None
    actors: Optional[str] = None
    duration: Optional[str] = None
    duration_secs: Optional[int] = None
    rating: Optional[float] = None
    tmdb_id: Optional[int] = None
    youtube_trailer: Optional[str] = None
    backdrop_path: list[str] = Field(default_factory=list)

    _strs = field_validator(
        "name", "o_name", "movie_image", "cover_big", "plot", "description", "releasedate",
        "release_date", "genre", "director", "cast", "actors", "duration", "youtube_trailer",
        mode="before",
    )(lambda v: _to_str(v))
    _ints = field_validator("duration_secs", "tmdb_id", mode="before")(lambda v: _to_int(v))
    _floats = field_validator("rating", mode="before")(lambda v: _to_float(v))
    _backdrops = field_validator("backdrop_path", mode="before")(
        lambda v: [] if not v else ([v] if isinstance(v, str) else [str(x) for x in v if x])
    )


class XtreamMovieData(_Lenient):
    stream_id: Optional[str] = None
    name: Optional[str] = None
    container_extension: Optional[str] = None
    category_id: Optional[str] = None

    _strs = field_validator("stream_id", "name", "container_extension", "category_id", mode="before")(
        lambda v: _to_str(v)
    )


class XtreamVodInfo(_Lenient):
    info: Optional[XtreamVodInfoBlock] = None
    movie_data: Optional[XtreamMovieData] = None

    _blocks = field_validator("info", "movie_data", mode="before")(lambda v: v if isinstance(v, dict) else None)


class XtreamEpgListing(_Lenient):
    id: Optional[str] = None
    epg_id: Optional[str] = None
    channel_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    start_timestamp: Optional[int] = None
    stop_timestamp: Optional[int] = None

    _strs = field_validator("id", "epg_id", "channel_id", "title", "description", "start", "end", mode="before")(
        lambda v: _to_str(v)
    )
    _ints = field_validator("start_timestamp", "stop_timestamp", mode="before")(lambda v: _to_int(v))


# ---------------------------------------------------------------------------
# Canonical outputs
# ---------------------------------------------------------------------------

class AccountInfo(BaseModel):
    username: str = ""
    status: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_trial: bool = False
    active_connections: int = 0
    max_connections: int = 1
    allowed_output_formats: list[str] = Field(default_factory=list)
    server_timezone: Optional[str] = None

    @classmethod
    def from_response(cls, resp: XtreamAuthResponse) -> "AccountInfo":
        ui = resp.user_info or XtreamUserInfo()
        si = resp.server_info or XtreamServerInfo()
        expires = datetime.fromtimestamp(ui.exp_date, tz=timezone.utc) if ui.exp_date else None
        return cls(
            username=ui.username or "",
            status=ui.status,
            message=ui.message,
            expires_at=expires,
            is_trial=ui.is_trial in ("1", "true", "True"),
            active_connections=ui.active_cons or 0,
            max_connections=ui.max_connections if ui.max_connections is not None else 1,
            allowed_output_formats=ui.allowed_output_formats,
            server_timezone=si.timezone,
        )

    @property
    def has_free_slot(self) -> bool:
        return self.active_connections < self.max_connections


class Category(BaseModel):
    id: str
    name: str
    kind: StreamKind
    parent_id: Optional[int] = None


class VodDetail(BaseModel):
    stream_id: str
    name: str = ""
    plot: Optional[str] = None
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    rating: Optional[float] = None
    duration: Optional[str] = None
    duration_secs: Optional[int] = None
    release_date: Optional[str] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    cast: Optional[str] = None
    tmdb_id: Optional[int] = None
    trailer: Optional[str] = None
    container_extension: str = "mp4"
    stream_url: str = ""


class SeriesDetail(BaseModel):
    """Series header plus episodes grouped by season, each season ordered by episode."""

    series: Series
    seasons: dict[int, list[Episode]] = Field(default_factory=dict)

    @property
    def episodes(self) -> list[Episode]:
        return [ep for season in sorted(self.seasons) for ep in self.seasons[season]]
