"""Xtream service — Xtream Codes API client and playback URL builders.

The client is stateless apart from its connection parameters: it maps each
``player_api.php`` endpoint onto the canonical content model. Category
lookups are request-scoped and passed in explicitly, they are never cached
on the client.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Union
from urllib.parse import urlencode

from pydantic import ValidationError

from tvsync.errors import AuthenticationFailed, MalformedInput, TransportError
from tvsync.models.catalog import (
    ContentType,
    EntryWarning,
    EpgProgram,
    Episode,
    RawEntry,
    Series,
)
from tvsync.models.xtream import (
    CATEGORY_ACTIONS,
    FALLBACK_GROUPS,
    PLAYER_API,
    XMLTV_API,
    AccountInfo,
    Category,
    SeriesDetail,
    StreamKind,
    VodDetail,
    XtreamAuthResponse,
    XtreamCategory,
    XtreamEpgListing,
    XtreamLiveStream,
    XtreamSeriesInfo,
    XtreamSeriesItem,
    XtreamVodInfo,
    XtreamVodStream,
)

if TYPE_CHECKING:
    from tvsync.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER = "mp4"
CATCHUP_TIME_FORMAT = "%Y-%m-%d:%H-%M"


# ---------------------------------------------------------------------------
# URL builders
# ---------------------------------------------------------------------------

def normalize_server_url(server: str) -> str:
    """Trim, strip trailing slashes and default the scheme to ``http://``."""
    url = (server or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url


def build_live_url(server: str, username: str, password: str, stream_id: Union[int, str]) -> str:
    return f"{normalize_server_url(server)}/live/{username}/{password}/{stream_id}.m3u8"


def build_vod_url(server: str, username: str, password: str, stream_id: Union[int, str], extension: str) -> str:
    return f"{normalize_server_url(server)}/movie/{username}/{password}/{stream_id}.{extension or DEFAULT_CONTAINER}"


def build_series_url(server: str, username: str, password: str, episode_id: Union[int, str], extension: str) -> str:
    return f"{normalize_server_url(server)}/series/{username}/{password}/{episode_id}.{extension or DEFAULT_CONTAINER}"


def build_catchup_url(
    server: str,
    username: str,
    password: str,
    stream_id: Union[int, str],
    start_time: datetime,
    duration_minutes: int,
) -> str:
    """Timeshift URL: ``{server}/timeshift/{user}/{pass}/{minutes}/{yyyy-MM-dd:HH-mm}/{id}.m3u8``.

    Naive *start_time* values are taken as UTC.
    """
    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=timezone.utc)
    start = start_time.astimezone(timezone.utc).strftime(CATCHUP_TIME_FORMAT)
    return f"{normalize_server_url(server)}/timeshift/{username}/{password}/{duration_minutes}/{start}/{stream_id}.m3u8"


def build_catchup_url_simple(
    server: str,
    username: str,
    password: str,
    stream_id: Union[int, str],
    start_time: datetime,
) -> str:
    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=timezone.utc)
    start = int(start_time.timestamp())
    return (
        f"{normalize_server_url(server)}/streaming/timeshift.php"
        f"?username={username}&password={password}&stream={stream_id}&start={start}"
    )


def decode_base64_text(value: Optional[str]) -> str:
    """Short-EPG titles come base64-encoded; anything that doesn't decode is returned as-is."""
    if not value:
        return ""
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return value


def stable_id(*parts: Any) -> str:
    digest = hashlib.sha1("\x1f".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return digest[:16]


def series_id_for(source_id: str, name: str) -> str:
    """Series are keyed by name within a source, whatever the provider calls them."""
    return f"ser-{stable_id(source_id, name)}"


def build_category_map(categories: list[Category]) -> dict[str, str]:
    return {cat.id: cat.name for cat in categories}


def _release_year(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    head = text.strip()[:4]
    return int(head) if head.isdigit() else None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class XtreamCodesClient:
    """Request/response mapper over one Xtream Codes account."""

    def __init__(
        self,
        server: str,
        username: str,
        password: str,
        http_client: "HttpClientService",
        timeout: Optional[float] = None,
    ):
        self.server = normalize_server_url(server)
        self.username = username
        self.password = password
        self.http_client = http_client
        self.timeout = timeout

    # -- URLs -----------------------------------------------------------

    @property
    def api_url(self) -> str:
        return f"{self.server}/{PLAYER_API}"

    def xmltv_url(self) -> str:
        query = urlencode({"username": self.username, "password": self.password})
        return f"{self.server}/{XMLTV_API}?{query}"

    def live_url(self, stream_id: Union[int, str]) -> str:
        return build_live_url(self.server, self.username, self.password, stream_id)

    def vod_url(self, stream_id: Union[int, str], extension: Optional[str]) -> str:
        return build_vod_url(self.server, self.username, self.password, stream_id, extension or DEFAULT_CONTAINER)

    def series_url(self, episode_id: Union[int, str], extension: Optional[str]) -> str:
        return build_series_url(self.server, self.username, self.password, episode_id, extension or DEFAULT_CONTAINER)

    def catchup_url(self, stream_id: Union[int, str], start_time: datetime, duration_minutes: int) -> str:
        return build_catchup_url(self.server, self.username, self.password, stream_id, start_time, duration_minutes)

    # -- transport --------------------------------------------------------

    async def _call(self, action: Optional[str] = None, **extra: Any) -> Any:
        params = {"username": self.username, "password": self.password}
        if action:
            params["action"] = action
        params.update({k: str(v) for k, v in extra.items() if v is not None})
        response = await self.http_client.get(self.api_url, params=params, timeout=self.timeout)
        if not response.ok:
            raise TransportError(
                f"Xtream {action or 'auth'} failed with HTTP {response.status}",
                status_code=response.status,
                url=self.api_url,
            )
        try:
            return json.loads(response.content)
        except ValueError as e:
            raise MalformedInput(f"Xtream {action or 'auth'} returned invalid JSON") from e

    async def _call_list(self, action: str, **extra: Any) -> list:
        data = await self._call(action, **extra)
        if data is None:
            return []
        if isinstance(data, dict):
            # Some panels answer an empty list as {} or wrap rows in an object.
            return [v for v in data.values() if isinstance(v, dict)]
        if not isinstance(data, list):
            raise MalformedInput(f"Xtream {action} returned {type(data).__name__}, expected a list")
        return [item for item in data if isinstance(item, dict)]

    # -- operations -------------------------------------------------------

    async def authenticate(self) -> AccountInfo:
        """Validate credentials.

        Non-2xx, unparseable JSON and ``user_info.auth != 1`` all raise
        :class:`AuthenticationFailed`; network problems raise
        :class:`TransportError`.
        """
        try:
            data = await self._call()
        except TransportError as e:
            if e.status_code is None:
                raise
            raise AuthenticationFailed(f"Provider rejected login (HTTP {e.status_code})") from e
        except MalformedInput as e:
            raise AuthenticationFailed("Provider returned an unreadable login response") from e

        if not isinstance(data, dict):
            raise AuthenticationFailed("Provider returned an unexpected login response")
        try:
            resp = XtreamAuthResponse.model_validate(data)
        except ValidationError as e:
            raise AuthenticationFailed("Provider returned an unexpected login response") from e
        if resp.user_info is None or resp.user_info.auth != 1:
            message = resp.user_info.message if resp.user_info and resp.user_info.message else "invalid credentials"
            raise AuthenticationFailed(f"Authentication failed: {message}")

        account = AccountInfo.from_response(resp)
        logger.info(f"Authenticated '{account.username}' (status={account.status}, max_connections={account.max_connections})")
        return account

    async def list_categories(self, kind: StreamKind) -> list[Category]:
        rows = await self._call_list(CATEGORY_ACTIONS[kind])
        categories: list[Category] = []
        for row in rows:
            try:
                cat = XtreamCategory.model_validate(row)
            except ValidationError:
                continue
            if cat.category_id is None:
                continue
            categories.append(Category(
                id=cat.category_id,
                name=cat.category_name or "",
                kind=kind,
                parent_id=cat.parent_id,
            ))
        return categories

    def _group_for(
        self,
        kind: StreamKind,
        category_id: Optional[str],
        category_map: dict[str, str],
        warnings: Optional[list[EntryWarning]],
        ref: Optional[str],
    ) -> str:
        name = category_map.get(category_id or "")
        if name:
            return name
        if warnings is not None and category_id:
            warnings.append(EntryWarning(
                kind="unknown_category",
                message=f"{kind.value} item '{ref}' references unknown category {category_id}",
                ref=ref,
            ))
        return FALLBACK_GROUPS[kind.value]

    async def list_live_streams(
        self,
        category_map: Optional[dict[str, str]] = None,
        warnings: Optional[list[EntryWarning]] = None,
    ) -> list[RawEntry]:
        if category_map is None:
            category_map = build_category_map(await self.list_categories(StreamKind.LIVE))
        rows = await self._call_list("get_live_streams")
        entries: list[RawEntry] = []
        for row in rows:
            try:
                stream = XtreamLiveStream.model_validate(row)
            except ValidationError:
                stream = None
            if stream is None or not stream.stream_id:
                if warnings is not None:
                    warnings.append(EntryWarning(kind="invalid_entry", message="Live stream without stream_id; skipped"))
                continue
            name = stream.name or ""
            entries.append(RawEntry(
                display_name=name,
                stream_url=self.live_url(stream.stream_id),
                logo_url=stream.stream_icon,
                group_title=self._group_for(StreamKind.LIVE, stream.category_id, category_map, warnings, name),
                epg_id=stream.epg_channel_id,
                catchup_days=max(stream.tv_archive_duration or 0, 0) if stream.tv_archive else 0,
                channel_number=stream.num,
                ordinal=len(entries),
                content_type=ContentType.LIVE,
                provider_id=stream.stream_id,
            ))
        return entries

    async def list_vod_streams(
        self,
        category_map: Optional[dict[str, str]] = None,
        warnings: Optional[list[EntryWarning]] = None,
    ) -> list[RawEntry]:
        if category_map is None:
            category_map = build_category_map(await self.list_categories(StreamKind.VOD))
        rows = await self._call_list("get_vod_streams")
        entries: list[RawEntry] = []
        for row in rows:
            try:
                vod = XtreamVodStream.model_validate(row)
            except ValidationError:
                vod = None
            if vod is None or not vod.stream_id:
                if warnings is not None:
                    warnings.append(EntryWarning(kind="invalid_entry", message="VOD stream without stream_id; skipped"))
                continue
            name = vod.name or ""
            extension = vod.container_extension or DEFAULT_CONTAINER
            entries.append(RawEntry(
                display_name=name,
                stream_url=self.vod_url(vod.stream_id, extension),
                logo_url=vod.stream_icon,
                group_title=self._group_for(StreamKind.VOD, vod.category_id, category_map, warnings, name),
                ordinal=len(entries),
                content_type=ContentType.MOVIE,
                provider_id=vod.stream_id,
                container_extension=extension,
            ))
        return entries

    async def list_series(
        self,
        source_id: str = "",
        category_map: Optional[dict[str, str]] = None,
        warnings: Optional[list[EntryWarning]] = None,
    ) -> list[Series]:
        """Series headers (no episodes); episodes come from :meth:`get_series_detail`."""
        if category_map is None:
            category_map = build_category_map(await self.list_categories(StreamKind.SERIES))
        rows = await self._call_list("get_series")
        series: list[Series] = []
        for row in rows:
            try:
                item = XtreamSeriesItem.model_validate(row)
            except ValidationError:
                item = None
            if item is None or not item.series_id:
                if warnings is not None:
                    warnings.append(EntryWarning(kind="invalid_entry", message="Series without series_id; skipped"))
                continue
            name = (item.name or "").strip()
            series.append(self._series_header(
                item, source_id, len(series),
                self._group_for(StreamKind.SERIES, item.category_id, category_map, warnings, name),
            ))
        return series

    def _series_header(self, item: XtreamSeriesItem, source_id: str, order: int, group: str) -> Series:
        name = (item.name or "").strip()
        return Series(
            id=series_id_for(source_id, name),
            source_id=source_id,
            name=name,
            group_title=group,
            logo_url=item.cover,
            backdrop_url=item.backdrop_path[0] if item.backdrop_path else None,
            plot=item.plot,
            genre=item.genre,
            rating=item.rating_5based or None,
            release_year=_release_year(item.releaseDate),
            order=order,
            provider_id=item.series_id,
        )

    async def get_vod_detail(self, vod_id: Union[int, str]) -> VodDetail:
        data = await self._call("get_vod_info", vod_id=vod_id)
        try:
            resp = XtreamVodInfo.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as e:
            raise MalformedInput(f"Unreadable VOD detail for {vod_id}") from e
        info = resp.info
        movie = resp.movie_data
        extension = (movie.container_extension if movie else None) or DEFAULT_CONTAINER
        stream_id = (movie.stream_id if movie and movie.stream_id else None) or str(vod_id)
        return VodDetail(
            stream_id=stream_id,
            name=(info.name if info else None) or (movie.name if movie else None) or "",
            plot=(info.plot or info.description) if info else None,
            poster_url=(info.movie_image or info.cover_big) if info else None,
            backdrop_url=info.backdrop_path[0] if info and info.backdrop_path else None,
            rating=info.rating if info else None,
            duration=info.duration if info else None,
            duration_secs=info.duration_secs if info else None,
            release_date=(info.releasedate or info.release_date) if info else None,
            genre=info.genre if info else None,
            director=info.director if info else None,
            cast=(info.cast or info.actors) if info else None,
            tmdb_id=info.tmdb_id if info else None,
            trailer=info.youtube_trailer if info else None,
            container_extension=extension,
            stream_url=self.vod_url(stream_id, extension),
        )

    async def get_series_detail(self, series_id: Union[int, str], source_id: str = "") -> SeriesDetail:
        """Episodes grouped by season as declared by the provider.

        Within a season a repeated episode number keeps the last one listed.
        """
        data = await self._call("get_series_info", series_id=series_id)
        try:
            resp = XtreamSeriesInfo.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as e:
            raise MalformedInput(f"Unreadable series detail for {series_id}") from e

        item = resp.info or XtreamSeriesItem()
        if not item.series_id:
            item = item.model_copy(update={"series_id": str(series_id)})
        header = self._series_header(item, source_id, 0, FALLBACK_GROUPS["series"])

        seasons: dict[int, dict[int, Episode]] = {}
        ordinal = 0
        for season_key, episodes in resp.episodes.items():
            for ep in episodes:
                if not ep.id:
                    continue
                season = ep.season or _season_from_key(season_key)
                number = ep.episode_num
                if not season or season < 1 or not number or number < 1:
                    continue
                extension = ep.container_extension or DEFAULT_CONTAINER
                info = ep.info
                seasons.setdefault(season, {})[number] = Episode(
                    season_number=season,
                    episode_number=number,
                    name=ep.title or f"Episode {number}",
                    stream_url=self.series_url(ep.id, extension),
                    ordinal=ordinal,
                    provider_id=ep.id,
                    container_extension=extension,
                    plot=info.plot if info else None,
                    duration_secs=info.duration_secs if info else None,
                    logo_url=info.movie_image if info else None,
                )
                ordinal += 1

        ordered = {s: [seasons[s][n] for n in sorted(seasons[s])] for s in sorted(seasons)}
        header = header.model_copy(update={"episodes": [ep for s in ordered for ep in ordered[s]]})
        return SeriesDetail(series=header, seasons=ordered)

    async def get_short_epg(
        self,
        stream_id: Union[int, str],
        epg_channel_id: Optional[str] = None,
        limit: int = 10,
        warnings: Optional[list[EntryWarning]] = None,
    ) -> list[EpgProgram]:
        data = await self._call("get_short_epg", stream_id=stream_id, limit=limit)
        listings = data.get("epg_listings") if isinstance(data, dict) else None
        programs: list[EpgProgram] = []
        for row in listings or []:
            if not isinstance(row, dict):
                continue
            try:
                listing = XtreamEpgListing.model_validate(row)
            except ValidationError:
                continue
            start = _listing_time(listing.start_timestamp, listing.start)
            stop = _listing_time(listing.stop_timestamp, listing.end)
            title = decode_base64_text(listing.title)
            if start is None or stop is None or stop <= start:
                if warnings is not None:
                    warnings.append(EntryWarning(
                        kind="invalid_time_range",
                        message=f"Short EPG entry '{title}' has an invalid time range; rejected",
                        ref=str(stream_id),
                    ))
                continue
            programs.append(EpgProgram(
                channel_id=epg_channel_id or listing.epg_id or listing.channel_id or str(stream_id),
                title=title or "Untitled",
                description=decode_base64_text(listing.description) or None,
                start_time=start,
                end_time=stop,
            ))
        return programs


def _season_from_key(key: str) -> Optional[int]:
    try:
        return int(key)
    except (TypeError, ValueError):
        return None


def _listing_time(timestamp: Optional[int], text: Optional[str]) -> Optional[datetime]:
    if timestamp:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    if text:
        try:
            parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
        return parsed.replace(tzinfo=timezone.utc)
    return None
