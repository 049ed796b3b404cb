"""Tests for the Xtream Codes client and URL builders (upstream mocked with httpx.MockTransport)."""

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tvsync.errors import AuthenticationFailed, TransportError
from tvsync.models.catalog import ContentType
from tvsync.models.xtream import StreamKind
from tvsync.services.http_client import HttpClientService
from tvsync.services.xtream_service import (
    XtreamCodesClient,
    build_catchup_url,
    build_catchup_url_simple,
    build_live_url,
    build_series_url,
    build_vod_url,
    decode_base64_text,
    normalize_server_url,
)

SERVER = "http://host:8080"

AUTH_OK = {
    "user_info": {
        "username": "u",
        "auth": 1,
        "status": "Active",
        "exp_date": "1767225600",
        "max_connections": "2",
        "active_cons": "1",
        "allowed_output_formats": ["m3u8", "ts"],
    },
    "server_info": {"url": "host", "port": 8080, "timezone": "Europe/Madrid"},
}

LIVE_CATEGORIES = [{"category_id": "1", "category_name": "News", "parent_id": 0}]
LIVE_STREAMS = [
    {
        "num": 1,
        "name": "CNN",
        "stream_id": 42,
        "stream_icon": "http://logo/cnn.png",
        "epg_channel_id": "cnn.us",
        "category_id": "1",
        "tv_archive": 1,
        "tv_archive_duration": "3",
    },
    {"num": 2, "name": "Mystery", "stream_id": "43", "category_id": "99"},
    {"name": "No id"},
]
VOD_STREAMS = [
    {"name": "Inception", "stream_id": 7, "category_id": "5", "container_extension": "mkv"},
    {"name": "Default ext", "stream_id": 8, "category_id": "5"},
]
SERIES = [
    {"series_id": 300, "name": "Show", "cover": "http://img/show.jpg", "category_id": "7",
     "releaseDate": "2019-05-01", "rating_5based": "4.5", "backdrop_path": ["http://img/bd.jpg"]},
]


def _routes(overrides=None):
    routes = {
        None: AUTH_OK,
        "get_live_categories": LIVE_CATEGORIES,
        "get_live_streams": LIVE_STREAMS,
        "get_vod_categories": [{"category_id": "5", "category_name": "Action"}],
        "get_vod_streams": VOD_STREAMS,
        "get_series_categories": [],
        "get_series": SERIES,
    }
    routes.update(overrides or {})
    return routes


def _client(routes, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/player_api.php"
        action = request.url.params.get("action")
        if calls is not None:
            calls.append(action)
        body = routes.get(action, [])
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)

    http = HttpClientService(transport=httpx.MockTransport(handler))
    return XtreamCodesClient(SERVER + "/", "u", "p", http)


def run(coro):
    return asyncio.run(coro)


class TestUrlBuilders:
    """Deterministic playback URL construction."""

    def test_live_url(self):
        assert build_live_url("http://host:8080", "u", "p", 42) == "http://host:8080/live/u/p/42.m3u8"

    def test_vod_and_series_urls(self):
        assert build_vod_url(SERVER, "u", "p", 7, "mkv") == "http://host:8080/movie/u/p/7.mkv"
        assert build_series_url(SERVER, "u", "p", 1001, "mp4") == "http://host:8080/series/u/p/1001.mp4"

    def test_normalize_server_url(self):
        assert normalize_server_url("host.com/") == "http://host.com"
        assert normalize_server_url(" https://host.com:443// ") == "https://host.com:443"
        assert build_live_url("host.com/", "u", "p", 1) == "http://host.com/live/u/p/1.m3u8"

    def test_catchup_url(self):
        start = datetime(2024, 1, 1, 20, 30, tzinfo=timezone.utc)
        assert build_catchup_url(SERVER, "u", "p", 42, start, 60) == (
            "http://host:8080/timeshift/u/p/60/2024-01-01:20-30/42.m3u8"
        )

    def test_catchup_url_converts_to_utc(self):
        start = datetime(2024, 1, 1, 22, 30, tzinfo=timezone(timedelta(hours=2)))
        assert "/2024-01-01:20-30/" in build_catchup_url(SERVER, "u", "p", 42, start, 30)

    def test_catchup_url_simple(self):
        start = datetime(2024, 1, 1, 20, 30, tzinfo=timezone.utc)
        assert build_catchup_url_simple(SERVER, "u", "p", 42, start) == (
            "http://host:8080/streaming/timeshift.php?username=u&password=p&stream=42&start=1704141000"
        )

    def test_xmltv_url(self):
        client = XtreamCodesClient("host:8080", "u", "p", HttpClientService())
        assert client.xmltv_url() == "http://host:8080/xmltv.php?username=u&password=p"

    def test_decode_base64_text(self):
        encoded = base64.b64encode("Noticias".encode()).decode()
        assert decode_base64_text(encoded) == "Noticias"
        assert decode_base64_text("not base64!") == "not base64!"
        assert decode_base64_text(None) == ""


class TestAuthenticate:
    def test_success(self):
        account = run(_client(_routes()).authenticate())
        assert account.username == "u"
        assert account.max_connections == 2
        assert account.active_connections == 1
        assert account.has_free_slot is True
        assert account.expires_at == datetime.fromtimestamp(1767225600, tz=timezone.utc)
        assert account.server_timezone == "Europe/Madrid"

    def test_auth_zero(self):
        with pytest.raises(AuthenticationFailed):
            run(_client(_routes({None: {"user_info": {"auth": 0}}})).authenticate())

    def test_http_error_status(self):
        with pytest.raises(AuthenticationFailed):
            run(_client(_routes({None: httpx.Response(401, text="denied")})).authenticate())

    def test_malformed_json(self):
        with pytest.raises(AuthenticationFailed):
            run(_client(_routes({None: httpx.Response(200, text="<html>oops</html>")})).authenticate())

    def test_network_error_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = XtreamCodesClient(SERVER, "u", "p", HttpClientService(transport=httpx.MockTransport(handler)))
        with pytest.raises(TransportError) as exc_info:
            run(client.authenticate())
        assert exc_info.value.retryable is True


class TestListings:
    """Stream listings joined against category lists."""

    def test_live_streams(self):
        warnings = []
        calls = []
        entries = run(_client(_routes(), calls).list_live_streams(warnings=warnings))
        assert calls == ["get_live_categories", "get_live_streams"]
        assert [e.display_name for e in entries] == ["CNN", "Mystery"]
        cnn = entries[0]
        assert cnn.stream_url == "http://host:8080/live/u/p/42.m3u8"
        assert cnn.group_title == "News"
        assert cnn.epg_id == "cnn.us"
        assert cnn.catchup_days == 3
        assert cnn.provider_id == "42"
        assert cnn.content_type == ContentType.LIVE
        assert entries[1].group_title == "Live"
        assert [w.kind for w in warnings] == ["unknown_category", "invalid_entry"]

    def test_vod_streams(self):
        entries = run(_client(_routes()).list_vod_streams())
        assert entries[0].stream_url == "http://host:8080/movie/u/p/7.mkv"
        assert entries[0].group_title == "Action"
        assert entries[0].content_type == ContentType.MOVIE
        assert entries[1].stream_url == "http://host:8080/movie/u/p/8.mp4"

    def test_series_headers(self):
        series = run(_client(_routes()).list_series("src1"))
        assert len(series) == 1
        show = series[0]
        assert show.name == "Show"
        assert show.group_title == "Series"
        assert show.provider_id == "300"
        assert show.release_year == 2019
        assert show.rating == 4.5
        assert show.backdrop_url == "http://img/bd.jpg"
        assert show.episodes == []

    def test_categories(self):
        categories = run(_client(_routes()).list_categories(StreamKind.LIVE))
        assert [(c.id, c.name, c.kind) for c in categories] == [("1", "News", StreamKind.LIVE)]

    def test_empty_object_is_empty_list(self):
        entries = run(_client(_routes({"get_live_streams": {}})).list_live_streams(category_map={}))
        assert entries == []


class TestDetails:
    def test_vod_detail(self):
        routes = _routes({
            "get_vod_info": {
                "info": {
                    "name": "Inception",
                    "plot": "Dreams within dreams",
                    "rating": "8.8",
                    "duration_secs": "8880",
                    "backdrop_path": ["http://img/bd1.jpg"],
                    "tmdb_id": "27205",
                },
                "movie_data": {"stream_id": 7, "container_extension": "mkv", "name": "Inception"},
            }
        })
        detail = run(_client(routes).get_vod_detail(7))
        assert detail.name == "Inception"
        assert detail.rating == 8.8
        assert detail.duration_secs == 8880
        assert detail.tmdb_id == 27205
        assert detail.backdrop_url == "http://img/bd1.jpg"
        assert detail.stream_url == "http://host:8080/movie/u/p/7.mkv"

    def test_series_detail_groups_by_season(self):
        routes = _routes({
            "get_series_info": {
                "info": {"name": "Show", "cover": "http://img/show.jpg"},
                "episodes": {
                    "1": [
                        {"id": "1001", "episode_num": 2, "title": "Two", "container_extension": "mp4", "season": 1},
                        {"id": "1000", "episode_num": 1, "title": "One", "container_extension": "mp4", "season": 1},
                    ],
                    "2": [{"id": "2001", "episode_num": 1, "container_extension": "mkv", "info": []}],
                },
            }
        })
        detail = run(_client(routes).get_series_detail(300, "src1"))
        assert sorted(detail.seasons) == [1, 2]
        assert [ep.name for ep in detail.seasons[1]] == ["One", "Two"]
        assert detail.seasons[1][1].stream_url == "http://host:8080/series/u/p/1001.mp4"
        assert detail.seasons[2][0].name == "Episode 1"
        assert detail.seasons[2][0].stream_url == "http://host:8080/series/u/p/2001.mkv"
        assert detail.series.provider_id == "300"
        assert len(detail.series.episodes) == 3

    def test_series_detail_flat_episode_list(self):
        routes = _routes({
            "get_series_info": {
                "info": {"name": "Flat"},
                "episodes": [
                    {"id": "1", "episode_num": 1, "season": 2},
                    {"id": "2", "episode_num": 2, "season": 2},
                ],
            }
        })
        detail = run(_client(routes).get_series_detail(5))
        assert list(detail.seasons) == [2]
        assert [ep.episode_number for ep in detail.seasons[2]] == [1, 2]

    def test_short_epg(self):
        start = 1704067200
        routes = _routes({
            "get_short_epg": {
                "epg_listings": [
                    {
                        "title": base64.b64encode(b"News at Six").decode(),
                        "description": base64.b64encode(b"Headlines").decode(),
                        "start_timestamp": str(start),
                        "stop_timestamp": str(start + 3600),
                        "epg_id": "cnn.us",
                    },
                    {
                        "title": base64.b64encode(b"Broken").decode(),
                        "start_timestamp": str(start + 3600),
                        "stop_timestamp": str(start),
                    },
                ]
            }
        })
        warnings = []
        programs = run(_client(routes).get_short_epg(42, warnings=warnings))
        assert len(programs) == 1
        assert programs[0].title == "News at Six"
        assert programs[0].description == "Headlines"
        assert programs[0].channel_id == "cnn.us"
        assert programs[0].start_time == datetime.fromtimestamp(start, tz=timezone.utc)
        assert [w.kind for w in warnings] == ["invalid_time_range"]

    def test_upstream_error_status(self):
        routes = _routes({"get_vod_info": httpx.Response(503, text="busy")})
        with pytest.raises(TransportError) as exc_info:
            run(_client(routes).get_vod_detail(7))
        assert exc_info.value.status_code == 503


def test_auth_request_carries_credentials():
    seen = []

    def handler(request):
        seen.append(dict(request.url.params))
        return httpx.Response(200, content=json.dumps(AUTH_OK).encode())

    client = XtreamCodesClient(SERVER, "user name", "p&ss", HttpClientService(transport=httpx.MockTransport(handler)))
    run(client.authenticate())
    assert seen == [{"username": "user name", "password": "p&ss"}]
