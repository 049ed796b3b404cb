"""Integration tests — hit actual FastAPI routes via Starlette TestClient."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from tvsync.main import attach_services, include_routers
from tvsync.services.http_client import HttpClientService

PLAYLIST = """#EXTM3U
#EXTINF:-1 tvg-id="bbc1.uk" group-title="UK",BBC One
http://provider/live/bbc1.ts
#EXTINF:-1 group-title="UK",ITV
http://provider/live/itv.ts
#EXTINF:-1 group-title="Films",Inception
http://provider/vod/inception.mp4
#EXTINF:-1 group-title="Shows",Show S01E01
http://provider/stream/show101.mkv
"""


def _xmltv() -> str:
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    fmt = "%Y%m%d%H%M%S +0000"
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<tv>
  <channel id="bbc1.uk"><display-name>BBC One</display-name></channel>
  <programme channel="bbc1.uk" start="{now.strftime(fmt)}" stop="{(now + timedelta(hours=1)).strftime(fmt)}">
    <title>Now Showing</title>
  </programme>
  <programme channel="bbc1.uk" start="{(now + timedelta(hours=1)).strftime(fmt)}" stop="{(now + timedelta(hours=2)).strftime(fmt)}">
    <title>Up Next</title>
  </programme>
</tv>
"""


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/playlist.m3u":
        return httpx.Response(200, text=PLAYLIST)
    if request.url.path == "/epg.xml":
        return httpx.Response(200, text=_xmltv())
    return httpx.Response(404, text="not found")


def _build_app(data_dir: str):
    """Build a fully-wired FastAPI app pointing at *data_dir* with a mocked upstream."""
    app = FastAPI()
    attach_services(app, data_dir, http_client=HttpClientService(transport=httpx.MockTransport(_handler)))
    include_routers(app)
    return app


@pytest.fixture()
def data_dir(tmp_path):
    """Create a temporary data directory with one M3U source and one broken source."""
    config = {
        "sources": [
            {
                "id": "src1",
                "name": "Provider",
                "kind": "m3u",
                "url": "http://provider/playlist.m3u",
                "epg_url": "http://provider/epg.xml",
            },
            {"id": "broken", "name": "Broken", "kind": "m3u", "url": "http://provider/missing.m3u"},
        ],
        "options": {},
    }
    (tmp_path / "config.json").write_text(json.dumps(config))
    return str(tmp_path)


@pytest.fixture()
def client(data_dir):
    app = _build_app(data_dir)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def synced(client):
    r = client.post("/api/sources/src1/sync")
    assert r.status_code == 200
    return client


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------

def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_version(client):
    assert "current" in client.get("/api/version").json()


# -------------------------------------------------------------------
# Sources
# -------------------------------------------------------------------

class TestSourcesApi:
    def test_list_sources(self, client):
        sources = client.get("/api/sources").json()["sources"]
        assert [s["id"] for s in sources] == ["src1", "broken"]
        assert "password" not in sources[0]

    def test_add_xtream_source_hides_password(self, client):
        r = client.post("/api/sources", json={
            "name": "XC", "kind": "xtream", "url": "host:8080", "username": "u", "password": "plain:p",
        })
        assert r.status_code == 200
        source = r.json()["source"]
        assert "password" not in source
        assert source["has_password"] is True
        assert client.get(f"/api/sources/{source['id']}").status_code == 200

    def test_add_xtream_source_without_password(self, client):
        r = client.post("/api/sources", json={"name": "XC", "kind": "xtream", "url": "host", "username": "u"})
        assert r.status_code == 400
        assert "error" in r.json()

    def test_replace_source(self, client, data_dir):
        r = client.put("/api/sources/src1", json={"name": "Renamed", "kind": "m3u", "url": "http://provider/playlist.m3u"})
        assert r.status_code == 200
        source = r.json()["source"]
        assert source["id"] == "src1"
        assert source["name"] == "Renamed"
        assert source["epg_url"] is None
        with open(f"{data_dir}/config.json") as f:
            assert json.load(f)["sources"][0]["name"] == "Renamed"

    def test_unknown_source(self, client):
        assert client.get("/api/sources/nope").status_code == 404
        assert client.put("/api/sources/nope", json={"url": "http://x"}).status_code == 404
        assert client.delete("/api/sources/nope").status_code == 404

    def test_delete_source_cascades(self, synced):
        assert synced.delete("/api/sources/src1").status_code == 200
        assert synced.get("/api/sources/src1").status_code == 404
        assert synced.get("/api/sources/src1/channels").status_code == 404


# -------------------------------------------------------------------
# Sync
# -------------------------------------------------------------------

class TestSyncApi:
    def test_sync_source(self, client):
        r = client.post("/api/sources/src1/sync")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "success"
        assert data["result"]["channels"]["added"] == 2
        assert data["result"]["movies"]["added"] == 1
        assert data["result"]["series"]["added"] == 1

    def test_second_sync_reports_no_changes(self, synced):
        data = synced.post("/api/sources/src1/sync").json()
        assert data["result"]["channels"] == {"added": 0, "changed": 0, "removed": 0}

    def test_fetch_failure_is_bad_gateway(self, client):
        r = client.post("/api/sources/broken/sync")
        assert r.status_code == 502
        assert r.json()["result"]["error_kind"] == "FetchError"

    def test_sync_unknown_source(self, client):
        assert client.post("/api/sources/nope/sync").status_code == 404

    def test_status(self, synced):
        data = synced.get("/api/sources/src1/status").json()
        assert data["running"] is False
        assert data["state"] == "idle"
        assert data["last_result"]["status"] == "success"
        assert data["stored"]["last_status"] == "success"

    def test_cancel_when_idle(self, client):
        r = client.post("/api/sources/src1/sync/cancel")
        assert r.status_code == 200
        assert r.json()["cancelled"] is False


# -------------------------------------------------------------------
# Catalog
# -------------------------------------------------------------------

class TestCatalogApi:
    def test_channels(self, synced):
        data = synced.get("/api/sources/src1/channels").json()
        assert data["total"] == 2
        assert [c["name"] for c in data["channels"]] == ["BBC One", "ITV"]
        assert data["channels"][0]["epg_id"] == "bbc1.uk"

    def test_search_channels(self, synced):
        data = synced.get("/api/sources/src1/channels", params={"search": "itv"}).json()
        assert [c["name"] for c in data["channels"]] == ["ITV"]

    def test_movies(self, synced):
        data = synced.get("/api/sources/src1/movies").json()
        assert [m["name"] for m in data["movies"]] == ["Inception"]

    def test_series_and_detail(self, synced):
        series = synced.get("/api/sources/src1/series").json()["series"]
        assert [s["name"] for s in series] == ["Show"]
        detail = synced.get(f"/api/sources/src1/series/{series[0]['id']}").json()
        assert detail["seasons"] == [1]
        assert detail["series"]["episodes"][0]["stream_url"] == "http://provider/stream/show101.mkv"
        assert synced.get("/api/sources/src1/series/missing").status_code == 404

    def test_favorite_survives_resync(self, synced):
        channel = synced.get("/api/sources/src1/channels").json()["channels"][0]
        r = synced.post(f"/api/sources/src1/channels/{channel['id']}/favorite")
        assert r.status_code == 200
        assert r.json()["favorite"] is True

        synced.post("/api/sources/src1/sync")
        favorites = synced.get("/api/sources/src1/channels", params={"favorites": "true"}).json()["channels"]
        assert [c["id"] for c in favorites] == [channel["id"]]
        assert favorites[0]["is_favorite"] is True

    def test_unfavorite(self, synced):
        channel_id = synced.get("/api/sources/src1/channels").json()["channels"][0]["id"]
        synced.post(f"/api/sources/src1/channels/{channel_id}/favorite")
        r = synced.post(f"/api/sources/src1/channels/{channel_id}/favorite", json={"favorite": False})
        assert r.json()["favorite"] is False
        assert synced.get("/api/sources/src1/channels", params={"favorites": "true"}).json()["total"] == 0

    def test_favorite_unknown_channel(self, synced):
        assert synced.post("/api/sources/src1/channels/nope/favorite").status_code == 404


# -------------------------------------------------------------------
# EPG
# -------------------------------------------------------------------

class TestEpgApi:
    def test_refresh_and_lookup(self, client):
        r = client.post("/api/sources/src1/epg/refresh")
        assert r.status_code == 200
        assert r.json()["status"] == "success"
        assert r.json()["programs"] == 2

        data = client.get("/api/epg/bbc1.uk", params={"source_id": "src1"}).json()
        assert [p["title"] for p in data["programs"]] == ["Now Showing", "Up Next"]
        assert data["current"]["title"] == "Now Showing"
        assert data["next"]["title"] == "Up Next"

    def test_refresh_without_epg_url(self, client):
        r = client.post("/api/sources/broken/epg/refresh")
        assert r.json() == {
            "source_id": "broken",
            "status": "success",
            "channels": 0,
            "programs": 0,
            "warnings": [],
            "error_kind": None,
            "error": None,
        }


# -------------------------------------------------------------------
# Stateless parsers
# -------------------------------------------------------------------

class TestParseApi:
    def test_parse_m3u(self, client):
        data = client.post("/api/parse/m3u", content=PLAYLIST).json()
        assert [c["display_name"] for c in data["channels"]] == ["BBC One", "ITV"]
        assert list(data["series"]) == ["Show"]
        assert data["warnings"] == []

    def test_parse_m3u_malformed(self, client):
        r = client.post("/api/parse/m3u", content="<html>nope</html>")
        assert r.status_code == 400
        assert r.json()["kind"] == "MalformedInput"

    def test_parse_xmltv(self, client):
        data = client.post("/api/parse/xmltv", content=_xmltv()).json()
        assert data["channels"][0]["id"] == "bbc1.uk"
        assert len(data["programs"]) == 2

    def test_parse_xmltv_malformed(self, client):
        assert client.post("/api/parse/xmltv", content="").status_code == 400
