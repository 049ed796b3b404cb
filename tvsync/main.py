"""tvsync — application entry point.

Wires the services onto ``app.state``, starts the background sync loop and
mounts the routers.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from tvsync.routes import catalog_api, epg, health, parse_api, source_api, sync_api
from tvsync.services.catalog_store import CatalogStore
from tvsync.services.config_service import ConfigService, default_data_dir
from tvsync.services.credential_service import CredentialService
from tvsync.services.epg_service import EpgService
from tvsync.services.http_client import HttpClientService
from tvsync.services.sync_service import SyncService

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
logger = logging.getLogger(__name__)

DATA_DIR = default_data_dir()


def attach_services(app: FastAPI, data_dir: str, http_client: HttpClientService | None = None) -> None:
    """Create every service for *data_dir* and store it on ``app.state``."""
    os.makedirs(data_dir, exist_ok=True)
    cfg = ConfigService(data_dir)
    cfg.load()
    http = http_client or HttpClientService(timeout=cfg.get_http_timeout())
    store = CatalogStore(data_dir)
    credentials = CredentialService()
    epg_svc = EpgService(http, store, credentials, timeout=cfg.get_http_timeout())
    sync = SyncService(cfg, http, store, credentials, epg_service=epg_svc)

    app.state.config_service = cfg
    app.state.http_client = http
    app.state.catalog_store = store
    app.state.credential_service = credentials
    app.state.epg_service = epg_svc
    app.state.sync_service = sync


def include_routers(app: FastAPI) -> None:
    for r in (health, source_api, sync_api, catalog_api, epg, parse_api):
        app.include_router(r.router)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown"""
    attach_services(app, DATA_DIR)
    background_task = asyncio.create_task(app.state.sync_service.background_sync_loop())
    logger.info(f"tvsync started with data dir {DATA_DIR}")

    yield

    background_task.cancel()
    try:
        await background_task
    except asyncio.CancelledError:
        pass
    await app.state.http_client.close()
    logger.info("Application shutdown complete")


app = FastAPI(title="tvsync", lifespan=lifespan)


# Middleware to ensure UTF-8 charset in JSON responses
@app.middleware("http")
async def add_utf8_charset(request: Request, call_next):
    response = await call_next(request)
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type and "charset" not in content_type:
        response.headers["content-type"] = "application/json; charset=utf-8"
    return response


include_routers(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5000)
