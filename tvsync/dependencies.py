"""FastAPI dependency injection — provides services via Depends()."""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from tvsync.errors import (
    AuthenticationFailed,
    MalformedInput,
    SyncInProgress,
    TransportError,
    TvSyncError,
)
from tvsync.services.catalog_store import CatalogStore
from tvsync.services.config_service import ConfigService
from tvsync.services.epg_service import EpgService
from tvsync.services.sync_service import SyncService

_ERROR_STATUS = (
    (SyncInProgress, 409),
    (AuthenticationFailed, 401),
    (TransportError, 502),
    (MalformedInput, 400),
)


def get_config_service(request: Request) -> ConfigService:
    return request.app.state.config_service


def get_catalog_store(request: Request) -> CatalogStore:
    return request.app.state.catalog_store


def get_epg_service(request: Request) -> EpgService:
    return request.app.state.epg_service


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def error_response(exc: TvSyncError) -> JSONResponse:
    status_code = 500
    for exc_type, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code = code
            break
    return JSONResponse({"error": str(exc), "kind": exc.error_kind}, status_code=status_code)


def source_not_found() -> JSONResponse:
    return JSONResponse({"error": "Source not found"}, status_code=404)
