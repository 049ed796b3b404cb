"""Sync control routes — trigger, cancel and inspect per-source syncs."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tvsync.dependencies import (
    error_response,
    get_catalog_store,
    get_config_service,
    get_sync_service,
    source_not_found,
)
from tvsync.errors import SyncInProgress
from tvsync.services.catalog_store import CatalogStore
from tvsync.services.config_service import ConfigService
from tvsync.services.sync_service import SyncService

router = APIRouter(prefix="/api/sources", tags=["sync"])

# HTTP status of a failed run, by error kind.
_FAILURE_STATUS = {
    "FetchError": 502,
    "AuthenticationFailed": 401,
    "MalformedInput": 400,
    "DecryptionFailed": 400,
    "Cancelled": 409,
}


@router.post("/{source_id}/sync")
async def sync_source(
    source_id: str,
    wait: bool = False,
    cfg: ConfigService = Depends(get_config_service),
    sync: SyncService = Depends(get_sync_service),
):
    """Run a sync to completion; 409 if one is already running and *wait* is false."""
    source = cfg.get_source_by_id(source_id)
    if source is None:
        return source_not_found()
    try:
        result = await sync.sync(source, wait=wait)
    except SyncInProgress as e:
        return error_response(e)
    payload = {
        "status": result.status.value if result.status else None,
        "summary": result.summary(),
        "result": result.model_dump(mode="json"),
    }
    if not result.succeeded:
        payload["error"] = result.error
        return JSONResponse(payload, status_code=_FAILURE_STATUS.get(result.error_kind, 500))
    return payload


@router.post("/{source_id}/sync/cancel")
async def cancel_sync(
    source_id: str,
    cfg: ConfigService = Depends(get_config_service),
    sync: SyncService = Depends(get_sync_service),
):
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    return {"status": "ok", "cancelled": sync.cancel(source_id)}


@router.get("/{source_id}/status")
async def sync_status(
    source_id: str,
    cfg: ConfigService = Depends(get_config_service),
    sync: SyncService = Depends(get_sync_service),
    store: CatalogStore = Depends(get_catalog_store),
):
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    last = sync.get_last_result(source_id)
    return {
        "source_id": source_id,
        "running": sync.is_running(source_id),
        "state": sync.get_state(source_id).value,
        "last_result": last.model_dump(mode="json") if last else None,
        "stored": store.get_sync_state(source_id),
    }
