"""Source management API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tvsync.dependencies import get_config_service, get_sync_service, source_not_found
from tvsync.models.source import SourceDescriptor
from tvsync.services.config_service import ConfigService
from tvsync.services.sync_service import SyncService

router = APIRouter(prefix="/api/sources", tags=["sources"])


def public_source(source: SourceDescriptor) -> dict:
    """Descriptor as exposed over HTTP; the password blob never leaves the server."""
    data = source.model_dump(mode="json", exclude={"password"})
    data["has_password"] = bool(source.password)
    return data


def _invalid(e: ValidationError) -> JSONResponse:
    return JSONResponse({"error": e.errors()[0].get("msg", str(e))}, status_code=400)


@router.get("")
async def get_sources(cfg: ConfigService = Depends(get_config_service)):
    return {"sources": [public_source(s) for s in cfg.get_sources()]}


@router.post("")
async def add_source(request: Request, cfg: ConfigService = Depends(get_config_service)):
    data = await request.json()
    data.pop("id", None)
    try:
        source = SourceDescriptor.model_validate(data)
    except ValidationError as e:
        return _invalid(e)
    cfg.add_source(source)
    return {"status": "ok", "source": public_source(source)}


@router.get("/{source_id}")
async def get_source(source_id: str, cfg: ConfigService = Depends(get_config_service)):
    source = cfg.get_source_by_id(source_id)
    if source is None:
        return source_not_found()
    return {"source": public_source(source)}


@router.put("/{source_id}")
async def replace_source(source_id: str, request: Request, cfg: ConfigService = Depends(get_config_service)):
    """Replace the stored descriptor wholesale; an omitted password keeps the stored one."""
    existing = cfg.get_source_by_id(source_id)
    if existing is None:
        return source_not_found()
    data = await request.json()
    data["id"] = source_id
    if not data.get("password"):
        data["password"] = existing.password
    try:
        source = SourceDescriptor.model_validate(data)
    except ValidationError as e:
        return _invalid(e)
    cfg.replace_source(source)
    return {"status": "ok", "source": public_source(source)}


@router.delete("/{source_id}")
async def delete_source(
    source_id: str,
    cfg: ConfigService = Depends(get_config_service),
    sync: SyncService = Depends(get_sync_service),
):
    if not cfg.remove_source(source_id):
        return source_not_found()
    sync.delete_source(source_id)
    return {"status": "ok", "sources": [public_source(s) for s in cfg.get_sources()]}
