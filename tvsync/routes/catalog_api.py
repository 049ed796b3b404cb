"""Catalog browse routes — channels, movies, series and favorites of one source."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from tvsync.dependencies import get_catalog_store, get_config_service, source_not_found
from tvsync.services.catalog_store import CatalogStore
from tvsync.services.config_service import ConfigService

router = APIRouter(prefix="/api/sources", tags=["catalog"])


@router.get("/{source_id}/channels")
async def list_channels(
    source_id: str,
    group: Optional[str] = None,
    search: Optional[str] = None,
    favorites: bool = False,
    cfg: ConfigService = Depends(get_config_service),
    store: CatalogStore = Depends(get_catalog_store),
):
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    channels = store.list_channels(source_id, group=group, search=search, favorites_only=favorites)
    return {"channels": [c.model_dump(mode="json") for c in channels], "total": len(channels)}


@router.get("/{source_id}/movies")
async def list_movies(
    source_id: str,
    group: Optional[str] = None,
    search: Optional[str] = None,
    cfg: ConfigService = Depends(get_config_service),
    store: CatalogStore = Depends(get_catalog_store),
):
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    movies = store.list_movies(source_id, group=group, search=search)
    return {"movies": [m.model_dump(mode="json") for m in movies], "total": len(movies)}


@router.get("/{source_id}/series")
async def list_series(
    source_id: str,
    group: Optional[str] = None,
    cfg: ConfigService = Depends(get_config_service),
    store: CatalogStore = Depends(get_catalog_store),
):
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    series = store.list_series(source_id, group=group)
    return {
        "series": [s.model_dump(mode="json", exclude={"episodes"}) for s in series],
        "total": len(series),
    }


@router.get("/{source_id}/series/{series_id}")
async def get_series(
    source_id: str,
    series_id: str,
    cfg: ConfigService = Depends(get_config_service),
    store: CatalogStore = Depends(get_catalog_store),
):
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    series = store.get_series(source_id, series_id)
    if series is None:
        return JSONResponse({"error": "Series not found"}, status_code=404)
    return {"series": series.model_dump(mode="json"), "seasons": series.seasons}


@router.post("/{source_id}/channels/{channel_id}/favorite")
async def set_favorite(
    source_id: str,
    channel_id: str,
    request: Request,
    cfg: ConfigService = Depends(get_config_service),
    store: CatalogStore = Depends(get_catalog_store),
):
    """Mark (``{"favorite": true}``, the default) or unmark a channel as favorite."""
    if cfg.get_source_by_id(source_id) is None:
        return source_not_found()
    if not store.entity_exists(source_id, channel_id):
        return JSONResponse({"error": "Channel not found"}, status_code=404)
    favorite = True
    body = await request.body()
    if body:
        data = await request.json()
        favorite = bool(data.get("favorite", True))
    store.set_favorite(source_id, channel_id, favorite)
    return {"status": "ok", "favorite": favorite}
