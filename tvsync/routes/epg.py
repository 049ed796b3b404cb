"""EPG routes — guide refresh and per-channel programme lookups."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from tvsync.dependencies import (
    get_catalog_store,
    get_config_service,
    get_epg_service,
    source_not_found,
)
from tvsync.services.catalog_store import CatalogStore
from tvsync.services.config_service import ConfigService
from tvsync.services.epg_service import EpgService

router = APIRouter(tags=["epg"])


@router.post("/api/sources/{source_id}/epg/refresh")
async def refresh_epg(
    source_id: str,
    cfg: ConfigService = Depends(get_config_service),
    epg: EpgService = Depends(get_epg_service),
):
    source = cfg.get_source_by_id(source_id)
    if source is None:
        return source_not_found()
    result = await epg.refresh(source)
    return result.model_dump(mode="json")


@router.get("/api/epg/{epg_id}")
async def get_epg(
    epg_id: str,
    source_id: Optional[str] = None,
    hours: int = 24,
    store: CatalogStore = Depends(get_catalog_store),
    epg: EpgService = Depends(get_epg_service),
):
    """Programmes of one EPG channel for the next *hours*, plus now/next."""
    now = datetime.now(timezone.utc)
    programs = store.list_programs(epg_id, source_id=source_id, start=now, end=now + timedelta(hours=max(hours, 1)))
    return {
        "epg_id": epg_id,
        "programs": [
            {
                "title": p.title,
                "description": p.description,
                "category": p.category,
                "start": int(p.start_time.timestamp()),
                "stop": int(p.end_time.timestamp()),
            }
            for p in programs
        ],
        **epg.get_now_next(epg_id, source_id=source_id, now=now),
    }
