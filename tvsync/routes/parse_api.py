"""Stateless parse routes — run the playlist and guide parsers on a posted document."""
from __future__ import annotations

from fastapi import APIRouter, Request

from tvsync.dependencies import error_response
from tvsync.errors import MalformedInput
from tvsync.services.epg_service import parse_xmltv
from tvsync.services.m3u_service import parse_m3u

router = APIRouter(prefix="/api/parse", tags=["parse"])


@router.post("/m3u")
async def parse_m3u_document(request: Request):
    body = await request.body()
    try:
        result = parse_m3u(body.decode("utf-8", errors="replace"))
    except MalformedInput as e:
        return error_response(e)
    return {
        "channels": [e.model_dump(mode="json") for e in result.channels],
        "movies": [e.model_dump(mode="json") for e in result.movies],
        "series": {
            name: [e.model_dump(mode="json") for e in episodes]
            for name, episodes in result.series.items()
        },
        "warnings": [w.model_dump(mode="json") for w in result.warnings],
    }


@router.post("/xmltv")
async def parse_xmltv_document(request: Request):
    body = await request.body()
    try:
        result = parse_xmltv(body)
    except MalformedInput as e:
        return error_response(e)
    return result.model_dump(mode="json")
