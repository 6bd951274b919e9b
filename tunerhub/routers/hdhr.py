"""
HDHomeRun emulation and playlist endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse

from tunerhub.routers.deps import request_base_url

router = APIRouter(tags=["hdhr"])


@router.get("/discover.json")
async def discover(request: Request):
    """HDHomeRun discovery document."""
    return request.app.state.lineup.discover(request_base_url(request))


@router.get("/lineup_status.json")
async def lineup_status(request: Request):
    return request.app.state.lineup.lineup_status()


@router.get("/lineup.json")
async def lineup(
    request: Request,
    source: Optional[str] = Query(None, description="Restrict to one channel source"),
):
    """
    HDHomeRun lineup. Every URL is a relay route on this server.
    """
    return request.app.state.lineup.lineup(request_base_url(request), source)


@router.get("/lineup.m3u")
async def lineup_m3u(
    request: Request,
    source: Optional[str] = Query(None, description="Restrict to one channel source"),
    group: Optional[str] = Query(None, description="Alias for source"),
):
    """Extended M3U playlist of all channels."""
    playlist = request.app.state.lineup.playlist(request_base_url(request), source or group)
    return PlainTextResponse(playlist, media_type="application/x-mpegURL")
