"""
EPG (Electronic Program Guide) endpoints.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response

from tunerhub.routers.deps import admin_rate_limit, limiter, request_base_url
from tunerhub.services.epg_merge import GuideNotReady


router = APIRouter(tags=["epg"])


@router.get("/xmltv.xml")
async def get_xmltv(
    request: Request,
    source: Optional[str] = Query(None, description="Only channels of this source"),
    channels: Optional[str] = Query(None, description="Comma-separated tvg-ids"),
):
    """
    Merged XMLTV guide with image URLs routed through this server.

    Returns 503 until the first merge has completed.
    """
    guide = request.app.state.guide
    try:
        content = guide.render(request_base_url(request), source=source, channels=channels)
    except GuideNotReady:
        raise HTTPException(
            status_code=503,
            detail="EPG not loaded yet. Please wait a moment and try again.",
        )
    return Response(content=content, media_type="application/xml")


@router.get("/images/{source}/{url:path}")
async def get_image(source: str, url: str, request: Request):
    """Relay a channel logo or programme image."""
    return await request.app.state.proxy.proxy_image(url)


@router.post("/api/epg/refresh")
@limiter.limit(admin_rate_limit)
async def refresh_epg(request: Request):
    """
    Re-fetch and re-merge every guide source now.
    """
    guide = request.app.state.guide
    refreshed = await guide.refresh()
    return {
        "status": "ok" if refreshed else "kept_previous",
        "ready": guide.ready,
        "last_refresh": guide.last_refresh,
    }
