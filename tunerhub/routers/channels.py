"""
Channel directory and operations endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tunerhub.models.usage import UsageReport
from tunerhub.routers.deps import admin_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["channels"])


class TTLUpdate(BaseModel):
    ttl: float


@router.get("/channels")
async def list_channels(
    request: Request,
    status: Optional[str] = Query(None, description="Only 'online' is supported"),
):
    """
    Canonical channel list. Upstream addresses are never included.

    - **status=online**: only channels the health worker last saw online
    """
    state = request.app.state
    channels = state.directory.channels

    if status == "online":
        worker = state.health_worker
        if not worker.status:
            raise HTTPException(status_code=503, detail="Status data unavailable")
        channels = [c for c in channels if worker.is_online(c)]

    return [c.public_dict() for c in channels]


@router.post("/api/reload/channels")
@limiter.limit(admin_rate_limit)
async def reload_channels(request: Request):
    """Re-read source configuration and rebuild the channel directory."""
    snapshot = await request.app.state.directory.reload()
    return {"status": "ok", "channels": len(snapshot)}


@router.get("/api/sources/status")
async def get_sources_status(request: Request):
    """Last fetch state of every channel source."""
    return request.app.state.source_status.snapshot()


# ==================== CACHE ====================

@router.get("/api/cache/stats")
async def get_cache_stats(request: Request):
    return request.app.state.caches.stats()


@router.post("/api/cache/clear")
@limiter.limit(admin_rate_limit)
async def clear_all_caches(request: Request):
    caches = request.app.state.caches
    caches.clear_all()
    logger.info("All caches cleared")
    return {"status": "ok", "cleared": caches.names()}


@router.post("/api/cache/clear/{name}")
@limiter.limit(admin_rate_limit)
async def clear_cache(name: str, request: Request):
    cache = request.app.state.caches.get_cache(name)
    if cache is None:
        raise HTTPException(status_code=404, detail="Cache not found")
    cache.clear()
    logger.info(f"Cache '{name}' cleared")
    return {"status": "ok", "cleared": [name]}


@router.put("/api/cache/ttl/{name}")
@limiter.limit(admin_rate_limit)
async def set_cache_ttl(name: str, body: TTLUpdate, request: Request):
    """Change a cache's TTL in seconds (0 = never expire)."""
    cache = request.app.state.caches.get_cache(name)
    if cache is None:
        raise HTTPException(status_code=404, detail="Cache not found")
    if body.ttl < 0:
        raise HTTPException(status_code=400, detail="TTL must be >= 0")
    cache.set_ttl(body.ttl)
    return {"status": "ok", "name": name, "ttl": cache.ttl}


# ==================== USAGE & HEALTH ====================

@router.get("/api/usage/active", response_model=UsageReport)
async def get_active_usage(request: Request):
    """Viewers currently watching, pruned to the idle grace window."""
    return request.app.state.usage.report()


@router.get("/health")
async def health_check(request: Request):
    """Liveness."""
    state = request.app.state
    return {
        "status": "healthy",
        "version": state.settings.app_version,
        "channels": len(state.directory.channels),
        "epg_ready": state.guide.ready,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Ready once at least one channel is in the directory."""
    count = len(request.app.state.directory.channels)
    if count == 0:
        return JSONResponse(status_code=503, content={"status": "not_ready", "channels": 0})
    return {"status": "ready", "channels": count}
