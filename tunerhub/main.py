"""
tunerhub - FastAPI application

Unifies M3U playlists and HDHomeRun tuners into one virtual HDHomeRun device
with a merged XMLTV guide. All media is relayed through this server.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from tunerhub.config import Settings, get_settings, load_sources
from tunerhub.routers import channels, epg, hdhr, streams
from tunerhub.routers.deps import limiter
from tunerhub.services.cache import CacheManager
from tunerhub.services.directory import ChannelDirectory
from tunerhub.services.epg_merge import GuideMerger
from tunerhub.services.health_worker import HealthWorker
from tunerhub.services.lineup import LineupService
from tunerhub.services.source_sync import SourceStatusTracker, SourceSync
from tunerhub.services.stream_proxy import StreamProxyService
from tunerhub.services.usage import UsageTracker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def cancel_tasks(tasks):
    """Cancel background tasks and wait until every one has finished."""
    pending = list(tasks)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the services, load channels and guide, run background work."""
    settings: Settings = app.state.settings
    transport = app.state.transport
    logger.info(f"Starting {settings.app_name} {settings.app_version}...")

    caches = CacheManager()
    lineup_cache = caches.create("lineup", settings.lineup_cache_ttl)
    playlist_cache = caches.create("playlist", settings.playlist_cache_ttl)
    epg_cache = caches.create("epg-rewritten", settings.epg_cache_ttl)

    sources_provider = partial(load_sources, settings.config_dir)
    source_status = SourceStatusTracker()
    sync = SourceSync(
        timeout=settings.source_timeout,
        concurrency=settings.source_concurrency,
        status=source_status,
        transport=transport,
    )
    directory = ChannelDirectory(sync, sources_provider, settings.data_dir)
    guide = GuideMerger(directory, sources_provider, epg_cache, settings.epg_timeout, transport)
    usage = UsageTracker(settings.usage_idle_seconds)
    proxy = StreamProxyService(
        directory,
        usage,
        head_timeout=settings.head_timeout,
        upstream_timeout=settings.upstream_timeout,
        tick_seconds=settings.usage_tick_seconds,
        transport=transport,
    )
    health_worker = HealthWorker(directory, settings.data_dir, settings.health_check_minutes, transport)

    app.state.caches = caches
    app.state.source_status = source_status
    app.state.directory = directory
    app.state.guide = guide
    app.state.usage = usage
    app.state.proxy = proxy
    app.state.lineup = LineupService(directory, settings, lineup_cache, playlist_cache)
    app.state.health_worker = health_worker

    def invalidate_derived(snapshot):
        # Routes and tvg-id linkage may have changed
        lineup_cache.clear()
        playlist_cache.clear()
        epg_cache.clear()

    directory.on_reloaded(invalidate_derived)

    await directory.load_snapshot()
    await directory.reload()
    await guide.refresh()

    background: set[asyncio.Task] = set()

    def schedule_guide_refresh(snapshot):
        task = asyncio.create_task(guide.refresh())
        background.add(task)
        task.add_done_callback(background.discard)

    directory.on_reloaded(schedule_guide_refresh)

    await guide.start(settings.epg_refresh_hours)
    await health_worker.start()
    logger.info(f"Ready: {len(directory.channels)} channels")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await cancel_tasks(background)
    await health_worker.stop()
    await guide.stop()
    await proxy.aclose()


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        transport: httpx transport for every upstream request (tests)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Virtual HDHomeRun tuner that merges M3U and HDHomeRun sources",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.transport = transport

    # Add rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(hdhr.router)
    app.include_router(epg.router)
    app.include_router(streams.router)
    app.include_router(channels.router)

    # Error handlers
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "tunerhub.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
