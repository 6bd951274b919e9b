"""
Stream relay endpoint.
Clients only ever see this route; upstream addresses stay on the server.
"""
from typing import Optional

from fastapi import APIRouter, Query, Request

from tunerhub.routers.deps import client_ip, request_base_url

router = APIRouter(tags=["streams"])

# Every method is routed here so an unknown channel is a 404 before any 405
RELAY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/stream/{source}/{name:path}", methods=RELAY_METHODS)
async def relay_stream(
    source: str,
    name: str,
    request: Request,
    upstream: Optional[str] = Query(None, description="Segment or variant URL from a rewritten manifest"),
    hls: Optional[str] = Query(None, description="Treat the upstream payload as an HLS manifest"),
):
    """
    Relay a channel's live stream.

    Manifests are rewritten so every segment also comes through here;
    media is piped through as it arrives.
    """
    proxy = request.app.state.proxy
    return await proxy.relay(
        request.method,
        source,
        name,
        base_url=request_base_url(request),
        client_ip=client_ip(request),
        upstream=upstream,
        hls=hls,
    )
