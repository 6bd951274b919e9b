"""
Stream relay service.
Proxies live streams so clients never see upstream addresses: resolves the
channel, sniffs manifests and rewrites their URIs back through the relay,
and pipes media bytes without buffering.
"""
import asyncio
import logging
import re
from typing import AsyncGenerator, AsyncIterator, Mapping, Optional
from urllib.parse import quote, urljoin, urlparse

import httpx
from fastapi import HTTPException
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from tunerhub.models.channel import Channel
from tunerhub.services.directory import ChannelDirectory, guide_number_for
from tunerhub.services.urls import relay_route
from tunerhub.services.usage import UsageTracker

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Length and encoding no longer describe a rewritten manifest body
MANIFEST_DROPPED_HEADERS = {"content-length", "transfer-encoding", "content-encoding", "content-type"}

MANIFEST_MEDIA_TYPE = "application/vnd.apple.mpegurl"
MANIFEST_SUFFIXES = (".m3u8", ".m3u")
HLS_HINT_VALUES = {"1", "true", "yes"}

URI_ATTR_PATTERN = re.compile(r'URI="([^"]+)"')


def wants_hls(hint: Optional[str]) -> bool:
    return (hint or "").strip().lower() in HLS_HINT_VALUES


def is_manifest(content_type: str, url: str, hls_hint: bool = False) -> bool:
    """A payload is a manifest by MIME type, by URL suffix, or on request."""
    if "mpegurl" in (content_type or "").lower():
        return True
    if urlparse(url).path.lower().endswith(MANIFEST_SUFFIXES):
        return True
    return hls_hint


def relay_url(base_url: str, source: str, name: str, upstream: str) -> str:
    """Absolute relay URL carrying an explicit upstream override."""
    return f"{base_url}{relay_route(source, name)}?upstream={quote(upstream, safe=':/')}"


def rewrite_manifest(content: str, manifest_url: str, source: str, name: str, base_url: str) -> str:
    """
    Rewrite every URI in an HLS manifest to go back through the relay.

    Segment and variant lines and URI="..." attributes (keys, maps, media
    renditions) are resolved against the manifest's own final URL first.
    """
    def to_relay(uri: str) -> str:
        return relay_url(base_url, source, name, urljoin(manifest_url, uri.strip()))

    lines = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            lines.append("")
        elif stripped.startswith("#"):
            lines.append(URI_ATTR_PATTERN.sub(lambda m: f'URI="{to_relay(m.group(1))}"', stripped))
        else:
            lines.append(to_relay(stripped))

    return "\n".join(lines) + "\n"


def validate_upstream(upstream: str) -> str:
    """An upstream override must be an absolute http(s) URL."""
    parsed = urlparse(upstream)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="Invalid upstream URL")
    return upstream


def passthrough_headers(headers: Mapping[str, str], drop: set[str] = frozenset()) -> dict:
    """Upstream response headers minus hop-by-hop (and any extra) headers."""
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in drop
    }


class RelayBody:
    """
    Response body over an open upstream response.

    Closing it always releases the upstream connection, also when the client
    went away before the first chunk was pulled and the wrapped generator
    never started.
    """

    def __init__(self, chunks: AsyncGenerator[bytes, None], upstream: httpx.Response):
        self._chunks = chunks
        self._upstream = upstream

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        return await self._chunks.__anext__()

    async def aclose(self):
        try:
            await self._chunks.aclose()
        finally:
            await self._upstream.aclose()


def streamed_response(chunks: AsyncGenerator[bytes, None], upstream: httpx.Response, headers: dict) -> StreamingResponse:
    """StreamingResponse that closes the upstream when the body is closed or the response ends."""
    return StreamingResponse(
        RelayBody(chunks, upstream),
        status_code=upstream.status_code,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )


class StreamProxyService:
    """Relay live channels and images through one shared HTTP client."""

    def __init__(
        self,
        directory: ChannelDirectory,
        usage: UsageTracker,
        head_timeout: float = 5.0,
        upstream_timeout: float = 15.0,
        tick_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.directory = directory
        self.usage = usage
        self.head_timeout = head_timeout
        self.upstream_timeout = upstream_timeout
        self.tick_seconds = tick_seconds
        self.client = httpx.AsyncClient(
            timeout=upstream_timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self):
        await self.client.aclose()

    def resolve(self, source: str, name: str) -> Channel:
        channel = self.directory.find(source, name)
        if channel is None:
            raise HTTPException(status_code=404, detail="Channel not found")
        return channel

    async def relay(
        self,
        method: str,
        source: str,
        name: str,
        base_url: str,
        client_ip: str,
        upstream: Optional[str] = None,
        hls: Optional[str] = None,
    ) -> Response:
        """
        Relay one client request for a channel.

        Raises:
            HTTPException: 404 unknown channel, 405 unsupported method,
                400 bad upstream override, 502 upstream failure
        """
        channel = self.resolve(source, name)

        method = method.upper()
        if method not in ("GET", "HEAD"):
            raise HTTPException(status_code=405, detail="Method not allowed")

        target = validate_upstream(upstream) if upstream else channel.original_url

        if method == "HEAD":
            return await self._head(target)

        response = await self._open(target)
        final_url = str(response.url)
        content_type = response.headers.get("content-type", "")

        if is_manifest(content_type, final_url, wants_hls(hls)):
            return await self._manifest_response(response, channel, base_url, client_ip)

        return self._media_response(response, channel, client_ip, arm_tick=upstream is None)

    async def _head(self, url: str) -> Response:
        try:
            upstream = await self.client.head(url, timeout=self.head_timeout)
        except httpx.HTTPError as e:
            logger.warning(f"HEAD to upstream failed: {e}")
            raise HTTPException(status_code=502, detail="Upstream unavailable")

        return Response(status_code=upstream.status_code, headers=passthrough_headers(upstream.headers))

    async def _open(self, url: str) -> httpx.Response:
        """Start a streamed GET; the caller owns closing the response."""
        request = self.client.build_request("GET", url, timeout=self.upstream_timeout)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException:
            logger.warning(f"Upstream timed out: {urlparse(url).netloc}")
            raise HTTPException(status_code=502, detail="Upstream timed out")
        except httpx.HTTPError as e:
            logger.warning(f"Upstream connection failed: {e}")
            raise HTTPException(status_code=502, detail="Upstream unavailable")

        if response.status_code >= 400:
            status = response.status_code
            await response.aclose()
            logger.warning(f"Upstream returned {status} for {urlparse(url).netloc}")
            raise HTTPException(status_code=502, detail="Upstream error")

        return response

    def _register(self, channel: Channel, client_ip: str) -> str:
        return self.usage.register(
            client_ip,
            guide_number_for(channel),
            name=channel.name,
            tvg_id=channel.tvg_id,
        )

    async def _manifest_response(
        self,
        response: httpx.Response,
        channel: Channel,
        base_url: str,
        client_ip: str,
    ) -> Response:
        try:
            await response.aread()
            content = response.text
        except httpx.HTTPError as e:
            logger.warning(f"Failed reading manifest for {channel.source}/{channel.name}: {e}")
            raise HTTPException(status_code=502, detail="Upstream error")
        finally:
            await response.aclose()

        rewritten = rewrite_manifest(content, str(response.url), channel.source, channel.name, base_url)
        self._register(channel, client_ip)

        return Response(
            content=rewritten,
            media_type=MANIFEST_MEDIA_TYPE,
            headers=passthrough_headers(response.headers, MANIFEST_DROPPED_HEADERS),
        )

    def _media_response(
        self,
        response: httpx.Response,
        channel: Channel,
        client_ip: str,
        arm_tick: bool,
    ) -> StreamingResponse:
        headers = passthrough_headers(response.headers)

        async def body() -> AsyncIterator[bytes]:
            key = None
            ticker = None
            try:
                async for chunk in response.aiter_raw():
                    if key is None:
                        key = self._register(channel, client_ip)
                        if arm_tick:
                            ticker = asyncio.create_task(self._tick(key))
                    yield chunk
            except httpx.HTTPError as e:
                logger.warning(f"Upstream read error for {channel.source}/{channel.name}: {e}")
            finally:
                if ticker is not None:
                    ticker.cancel()
                if key is not None:
                    self.usage.touch(key)
                await response.aclose()

        return streamed_response(body(), response, headers)

    async def _tick(self, key: str):
        while True:
            await asyncio.sleep(self.tick_seconds)
            self.usage.touch(key)

    # ==================== IMAGES ====================

    async def proxy_image(self, url: str) -> StreamingResponse:
        """Relay a guide or logo image."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise HTTPException(status_code=400, detail="Invalid image URL")

        request = self.client.build_request("GET", url, timeout=self.upstream_timeout)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch image from {parsed.netloc}: {e}")
            raise HTTPException(status_code=502, detail="Failed to fetch image")

        if response.status_code >= 400:
            await response.aclose()
            raise HTTPException(status_code=502, detail="Failed to fetch image")

        async def body() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_raw():
                    yield chunk
            except httpx.HTTPError as e:
                logger.warning(f"Image read error from {parsed.netloc}: {e}")
            finally:
                await response.aclose()

        return streamed_response(body(), response, passthrough_headers(response.headers))
