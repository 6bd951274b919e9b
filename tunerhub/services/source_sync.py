"""
Channel source synchronization.
Fetches M3U playlists and HDHomeRun lineups and turns them into raw records.
"""
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from tunerhub.config import M3USourceConfig
from tunerhub.models.channel import DeviceMeta, RawChannel
from tunerhub.services.m3u_parser import M3UParser

logger = logging.getLogger(__name__)


class SourceStatusTracker:
    """Last known fetch state of every channel source."""

    def __init__(self):
        self._status: dict[str, dict] = {}

    def mark(self, source_name: str, status: str, message: Optional[str] = None):
        self._status[source_name] = {
            "status": status,
            "message": message,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

    def get(self, source_name: str) -> Optional[dict]:
        return self._status.get(source_name)

    def snapshot(self) -> dict[str, dict]:
        return {name: dict(state) for name, state in self._status.items()}


def read_local_file(url: str) -> str:
    """Read a file:// reference."""
    path = Path(url[len("file://"):])
    return path.read_text(encoding="utf-8", errors="ignore")


def failure_hint(error: Exception) -> str:
    """One-line operator hint for a failed source fetch."""
    if isinstance(error, FileNotFoundError):
        return "verify the file exists and the path is relative to the working directory"
    if isinstance(error, httpx.ConnectError):
        return "connection failed: check the hostname, port and that the service is running"
    if isinstance(error, httpx.TimeoutException):
        return "timed out: check network connectivity or raise the timeout"
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return f"authentication failed ({status}): check credentials in the URL"
        if status == 404:
            return "not found (404): verify the URL path"
        return f"upstream answered {status}: try again later"
    return "check the source URL and network connectivity"


class SourceSync:
    """Fetch every configured channel source into raw channel records."""

    def __init__(
        self,
        timeout: float = 30.0,
        concurrency: int = 3,
        status: Optional[SourceStatusTracker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.concurrency = concurrency
        self.status = status or SourceStatusTracker()
        self._transport = transport
        self._parser = M3UParser()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self._transport)

    async def fetch_all(self, sources: list[M3USourceConfig]) -> list[RawChannel]:
        """
        Fetch all sources concurrently (bounded) and flatten their records.
        Record order follows source order, then order within each source.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async with self._client() as client:
            async def fetch_with_sem(source):
                async with semaphore:
                    return await self.fetch_source(client, source)

            results = await asyncio.gather(*[fetch_with_sem(s) for s in sources])

        return [record for records in results for record in records]

    async def fetch_source(self, client: httpx.AsyncClient, source: M3USourceConfig) -> list[RawChannel]:
        """Fetch one source. Never raises; a failed source yields no records."""
        logger.info(f"Processing source: {source.name} ({source.type})")
        self.status.mark(source.name, "pending")

        try:
            if source.type == "hdhomerun":
                records = await self._fetch_hdhomerun(client, source)
            else:
                records = await self._fetch_m3u(client, source)
        except Exception as e:
            logger.error(f"Failed to process {source.name}: {e}")
            logger.info(f"Hint for {source.name}: {failure_hint(e)}")
            self.status.mark(source.name, "error", str(e))
            return []

        logger.info(f"Processed {len(records)} channels from {source.name}")
        self.status.mark(source.name, "success")
        return records

    async def _fetch_m3u(self, client: httpx.AsyncClient, source: M3USourceConfig) -> list[RawChannel]:
        if source.url.startswith("file://"):
            content = await asyncio.to_thread(read_local_file, source.url)
        else:
            response = await client.get(source.url)
            response.raise_for_status()
            content = response.text

        if not content.strip():
            raise ValueError("Empty M3U content")
        return self._parser.parse(content, source.name)

    async def _fetch_hdhomerun(self, client: httpx.AsyncClient, source: M3USourceConfig) -> list[RawChannel]:
        base = source.url.rstrip("/")
        response = await client.get(f"{base}/discover.json")
        response.raise_for_status()
        device_info = response.json()

        device_base = (device_info.get("BaseURL") or base).rstrip("/")
        lineup_url = device_info.get("LineupURL") or f"{device_base}/lineup.json"
        device = DeviceMeta(
            device_id=str(device_info.get("DeviceID", "")),
            base_url=device_base,
            model=str(device_info.get("ModelNumber", "")),
        )

        response = await client.get(lineup_url)
        response.raise_for_status()

        records = []
        for entry in response.json():
            if not entry.get("URL"):
                continue
            records.append(RawChannel(
                name=entry.get("GuideName") or "",
                guide_number=str(entry.get("GuideNumber") or ""),
                source=source.name,
                url=entry["URL"],
                device=device,
            ))
        return records
