"""
Background Channel Health Worker

Periodically probes every channel's upstream address and records whether it
is online. Results are written to data/lineup_status.json so the last known
state survives restarts.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from tunerhub.models.channel import Channel
from tunerhub.services.directory import ChannelDirectory

logger = logging.getLogger(__name__)

HEALTHY_STATUS_CODES = (200, 206)
MEDIA_TYPE_MARKERS = ("mpegurl", "octet-stream", "transportstream", "mp2t", "mpeg")


def health_id(channel: Channel) -> str:
    """Key of a channel in the status file."""
    return channel.tvg_id or channel.guide_number or channel.name


def is_healthy_response(status_code: int, content_type: str) -> bool:
    if status_code not in HEALTHY_STATUS_CODES:
        return False
    ct = (content_type or "").lower()
    return ct.startswith("video/") or any(marker in ct for marker in MEDIA_TYPE_MARKERS)


class HealthWorker:
    """Background worker that periodically checks channel health."""

    TEST_TIMEOUT = 8.0  # Per-request timeout
    CONCURRENT_TESTS = 5
    READ_LIMIT = 1024  # Bytes read from a GET probe before giving up on headers
    STATUS_FILENAME = "lineup_status.json"

    def __init__(
        self,
        directory: ChannelDirectory,
        data_dir: str | Path,
        interval_minutes: float = 0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.directory = directory
        self.interval_minutes = interval_minutes
        self._data_dir = Path(data_dir)
        self._transport = transport
        self._task: Optional[asyncio.Task] = None
        self._status: dict[str, str] = {}
        self._stats = {
            "runs": 0,
            "online": 0,
            "offline": 0,
            "last_run": None,
            "last_duration_ms": None,
        }

    @property
    def status_path(self) -> Path:
        return self._data_dir / self.STATUS_FILENAME

    @property
    def status(self) -> dict[str, str]:
        return dict(self._status)

    def is_online(self, channel: Channel) -> bool:
        return self._status.get(health_id(channel)) == "online"

    def get_stats(self) -> dict:
        return {
            **self._stats,
            "running": self._task is not None,
            "interval_minutes": self.interval_minutes,
        }

    async def start(self):
        """Load the last status file and, when enabled, start the check loop."""
        await self.load_status()
        if self.interval_minutes <= 0:
            logger.info("Health worker disabled (health_check_minutes = 0)")
            return
        if self._task is not None:
            logger.warning("Health worker already running")
            return
        self._task = asyncio.create_task(self._worker_loop())
        logger.info(f"🏥 Health worker started (every {self.interval_minutes} min)")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Health worker stopped")

    async def _worker_loop(self):
        while True:
            try:
                await self.check_all()
                await asyncio.sleep(self.interval_minutes * 60)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health worker error: {e}")
                await asyncio.sleep(30)  # Back off on error

    async def check_all(self) -> dict[str, str]:
        """Probe every channel in the directory and persist the result."""
        channels = self.directory.channels
        started = time.monotonic()
        semaphore = asyncio.Semaphore(self.CONCURRENT_TESTS)

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.TEST_TIMEOUT),
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            async def check_with_sem(channel):
                async with semaphore:
                    return await self._check_channel(client, channel)

            results = await asyncio.gather(*[check_with_sem(c) for c in channels])

        details = [
            {"id": health_id(channel), "name": channel.name, "source": channel.source, **result}
            for channel, result in zip(channels, results)
        ]
        self._status = {d["id"]: "online" if d["healthy"] else "offline" for d in details}

        online = sum(1 for d in details if d["healthy"])
        self._stats["runs"] += 1
        self._stats["online"] = online
        self._stats["offline"] = len(details) - online
        self._stats["last_run"] = datetime.now(timezone.utc).isoformat()
        self._stats["last_duration_ms"] = int((time.monotonic() - started) * 1000)

        await asyncio.to_thread(self._save_status, details)
        logger.info(f"Health check complete: {online}/{len(details)} channels online")
        return self.status

    async def _check_channel(self, client: httpx.AsyncClient, channel: Channel) -> dict:
        """HEAD first; fall back to a short streamed GET when HEAD is not conclusive."""
        url = channel.original_url
        try:
            response = await client.head(url)
            if is_healthy_response(response.status_code, response.headers.get("content-type", "")):
                return {"healthy": True, "status_code": response.status_code, "method": "HEAD", "error": ""}
        except httpx.HTTPError:
            pass  # GET decides

        try:
            async with client.stream("GET", url) as response:
                bytes_read = 0
                if response.status_code in HEALTHY_STATUS_CODES:
                    async for chunk in response.aiter_raw():
                        bytes_read += len(chunk)
                        if bytes_read >= self.READ_LIMIT:
                            break
                healthy = (
                    is_healthy_response(response.status_code, response.headers.get("content-type", ""))
                    or (response.status_code in HEALTHY_STATUS_CODES and bytes_read > 0)
                )
                return {
                    "healthy": healthy,
                    "status_code": response.status_code,
                    "method": "GET",
                    "error": "" if healthy else "unhealthy content-type or no data",
                }
        except httpx.HTTPError as e:
            return {"healthy": False, "status_code": 0, "method": "GET", "error": str(e)[:100]}

    def _save_status(self, details: list[dict]):
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.status_path, "w", encoding="utf-8") as f:
                json.dump({"summary": self._status, "details": details}, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save health status: {e}")

    async def load_status(self):
        """Load the status map from a previous run."""
        if not self.status_path.exists():
            logger.info("No channel health status found - all channels unknown")
            return
        try:
            raw = await asyncio.to_thread(self.status_path.read_text, encoding="utf-8")
            data = json.loads(raw)
            summary = data.get("summary", data) if isinstance(data, dict) else {}
            self._status = {str(k): str(v) for k, v in summary.items()}
            logger.info(f"📥 Loaded health status for {len(self._status)} channels")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to load health status: {e}")
