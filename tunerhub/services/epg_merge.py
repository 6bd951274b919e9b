"""
Guide Merge Service.
Fetches every configured XMLTV source, keeps only the guide data that belongs
to channels in the directory, and serves the merged document.
"""
import asyncio
import logging
import time
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Callable, Iterable, Optional

import httpx

from tunerhub.config import EPGSourceConfig, SourcesConfig
from tunerhub.models.channel import Channel
from tunerhub.services.cache import ExpiringCache
from tunerhub.services.directory import ChannelDirectory
from tunerhub.services.epg_parser import parse_guide, validate_guide
from tunerhub.services.source_sync import failure_hint
from tunerhub.services.urls import proxied_image_url

logger = logging.getLogger(__name__)


class GuideNotReady(Exception):
    """No guide has been merged yet."""


def _read_local_bytes(url: str) -> bytes:
    return Path(url[len("file://"):]).read_bytes()


def _display_names(channel: ET.Element) -> set[str]:
    return {(node.text or "").strip() for node in channel.findall("display-name")}


class GuideMerger:
    """
    Merges XMLTV sources against the channel directory.

    Each guide source is matched to the channel source with the same name.
    The last good filtered content of every source is kept so that one
    failing source does not blank its channels out of the guide.
    """

    def __init__(
        self,
        directory: ChannelDirectory,
        sources_provider: Callable[[], SourcesConfig],
        cache: ExpiringCache,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.directory = directory
        self._sources_provider = sources_provider
        self.cache = cache
        self.timeout = timeout
        self._transport = transport
        self._last_good: dict[str, tuple[list[ET.Element], list[ET.Element]]] = {}
        self._document: Optional[bytes] = None
        self._merged_channels: Optional[tuple[Channel, ...]] = None
        self._refresh_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.last_refresh: Optional[float] = None

    @property
    def ready(self) -> bool:
        return self._document is not None

    # ==================== MERGE ====================

    async def _fetch(self, client: httpx.AsyncClient, source: EPGSourceConfig) -> bytes:
        if source.url.startswith("file://"):
            return await asyncio.to_thread(_read_local_bytes, source.url)
        response = await client.get(source.url)
        response.raise_for_status()
        return response.content

    async def merge(self, channels: Iterable[Channel], sources: list[EPGSourceConfig]) -> ET.Element:
        """
        Build a merged <tv> tree for the given channels.
        Sources are fetched concurrently and applied in configured order.
        """
        channels = list(channels)

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            results = await asyncio.gather(
                *[self._fetch(client, source) for source in sources],
                return_exceptions=True,
            )

        merged = ET.Element("tv")
        kept_channels: list[ET.Element] = []
        kept_programmes: list[ET.Element] = []

        for source, result in zip(sources, results):
            source_channels = [c for c in channels if c.source == source.name]
            ids = {c.tvg_id for c in source_channels if c.tvg_id}
            names = {c.name for c in source_channels}

            try:
                if isinstance(result, BaseException):
                    raise result
                root = parse_guide(result)
            except Exception as e:
                logger.error(f"❌ Failed to load EPG from {source.name}: {e}")
                logger.info(f"Hint for {source.name}: {failure_hint(e)}")
                if source.name in self._last_good:
                    logger.info(f"Reusing last good guide content for {source.name}")
                    source_kept, programme_kept = self._last_good[source.name]
                    kept_channels.extend(source_kept)
                    kept_programmes.extend(programme_kept)
                continue

            report = validate_guide(root)
            if not report.valid:
                logger.warning(
                    f"EPG {source.name} has {len(report.errors)} structural errors, "
                    f"first: {report.errors[0]}"
                )

            source_kept = [
                ch for ch in root.findall("channel")
                if ch.get("id") in ids or _display_names(ch) & names
            ]
            programme_kept = [
                p for p in root.findall("programme")
                if p.get("channel") in ids or p.get("channel") in names
            ]
            self._last_good[source.name] = (source_kept, programme_kept)
            kept_channels.extend(source_kept)
            kept_programmes.extend(programme_kept)
            logger.info(f"Loaded {len(programme_kept)} programmes from {source.name}")

        merged.extend(kept_channels)
        merged.extend(kept_programmes)
        return merged

    async def refresh(self) -> bool:
        """
        Merge against the current directory snapshot and publish the result.
        Returns False when the previous document was kept.
        """
        if self._refresh_lock.locked():
            logger.info("EPG refresh already in progress, waiting for it")
            async with self._refresh_lock:
                if self.directory.channels is self._merged_channels:
                    return self.ready
                # Directory was swapped while the running merge held the old list
                logger.info("Channel directory changed during EPG refresh, merging again")
                return await self._merge_and_publish()

        async with self._refresh_lock:
            return await self._merge_and_publish()

    async def _merge_and_publish(self) -> bool:
        """Caller holds the refresh lock."""
        started = time.monotonic()
        channels = self.directory.channels
        sources = self._sources_provider().epg
        merged = await self.merge(channels, sources)

        try:
            document = ET.tostring(merged, encoding="utf-8", xml_declaration=True)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize merged EPG, keeping previous: {e}")
            return False

        self._document = document
        self._merged_channels = channels
        self.cache.clear()
        self.last_refresh = time.time()

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"EPG merge completed in {duration_ms}ms "
            f"({len(merged.findall('channel'))} channels, {len(merged.findall('programme'))} programmes)"
        )
        return True

    # ==================== SERVE ====================

    def _allowed_ids(self, source: Optional[str], channels: Optional[str]) -> set[str]:
        if source:
            return {c.tvg_id for c in self.directory.by_source(source) if c.tvg_id}
        if channels:
            return {cid.strip() for cid in channels.split(",") if cid.strip()}
        return set()

    def render(self, base_url: str, source: Optional[str] = None, channels: Optional[str] = None) -> bytes:
        """
        Serve the merged guide for one client base URL, optionally narrowed
        by channel source or explicit ids, with icons routed through the
        image relay.

        Raises:
            GuideNotReady: nothing has been merged yet
        """
        document = self._document
        if document is None:
            raise GuideNotReady()

        cache_key = f"{base_url}|source:{source or ''}|channels:{channels or ''}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        root = ET.fromstring(document)
        allowed = self._allowed_ids(source, channels)
        if allowed:
            for node in root.findall("channel"):
                if node.get("id") not in allowed:
                    root.remove(node)
            for node in root.findall("programme"):
                if node.get("channel") not in allowed:
                    root.remove(node)

        for node in root.findall("channel"):
            name = node.findtext("display-name") or "unknown"
            self._rewrite_icons(node, base_url, name)
        for node in root.findall("programme"):
            self._rewrite_icons(node, base_url, node.get("channel") or "unknown")

        rendered = ET.tostring(root, encoding="utf-8", xml_declaration=True)
        self.cache.set(cache_key, rendered)
        return rendered

    @staticmethod
    def _rewrite_icons(node: ET.Element, base_url: str, label: str):
        for icon in node.findall("icon"):
            src = icon.get("src") or ""
            if src.startswith("http"):
                icon.set("src", proxied_image_url(base_url, label, src))

    # ==================== BACKGROUND ====================

    async def start(self, interval_hours: float):
        """Run a refresh every interval_hours until stopped."""
        if self._task is not None:
            logger.warning("EPG refresh loop already running")
            return
        if interval_hours <= 0:
            return
        self._task = asyncio.create_task(self._refresh_loop(interval_hours * 3600))
        logger.info(f"🗓️ EPG refresh scheduled every {interval_hours}h")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _refresh_loop(self, interval: float):
        while True:
            try:
                await asyncio.sleep(interval)
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"EPG refresh error: {e}")
                await asyncio.sleep(60)
