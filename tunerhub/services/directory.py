"""
Channel Directory.
Resolves raw source records plus operator overrides into the canonical
channel list, and owns the current immutable snapshot of that list.
"""
import asyncio
import inspect
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from tunerhub.config import SourcesConfig
from tunerhub.models.channel import Channel, MappingOverride, RawChannel
from tunerhub.services.source_sync import SourceSync
from tunerhub.services.urls import relay_route

logger = logging.getLogger(__name__)

ReloadListener = Callable[[tuple[Channel, ...]], Any]


def guide_number_for(channel: Channel) -> str:
    """
    Client-visible channel number: guide number, then tvg-id, then name.

    Used by the lineup and by usage tracking; both must agree or session
    deduplication silently breaks.
    """
    return channel.guide_number or channel.tvg_id or channel.name


def find_override(record: RawChannel, overrides: dict[str, MappingOverride]) -> Optional[MappingOverride]:
    """Name match first, then tvg-id match."""
    override = overrides.get(record.name)
    if override is None and record.tvg_id:
        override = overrides.get(record.tvg_id)
    return override


def build_channels(
    records: Iterable[RawChannel],
    overrides: dict[str, MappingOverride],
) -> list[Channel]:
    """
    Build the canonical channel list. Pure: no I/O, same inputs give the
    same output. Bad records are skipped, never fatal.
    """
    channels = []
    seen: set[tuple[str, str]] = set()

    for record in records:
        if not record.name or not record.name.strip():
            logger.warning(f"Skipping channel without a name from source {record.source!r}")
            continue

        fields = {
            "name": record.name.strip(),
            "tvg_id": record.tvg_id,
            "logo": record.logo,
            "guide_number": record.guide_number,
            "group": record.group,
        }
        original_url = record.url

        override = find_override(record, overrides)
        if override is not None:
            fields["name"] = override.name or fields["name"]
            fields["tvg_id"] = override.tvg_id or fields["tvg_id"]
            fields["logo"] = override.logo or fields["logo"]
            fields["guide_number"] = override.number or fields["guide_number"]
            fields["group"] = override.group or fields["group"]
            original_url = override.url or original_url

        if not fields["tvg_id"] and fields["guide_number"]:
            fields["tvg_id"] = fields["guide_number"]

        key = (record.source, fields["name"])
        if key in seen:
            logger.warning(f"Duplicate channel {fields['name']!r} in source {record.source!r}, keeping the first")
            continue
        seen.add(key)

        channels.append(Channel(
            source=record.source,
            original_url=original_url,
            route=relay_route(record.source, fields["name"]),
            device=record.device,
            **fields,
        ))

    return channels


class ChannelDirectory:
    """
    Holder of the canonical channel snapshot.

    The snapshot is a tuple that is replaced wholesale on reload, so readers
    holding a reference always see a complete, consistent list.
    """

    SNAPSHOT_FILENAME = "channels.json"

    def __init__(
        self,
        sync: SourceSync,
        sources_provider: Callable[[], SourcesConfig],
        data_dir: Optional[str | Path] = None,
    ):
        self._sync = sync
        self._sources_provider = sources_provider
        self._data_dir = Path(data_dir) if data_dir else None
        self._channels: tuple[Channel, ...] = ()
        self._index: dict[tuple[str, str], Channel] = {}
        self._listeners: list[ReloadListener] = []
        self._reload_lock = asyncio.Lock()
        self.last_reload: Optional[float] = None

    @property
    def channels(self) -> tuple[Channel, ...]:
        return self._channels

    def find(self, source: str, name: str) -> Optional[Channel]:
        return self._index.get((source, name))

    def by_source(self, source: str) -> list[Channel]:
        return [c for c in self._channels if c.source == source]

    def on_reloaded(self, listener: ReloadListener):
        """Register a callback (sync or async) run after every snapshot swap."""
        self._listeners.append(listener)

    async def replace(self, channels: Iterable[Channel]) -> tuple[Channel, ...]:
        """Atomically swap in a new snapshot and notify listeners."""
        snapshot = tuple(channels)
        index = {(c.source, c.name): c for c in snapshot}
        # Single assignment each: readers see either the old or the new list
        self._index = index
        self._channels = snapshot
        self.last_reload = time.time()
        await self._notify(snapshot)
        return snapshot

    async def _notify(self, snapshot: tuple[Channel, ...]):
        for listener in self._listeners:
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in directory reload listener: {e}", exc_info=True)

    async def reload(self) -> tuple[Channel, ...]:
        """
        Re-read configuration, fetch every source, rebuild and swap.
        A reload requested while another runs waits for it instead of
        starting a second one.
        """
        if self._reload_lock.locked():
            logger.info("Directory reload already in progress, waiting for it")
            async with self._reload_lock:
                return self._channels

        async with self._reload_lock:
            started = time.monotonic()
            sources = self._sources_provider()
            records = await self._sync.fetch_all(sources.m3u)
            channels = build_channels(records, sources.channel_map)
            snapshot = await self.replace(channels)
            await asyncio.to_thread(self.save_snapshot)

            duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(f"📺 Directory rebuilt: {len(snapshot)} channels in {duration_ms}ms")
            return snapshot

    # ==================== SNAPSHOT FILE ====================

    @property
    def snapshot_path(self) -> Optional[Path]:
        return self._data_dir / self.SNAPSHOT_FILENAME if self._data_dir else None

    def save_snapshot(self):
        """Write the current snapshot to data_dir/channels.json."""
        path = self.snapshot_path
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            data = [c.model_dump(mode="json") for c in self._channels]
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            logger.error(f"Failed to save channel snapshot: {e}")

    async def load_snapshot(self) -> int:
        """Load the last saved snapshot so lineups are served before the first reload."""
        path = self.snapshot_path
        if path is None or not path.exists():
            return 0
        try:
            data = json.loads(await asyncio.to_thread(path.read_text, encoding="utf-8"))
            channels = [Channel.model_validate(item) for item in data]
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable channel snapshot {path}: {e}")
            return 0

        await self.replace(channels)
        logger.info(f"Loaded {len(channels)} channels from snapshot")
        return len(channels)
