"""
Lineup Service.
Builds the HDHomeRun discovery/lineup documents and the M3U playlist that
clients consume. Every channel URL points at the relay, never upstream.
"""
import logging
from typing import Optional

from tunerhub.config import Settings
from tunerhub.models.channel import Channel
from tunerhub.services.cache import ExpiringCache
from tunerhub.services.directory import ChannelDirectory, guide_number_for
from tunerhub.services.urls import proxied_image_url

logger = logging.getLogger(__name__)

LINEUP_STATUS = {
    "ScanInProgress": 0,
    "ScanPossible": 1,
    "Source": "Cable",
    "SourceList": ["Cable"],
}


def _attr(value: str) -> str:
    # Double quotes would terminate the EXTINF attribute
    return (value or "").replace('"', "'")


def dedupe_tvg_ids(channels: list[Channel]) -> list[str]:
    """
    Playlist tvg-ids in channel order, with repeats suffixed _1, _2, ...
    Empty ids stay empty.
    """
    used: set[str] = set()
    suffixes: dict[str, int] = {}
    result = []

    for channel in channels:
        tvg_id = channel.tvg_id
        if tvg_id:
            if tvg_id in used:
                n = suffixes.get(tvg_id, 0)
                candidate = tvg_id
                while candidate in used:
                    n += 1
                    candidate = f"{tvg_id}_{n}"
                suffixes[tvg_id] = n
                tvg_id = candidate
            used.add(tvg_id)
        result.append(tvg_id)

    return result


class LineupService:
    """Client-facing lineup documents, cached per base URL and filter."""

    def __init__(
        self,
        directory: ChannelDirectory,
        settings: Settings,
        lineup_cache: ExpiringCache,
        playlist_cache: ExpiringCache,
    ):
        self.directory = directory
        self.settings = settings
        self.lineup_cache = lineup_cache
        self.playlist_cache = playlist_cache

    def _select(self, source: Optional[str]) -> list[Channel]:
        if source:
            return self.directory.by_source(source)
        return list(self.directory.channels)

    def discover(self, base_url: str) -> dict:
        s = self.settings
        return {
            "FriendlyName": s.friendly_name,
            "ModelNumber": s.model_number,
            "FirmwareName": s.firmware_name,
            "FirmwareVersion": s.firmware_version,
            "DeviceID": s.device_id,
            "DeviceAuth": s.device_auth,
            "BaseURL": base_url,
            "LineupURL": f"{base_url}/lineup.json",
            "TunerCount": s.tuner_count,
        }

    @staticmethod
    def lineup_status() -> dict:
        return dict(LINEUP_STATUS)

    def lineup(self, base_url: str, source: Optional[str] = None) -> list[dict]:
        """HDHomeRun lineup: [{GuideNumber, GuideName, URL}]."""
        cache_key = f"{base_url}|source:{source or ''}"
        cached = self.lineup_cache.get(cache_key)
        if cached is not None:
            return cached

        entries = [
            {
                "GuideNumber": guide_number_for(channel),
                "GuideName": channel.name,
                "URL": f"{base_url}{channel.route}",
            }
            for channel in self._select(source)
        ]
        self.lineup_cache.set(cache_key, entries)
        return entries

    def playlist(self, base_url: str, source: Optional[str] = None) -> str:
        """Extended M3U playlist pointing at the relay and the merged guide."""
        cache_key = f"{base_url}|source:{source or ''}"
        cached = self.playlist_cache.get(cache_key)
        if cached is not None:
            return cached

        guide_url = f"{base_url}/xmltv.xml"
        lines = [f'#EXTM3U url-tvg="{guide_url}" x-tvg-url="{guide_url}"']

        channels = self._select(source)
        for channel, tvg_id in zip(channels, dedupe_tvg_ids(channels)):
            logo = proxied_image_url(base_url, channel.source, channel.logo)
            lines.append(
                f'#EXTINF:-1 tvg-id="{_attr(tvg_id)}" tvg-name="{_attr(channel.name)}" '
                f'tvg-logo="{_attr(logo)}" group-title="{_attr(channel.source)}",{channel.name}'
            )
            lines.append(f"{base_url}{channel.route}")

        playlist = "\n".join(lines) + "\n"
        self.playlist_cache.set(cache_key, playlist)
        logger.debug(f"Built playlist with {len(channels)} channels for {base_url}")
        return playlist
