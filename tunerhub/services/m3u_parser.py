"""
M3U Parser Service.
Parses extended M3U playlists from channel sources into raw channel records.
"""
import re
import logging
from pathlib import Path

from tunerhub.models.channel import RawChannel

logger = logging.getLogger(__name__)

# Attribute pairs inside an EXTINF line, e.g. tvg-id="ABC.us"
EXTINF_ATTR_PATTERN = re.compile(r'([\w-]+)="([^"]*)"')

VALID_PROTOCOLS = ("http://", "https://", "rtsp://", "rtp://", "udp://")


class M3UParser:
    """Parse M3U playlist text."""

    def parse(self, content: str, source_name: str) -> list[RawChannel]:
        """
        Parse playlist text into raw channel records for one source.

        Args:
            content: Playlist text
            source_name: Name of the configured source the playlist came from

        Returns:
            Records in playlist order; entries with unusable URLs are dropped
        """
        lines = content.splitlines()
        if not lines or not lines[0].strip().startswith("#EXTM3U"):
            logger.warning(f"{source_name}: missing #EXTM3U header")

        channels = []
        current_info = None

        for line_number, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue

            if line.startswith("#EXTINF"):
                current_info = self._parse_extinf(line)
                continue

            if line.startswith("#"):
                continue

            if not line.startswith(VALID_PROTOCOLS):
                logger.warning(f"[{source_name}:{line_number}] Invalid stream URL format: {line[:50]}")
                current_info = None
                continue

            if current_info is not None:
                channels.append(RawChannel(source=source_name, url=line, **current_info))
            current_info = None

        logger.info(f"Parsed {len(channels)} channels from {source_name}")
        return channels

    def _parse_extinf(self, line: str) -> dict:
        """Extract the display name and tvg-* attributes from an EXTINF line."""
        attrs = dict(EXTINF_ATTR_PATTERN.findall(line))

        # The display name follows the first comma outside of quoted attributes
        unquoted = EXTINF_ATTR_PATTERN.sub("", line)
        name = unquoted.split(",", 1)[1].strip() if "," in unquoted else ""

        return {
            "name": name,
            "tvg_id": attrs.get("tvg-id", ""),
            "logo": attrs.get("tvg-logo", ""),
            "guide_number": attrs.get("tvg-chno", ""),
            "group": attrs.get("group-title", ""),
        }

    def parse_file(self, filepath: str | Path, source_name: str) -> list[RawChannel]:
        """Parse a local playlist file."""
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"M3U file not found: {filepath}")

        logger.info(f"Parsing M3U file: {filepath}")
        with open(filepath, "r", encoding="utf-8", errors="ignore") as f:
            return self.parse(f.read(), source_name)
