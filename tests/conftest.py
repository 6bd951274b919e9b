"""
Pytest configuration and fixtures for tunerhub tests.
"""
import pytest

from tunerhub.config import SourcesConfig
from tunerhub.models.channel import RawChannel
from tunerhub.services.directory import ChannelDirectory, build_channels
from tunerhub.services.source_sync import SourceSync


class FakeClock:
    """Manually advanced clock for cache and usage tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_m3u_content():
    """Sample M3U content for testing."""
    return """#EXTM3U
#EXTINF:-1 tvg-id="ABC.us" tvg-logo="https://example.com/abc.png" group-title="News",ABC East
http://example.com/abc-east.m3u8
#EXTINF:-1 tvg-id="CNN.us" tvg-chno="202",CNN (1080p)
http://example.com/cnn.m3u8
#EXTINF:-1 tvg-chno="5",Channel Without ID
http://example.com/no-id.ts
"""


@pytest.fixture
def sample_m3u_file(sample_m3u_content, tmp_path):
    """Create a temporary M3U file for testing."""
    m3u_file = tmp_path / "local.m3u"
    m3u_file.write_text(sample_m3u_content)
    return m3u_file


@pytest.fixture
def sample_epg_xml():
    """Sample XMLTV EPG content for testing."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<tv>
    <channel id="ABC.us">
        <display-name>ABC East</display-name>
        <icon src="https://example.com/abc.png"/>
    </channel>
    <channel id="CNN.us">
        <display-name>CNN</display-name>
    </channel>
    <channel id="FOX.us">
        <display-name>FOX</display-name>
    </channel>
    <programme start="20251212010000 +0000" stop="20251212020000 +0000" channel="ABC.us">
        <title>Morning News</title>
        <icon src="http://images.example.com/news.jpg"/>
    </programme>
    <programme start="20251212020000 +0000" stop="20251212030000 +0000" channel="CNN.us">
        <title>Weather Update</title>
    </programme>
    <programme start="20251212020000 +0000" stop="20251212030000 +0000" channel="FOX.us">
        <title>Not Ours</title>
    </programme>
</tv>
"""


@pytest.fixture
def sample_epg_file(sample_epg_xml, tmp_path):
    """Create a temporary EPG XML file for testing."""
    epg_file = tmp_path / "local_guide.xml"
    epg_file.write_text(sample_epg_xml)
    return epg_file


@pytest.fixture
def sample_channels():
    """Canonical channels from two sources."""
    records = [
        RawChannel(name="One", tvg_id="one.tv", guide_number="1", logo="http://img/one.png",
                   source="A", url="http://up/stream/chan.m3u8"),
        RawChannel(name="Two", tvg_id="", guide_number="2", source="A", url="http://up/two.ts"),
        RawChannel(name="Three", tvg_id="three.tv", source="B", url="http://other/three.ts"),
    ]
    return build_channels(records, {})


@pytest.fixture
def directory(tmp_path):
    """Empty directory persisting to a temporary data dir."""
    return ChannelDirectory(SourceSync(), lambda: SourcesConfig(), tmp_path / "data")
