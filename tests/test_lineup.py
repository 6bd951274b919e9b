"""
Tests for lineup documents and playlist generation.
"""
import pytest

from tunerhub.config import Settings
from tunerhub.models.channel import RawChannel
from tunerhub.services.cache import ExpiringCache
from tunerhub.services.directory import build_channels
from tunerhub.services.lineup import LineupService, dedupe_tvg_ids

BASE = "http://proxy:34400"


@pytest.fixture
def lineup(directory):
    return LineupService(
        directory,
        Settings(device_id="ABCD1234", friendly_name="Test Tuner"),
        ExpiringCache("lineup", 300),
        ExpiringCache("playlist", 300),
    )


def test_discover_document(lineup):
    doc = lineup.discover(BASE)

    assert doc["FriendlyName"] == "Test Tuner"
    assert doc["DeviceID"] == "ABCD1234"
    assert doc["BaseURL"] == BASE
    assert doc["LineupURL"] == f"{BASE}/lineup.json"
    assert doc["ModelNumber"] == "HDHR3-US"


def test_lineup_status_document(lineup):
    assert lineup.lineup_status() == {
        "ScanInProgress": 0,
        "ScanPossible": 1,
        "Source": "Cable",
        "SourceList": ["Cable"],
    }


@pytest.mark.asyncio
async def test_lineup_uses_relay_routes(lineup, directory, sample_channels):
    await directory.replace(sample_channels)

    entries = lineup.lineup(BASE)

    assert entries[0] == {"GuideNumber": "1", "GuideName": "One", "URL": f"{BASE}/stream/A/One"}
    assert entries[2] == {"GuideNumber": "three.tv", "GuideName": "Three", "URL": f"{BASE}/stream/B/Three"}
    assert all("up/" not in e["URL"] for e in entries)


@pytest.mark.asyncio
async def test_lineup_source_filter(lineup, directory, sample_channels):
    await directory.replace(sample_channels)
    assert [e["GuideName"] for e in lineup.lineup(BASE, source="B")] == ["Three"]


@pytest.mark.asyncio
async def test_lineup_is_cached_until_cleared(lineup, directory, sample_channels):
    await directory.replace(sample_channels)
    first = lineup.lineup(BASE)

    await directory.replace(sample_channels[:1])
    assert lineup.lineup(BASE) == first

    lineup.lineup_cache.clear()
    assert len(lineup.lineup(BASE)) == 1


@pytest.mark.asyncio
async def test_playlist(lineup, directory, sample_channels):
    await directory.replace(sample_channels)

    lines = lineup.playlist(BASE).splitlines()

    assert lines[0] == f'#EXTM3U url-tvg="{BASE}/xmltv.xml" x-tvg-url="{BASE}/xmltv.xml"'
    assert lines[1] == (
        '#EXTINF:-1 tvg-id="one.tv" tvg-name="One" '
        f'tvg-logo="{BASE}/images/A/http%3A%2F%2Fimg%2Fone.png" group-title="A",One'
    )
    assert lines[2] == f"{BASE}/stream/A/One"
    assert 'tvg-logo=""' in lines[3]


@pytest.mark.asyncio
async def test_playlist_dedupes_tvg_ids(lineup, directory):
    channels = build_channels([
        RawChannel(name="X1", tvg_id="x", source="A", url="http://up/1.ts"),
        RawChannel(name="X2", tvg_id="x", source="A", url="http://up/2.ts"),
    ], {})
    await directory.replace(channels)

    playlist = lineup.playlist(BASE)

    assert playlist.count('tvg-id="x"') == 1
    assert playlist.count('tvg-id="x_1"') == 1
    assert playlist.index('tvg-id="x"') < playlist.index('tvg-id="x_1"')


def test_dedupe_tvg_ids_order_and_collisions():
    channels = build_channels([
        RawChannel(name="a", tvg_id="x", source="S", url="http://u/a"),
        RawChannel(name="b", tvg_id="x_1", source="S", url="http://u/b"),
        RawChannel(name="c", tvg_id="x", source="S", url="http://u/c"),
        RawChannel(name="d", tvg_id="x", source="S", url="http://u/d"),
        RawChannel(name="e", source="S", url="http://u/e"),
        RawChannel(name="f", source="S", url="http://u/f"),
    ], {})

    assert dedupe_tvg_ids(channels) == ["x", "x_1", "x_2", "x_3", "", ""]
