"""
Tests for the channel health worker.
"""
import json

import httpx
import pytest

from tunerhub.services.health_worker import HealthWorker, health_id, is_healthy_response


def probe_handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if url == "http://up/stream/chan.m3u8":
        return httpx.Response(200, headers={"content-type": "application/vnd.apple.mpegurl"})
    if url == "http://up/two.ts":
        # HEAD not allowed, GET returns bytes with a generic type
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, content=b"\x47" * 2048, headers={"content-type": "text/plain"})
    return httpx.Response(404)


@pytest.mark.parametrize("status,content_type,expected", [
    (200, "video/mp2t", True),
    (206, "application/octet-stream", True),
    (200, "application/x-mpegURL", True),
    (200, "text/html", False),
    (404, "video/mp2t", False),
])
def test_is_healthy_response(status, content_type, expected):
    assert is_healthy_response(status, content_type) is expected


def test_health_id(sample_channels):
    one, two, three = sample_channels
    assert health_id(one) == "one.tv"
    assert health_id(two) == "2"
    assert health_id(three) == "three.tv"


@pytest.mark.asyncio
async def test_check_all_writes_status_file(directory, sample_channels, tmp_path):
    await directory.replace(sample_channels)
    worker = HealthWorker(directory, tmp_path, transport=httpx.MockTransport(probe_handler))

    status = await worker.check_all()

    assert status == {"one.tv": "online", "2": "online", "three.tv": "offline"}
    saved = json.loads((tmp_path / "lineup_status.json").read_text())
    assert saved["summary"] == status
    assert worker.is_online(sample_channels[0])
    assert not worker.is_online(sample_channels[2])
    assert worker.get_stats()["online"] == 2


@pytest.mark.asyncio
async def test_status_is_loaded_on_start(directory, sample_channels, tmp_path):
    (tmp_path / "lineup_status.json").write_text(json.dumps({"summary": {"three.tv": "online"}}))
    worker = HealthWorker(directory, tmp_path, interval_minutes=0)

    await worker.start()

    assert worker.is_online(sample_channels[2])
    assert worker.get_stats()["running"] is False
    await worker.stop()
