"""
Tests for settings and YAML source configuration.
"""
import pytest
from pydantic import ValidationError

from tunerhub.config import M3USourceConfig, Settings, load_sources
from tunerhub.models.channel import MappingOverride


def test_settings_defaults():
    settings = Settings()
    assert settings.port == 34400
    assert settings.usage_idle_seconds == 45.0
    assert settings.head_timeout == 5.0


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("TUNERHUB_DEVICE_ID", "CAFE0001")
    monkeypatch.setenv("TUNERHUB_PUBLIC_BASE_URL", "https://tv.example.com")
    settings = Settings()
    assert settings.device_id == "CAFE0001"
    assert settings.public_base_url == "https://tv.example.com"


def test_load_sources(tmp_path):
    (tmp_path / "m3u.yaml").write_text(
        "urls:\n"
        "  - name: iptv\n    url: http://host/list.m3u\n"
        "  - name: antenna\n    url: http://192.168.1.50\n    type: HDHomeRun\n"
    )
    (tmp_path / "epg.yaml").write_text("urls:\n  - name: iptv\n    url: http://host/guide.xml\n")
    (tmp_path / "channel-map.yaml").write_text('"Fox News":\n  number: "44"\n  group: News\n')

    sources = load_sources(tmp_path)

    assert [s.type for s in sources.m3u] == ["m3u", "hdhomerun"]
    assert sources.epg[0].url == "http://host/guide.xml"
    assert sources.channel_map["Fox News"].number == "44"


def test_missing_files_use_defaults(tmp_path):
    sources = load_sources(tmp_path / "nowhere")
    assert sources.m3u == []
    assert sources.epg == []
    assert sources.channel_map == {}


def test_invalid_file_does_not_affect_others(tmp_path, caplog):
    (tmp_path / "m3u.yaml").write_text("urls:\n  - name: broken\n    type: satellite\n")
    (tmp_path / "epg.yaml").write_text("urls: [unclosed\n")
    (tmp_path / "channel-map.yaml").write_text('"A":\n  group: G\n')

    sources = load_sources(tmp_path)

    assert sources.m3u == []
    assert sources.epg == []
    assert "A" in sources.channel_map
    assert "Validation errors in m3u.yaml" in caplog.text
    assert "Failed to parse YAML" in caplog.text


def test_source_type_is_validated():
    with pytest.raises(ValidationError):
        M3USourceConfig(name="x", url="http://h", type="dvb")


def test_empty_mapping_override_rejected():
    with pytest.raises(ValidationError):
        MappingOverride()


def test_url_only_mapping_is_accepted(tmp_path):
    (tmp_path / "channel-map.yaml").write_text(
        '"Good":\n  name: Renamed\n"Other":\n  url: http://alt/x.ts\n'
    )

    sources = load_sources(tmp_path)

    assert sources.channel_map["Good"].name == "Renamed"
    assert sources.channel_map["Other"].url == "http://alt/x.ts"
