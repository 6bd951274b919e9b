"""
Tests for XMLTV parsing and validation.
"""
from datetime import timezone

import pytest

from tunerhub.services.epg_parser import (
    GuideFormatError,
    is_valid_xmltv_time,
    parse_guide,
    parse_xmltv_time,
    validate_guide,
)


def test_parse_guide(sample_epg_xml):
    root = parse_guide(sample_epg_xml.encode())
    assert root.tag == "tv"
    assert len(root.findall("channel")) == 3


def test_parse_guide_rejects_wrong_root():
    with pytest.raises(GuideFormatError):
        parse_guide(b"<html><body/></html>")


def test_parse_guide_rejects_malformed_xml():
    with pytest.raises(GuideFormatError):
        parse_guide(b"<tv><channel></tv>")


@pytest.mark.parametrize("value,valid", [
    ("20251212040000", True),
    ("20251212040000 +0000", True),
    ("20251212040000 -0500", True),
    ("2025121204", False),
    ("20251212040000+0000", False),
    ("", False),
    (None, False),
])
def test_is_valid_xmltv_time(value, valid):
    assert is_valid_xmltv_time(value) is valid


def test_parse_xmltv_time_with_offset():
    dt = parse_xmltv_time("20251212040000 +0000")
    assert dt.tzinfo is not None
    assert dt.astimezone(timezone.utc).hour == 4


def test_parse_xmltv_time_without_offset():
    dt = parse_xmltv_time("20251212040000")
    assert dt.tzinfo is None
    assert (dt.year, dt.month, dt.day) == (2025, 12, 12)


def test_parse_xmltv_time_invalid():
    with pytest.raises(ValueError):
        parse_xmltv_time("yesterday")


def test_validate_good_guide(sample_epg_xml):
    report = validate_guide(parse_guide(sample_epg_xml))

    assert report.valid
    assert report.channel_count == 3
    assert report.programme_count == 3
    assert report.valid_programmes == 3
    assert report.errors == []


def test_validate_reports_problems():
    root = parse_guide("""<tv>
        <channel><display-name>No id</display-name></channel>
        <channel id="a"/>
        <programme channel="a" start="bad" stop="20250101010000"><title>X</title></programme>
        <programme channel="a" start="20250101020000" stop="20250101010000"><title>Y</title></programme>
        <programme channel="a" start="20250101000000" stop="20250101010000"/>
    </tv>""")
    report = validate_guide(root)

    assert not report.valid
    assert report.valid_channels == 1
    assert report.valid_programmes == 1
    assert any("missing id" in e for e in report.errors)
    assert any("invalid start" in e for e in report.errors)
    assert any("start is not before stop" in e for e in report.errors)
    assert any("missing title" in w for w in report.warnings)
    assert any("missing display-name" in w for w in report.warnings)
