"""
EPG Parser Service.
Parses and structurally validates XMLTV guide documents.
"""
import re
import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Optional

from tunerhub.models.epg import GuideReport

logger = logging.getLogger(__name__)

# XMLTV time: 20251212040000 or 20251212040000 +0000
XMLTV_TIME_PATTERN = re.compile(r"^\d{14}(\s[+-]\d{4})?$")


class GuideFormatError(ValueError):
    """Raised when a guide document is not well-formed XMLTV."""


def parse_guide(content: bytes | str) -> ET.Element:
    """
    Parse XMLTV content and return its root element.

    Raises:
        GuideFormatError: content is not XML or the root is not <tv>
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise GuideFormatError(f"Invalid XML: {e}") from e

    if root.tag != "tv":
        raise GuideFormatError(f"Root element is <{root.tag}>, expected <tv>")
    return root


def is_valid_xmltv_time(value: Optional[str]) -> bool:
    return bool(value) and XMLTV_TIME_PATTERN.match(value) is not None


def parse_xmltv_time(value: str) -> datetime:
    """
    Parse an XMLTV timestamp. The result is timezone-aware when the
    value carries an offset, naive otherwise.
    """
    if not is_valid_xmltv_time(value):
        raise ValueError(f"Invalid XMLTV time: {value!r}")
    if " " in value:
        return datetime.strptime(value, "%Y%m%d%H%M%S %z")
    return datetime.strptime(value, "%Y%m%d%H%M%S")


def _comparable(start: datetime, stop: datetime) -> bool:
    return (start.tzinfo is None) == (stop.tzinfo is None)


def validate_guide(root: ET.Element) -> GuideReport:
    """
    Check the structure of a parsed guide: channel ids and display names,
    programme channel references, times and titles.
    """
    report = GuideReport()
    if root.tag != "tv":
        report.add_error(f"Root element is <{root.tag}>, expected <tv>")
        return report

    channels = root.findall("channel")
    report.channel_count = len(channels)
    for index, channel in enumerate(channels):
        channel_id = channel.get("id")
        if not channel_id:
            report.add_error(f"Channel {index}: missing id attribute")
            continue
        if channel.find("display-name") is None:
            report.warnings.append(f"Channel {channel_id}: missing display-name")
        report.valid_channels += 1

    programmes = root.findall("programme")
    report.programme_count = len(programmes)
    for index, programme in enumerate(programmes):
        channel_id = programme.get("channel")
        start = programme.get("start")
        stop = programme.get("stop")

        if not channel_id:
            report.add_error(f"Programme {index}: missing channel attribute")
            continue
        if not is_valid_xmltv_time(start):
            report.add_error(f"Programme {index} ({channel_id}): invalid start time {start!r}")
            continue
        if stop is not None and not is_valid_xmltv_time(stop):
            report.add_error(f"Programme {index} ({channel_id}): invalid stop time {stop!r}")
            continue

        if stop is not None:
            start_dt = parse_xmltv_time(start)
            stop_dt = parse_xmltv_time(stop)
            if _comparable(start_dt, stop_dt) and start_dt >= stop_dt:
                report.add_error(f"Programme {index} ({channel_id}): start is not before stop")
                continue

        title = programme.find("title")
        if title is None or not (title.text or "").strip():
            report.warnings.append(f"Programme {index} ({channel_id}): missing title")
        report.valid_programmes += 1

    return report
