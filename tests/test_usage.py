"""
Tests for viewer usage tracking.
"""
from datetime import datetime, timedelta, timezone

import pytest

from tunerhub.services.usage import UsageTracker, normalize_ip


class DateClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.mark.parametrize("raw,expected", [
    ("10.0.0.5", "10.0.0.5"),
    ("::ffff:192.168.1.9", "192.168.1.9"),
    ("203.0.113.7, 10.0.0.1", "203.0.113.7"),
    ("", ""),
    (None, ""),
])
def test_normalize_ip(raw, expected):
    assert normalize_ip(raw) == expected


def test_register_is_keyed_by_ip_and_channel():
    tracker = UsageTracker(clock=DateClock())

    key = tracker.register("::ffff:10.0.0.5", "5", name="One")
    again = tracker.register("10.0.0.5", "5")
    other = tracker.register("10.0.0.5", "6")

    assert key == again == "10.0.0.5|5"
    assert other == "10.0.0.5|6"
    assert len(tracker.active()) == 2


def test_reregister_fills_missing_metadata():
    tracker = UsageTracker(clock=DateClock())
    tracker.register("1.1.1.1", "5")
    tracker.register("1.1.1.1", "5", name="One", tvg_id="one.tv")

    [session] = tracker.active()
    assert session.name == "One"
    assert session.tvg_id == "one.tv"


def test_idle_sessions_are_pruned():
    clock = DateClock()
    tracker = UsageTracker(idle_seconds=45, clock=clock)
    stale = tracker.register("1.1.1.1", "5")
    kept = tracker.register("2.2.2.2", "5")

    clock.advance(30)
    tracker.touch(kept)
    clock.advance(20)

    assert [s.key for s in tracker.active()] == [kept]
    tracker.touch(stale)  # touching a pruned session is a no-op
    assert len(tracker.active()) == 1



def test_register_prunes_idle_sessions():
    clock = DateClock()
    tracker = UsageTracker(idle_seconds=45, clock=clock)
    for i in range(20):
        tracker.register(f"10.0.0.{i}", "5")

    clock.advance(60)
    key = tracker.register("10.0.1.1", "5")

    assert list(tracker._sessions) == [key]

def test_unregister():
    tracker = UsageTracker(clock=DateClock())
    key = tracker.register("1.1.1.1", "5")
    tracker.unregister(key)
    tracker.unregister(key)
    assert tracker.active() == []


def test_report():
    clock = DateClock()
    tracker = UsageTracker(clock=clock)
    tracker.register("1.1.1.1", "5", name="One")

    report = tracker.report()

    assert report.count == 1
    assert report.active[0]["channel_id"] == "5"
    assert report.active[0]["started_at"].startswith("2025-01-01T00:00:00")
