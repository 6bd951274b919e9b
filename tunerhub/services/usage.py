"""
Viewer usage tracking.
Records which client is watching which channel, with a short idle grace
window so gaps between HLS segment requests do not end a session.
"""
import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Optional

from tunerhub.models.usage import UsageReport, UsageSession

logger = logging.getLogger(__name__)


def normalize_ip(ip: Optional[str]) -> str:
    """First address of a forwarded list, without the IPv4-mapped prefix."""
    raw = (ip or "").strip()
    if not raw:
        return ""
    first = raw.split(",")[0].strip()
    if first.startswith("::ffff:"):
        return first[len("::ffff:"):]
    return first


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageTracker:
    """Active viewing sessions keyed by (client ip, channel id)."""

    def __init__(self, idle_seconds: float = 45.0, clock: Callable[[], datetime] = _utcnow):
        self.idle = timedelta(seconds=idle_seconds)
        self._clock = clock
        self._sessions: dict[str, UsageSession] = {}
        self._lock = Lock()

    def register(self, ip: str, channel_id: str, name: str = "", tvg_id: str = "") -> str:
        """Start (or refresh) a session and return its key."""
        ip = normalize_ip(ip)
        key = f"{ip}|{channel_id}"
        now = self._clock()

        with self._lock:
            self._prune(now)
            existing = self._sessions.get(key)
            if existing is not None:
                existing.last_seen = now
                if not existing.name and name:
                    existing.name = name
                if not existing.tvg_id and tvg_id:
                    existing.tvg_id = tvg_id
                return key

            self._sessions[key] = UsageSession(
                ip=ip,
                channel_id=channel_id,
                name=name,
                tvg_id=tvg_id,
                started_at=now,
                last_seen=now,
            )

        logger.debug(f"Usage session started: {key}")
        return key

    def touch(self, key: str):
        with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                session.last_seen = self._clock()

    def unregister(self, key: str):
        with self._lock:
            self._sessions.pop(key, None)

    def active(self) -> list[UsageSession]:
        """Current sessions; those idle past the grace window are pruned."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            return [s.model_copy() for s in self._sessions.values()]

    def _prune(self, now: datetime):
        """Drop sessions idle past the grace window. Caller holds the lock."""
        cutoff = now - self.idle
        for key in [k for k, s in self._sessions.items() if s.last_seen < cutoff]:
            del self._sessions[key]

    def report(self) -> UsageReport:
        sessions = self.active()
        return UsageReport(
            active=[s.model_dump(mode="json") for s in sessions],
            count=len(sessions),
        )
