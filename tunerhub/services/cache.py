"""
In-memory expiring cache for derived artifacts (playlists, lineups, guide XML).
Each named cache carries one TTL and its own hit/miss counters.
"""
import time
from threading import Lock
from typing import Any, Callable, Optional


class ExpiringCache:
    """
    Key/value store with a single per-instance TTL.

    Entries are evicted lazily: a read past the TTL deletes the entry and
    reports it as absent. A TTL of 0 means entries never expire.
    All operations on one instance are serialized by its lock.
    """

    def __init__(self, name: str, ttl: float = 0, clock: Callable[[], float] = time.monotonic):
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        self.name = name
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._stored_at: dict[str, float] = {}
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def _expired(self, key: str, now: float) -> bool:
        return self.ttl > 0 and now - self._stored_at[key] > self.ttl

    def _evict_if_expired(self, key: str) -> bool:
        """Drop key if it has expired. Returns True if the key is still live."""
        if key not in self._data:
            return False
        if self._expired(key, self._clock()):
            del self._data[key]
            del self._stored_at[key]
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if not self._evict_if_expired(key):
                self.misses += 1
                return default
            self.hits += 1
            return self._data[key]

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._stored_at[key] = self._clock()

    def has(self, key: str) -> bool:
        with self._lock:
            return self._evict_if_expired(key)

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = key in self._data
            self._data.pop(key, None)
            self._stored_at.pop(key, None)
            return existed

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._stored_at.clear()

    def _purge(self) -> None:
        if self.ttl <= 0:
            return
        now = self._clock()
        for key in [k for k in self._data if self._expired(k, now)]:
            del self._data[key]
            del self._stored_at[key]

    def size(self) -> int:
        """Number of live entries (expired ones are purged first)."""
        with self._lock:
            self._purge()
            return len(self._data)

    def set_ttl(self, ttl: float) -> None:
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        with self._lock:
            self.ttl = ttl

    def stats(self) -> dict:
        """Operational view: counters plus per-entry age and remaining TTL."""
        with self._lock:
            self._purge()
            now = self._clock()
            total = self.hits + self.misses
            hit_rate = (self.hits / total * 100) if total > 0 else 0.0

            entries = []
            for key, stored_at in self._stored_at.items():
                age = now - stored_at
                remaining = max(0.0, self.ttl - age) if self.ttl > 0 else None
                entries.append({
                    "key": key,
                    "age": int(age),
                    "ttl_remaining": int(remaining) if remaining is not None else None,
                    "expired": self.ttl > 0 and age > self.ttl,
                })

            return {
                "name": self.name,
                "size": len(self._data),
                "ttl": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": f"{hit_rate:.2f}%",
                "entries": entries,
            }


class CacheManager:
    """Registry of named caches, owned by the application."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._caches: dict[str, ExpiringCache] = {}

    def create(self, name: str, ttl: float = 0) -> ExpiringCache:
        """Create (or replace) a named cache."""
        cache = ExpiringCache(name, ttl, clock=self._clock)
        self._caches[name] = cache
        return cache

    def get_cache(self, name: str) -> Optional[ExpiringCache]:
        return self._caches.get(name)

    def names(self) -> list[str]:
        return list(self._caches)

    def clear_all(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def stats(self) -> dict:
        return {name: cache.stats() for name, cache in self._caches.items()}
