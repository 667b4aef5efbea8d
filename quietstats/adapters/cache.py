"""In-memory TTL cache adapters.

InMemorySessionCache implements SessionCachePort (fast session lookup).
InMemoryConversionMarker implements ConvertedMarkerPort (once-per-session
goal conversions). Both expire entries against an injected clock: on read,
and by a sweep that set() runs at most once per purge interval.
For multi-process deployments, back these with a shared cache instead.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from quietstats.core.entities import Session
from quietstats.core.ports.time import TimePort

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Key -> value with per-entry expiry."""

    def __init__(self, time_port: TimePort, purge_interval_seconds: int = 60) -> None:
        self._time = time_port
        self._entries: dict[str, tuple[V, datetime]] = {}
        self._lock = threading.Lock()
        self._purge_interval = timedelta(seconds=purge_interval_seconds)
        self._next_purge = time_port.now_utc() + self._purge_interval

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._time.now_utc() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: V, ttl_seconds: int) -> None:
        now = self._time.now_utc()
        with self._lock:
            if now >= self._next_purge:
                self._purge_locked(now)
                self._next_purge = now + self._purge_interval
            self._entries[key] = (value, now + timedelta(seconds=ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop expired entries. Returns count removed."""
        with self._lock:
            return self._purge_locked(self._time.now_utc())

    def _purge_locked(self, now: datetime) -> int:
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class InMemorySessionCache(TTLCache[Session]):
    """Session fast-lookup tier, keyed by "site_id:session_id"."""


class InMemoryConversionMarker:
    """Remembers converted (site, session, goal) triples for the session window."""

    def __init__(self, time_port: TimePort, ttl_seconds: int = 30 * 60) -> None:
        self._cache: TTLCache[bool] = TTLCache(time_port)
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(site_id: str, session_id: str, goal_id: str) -> str:
        return f"{site_id}:{session_id}:{goal_id}"

    def has_converted(self, site_id: str, session_id: str, goal_id: str) -> bool:
        return bool(self._cache.get(self._key(site_id, session_id, goal_id)))

    def mark_converted(self, site_id: str, session_id: str, goal_id: str) -> None:
        self._cache.set(self._key(site_id, session_id, goal_id), True, self._ttl_seconds)
