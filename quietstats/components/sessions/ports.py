"""
Session reconstructor port definitions.
"""

from __future__ import annotations

from typing import Protocol

from quietstats.core.entities import Session


class SessionCachePort(Protocol):
    """Short-lived fast lookup keyed by "site_id:session_id"."""

    def get(self, key: str) -> Session | None:
        """Return the cached session, or None if absent or expired."""
        ...

    def set(self, key: str, session: Session, ttl_seconds: int) -> None:
        """Cache a session, resetting its TTL."""
        ...

    def delete(self, key: str) -> None:
        """Drop a cached session."""
        ...


class SessionStorePort(Protocol):
    """Durable session records."""

    def get(self, site_id: str, session_id: str) -> Session | None:
        """Fetch a session record."""
        ...

    def save(self, session: Session) -> None:
        """Full-record upsert."""
        ...
