"""
Session reconstructor models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from quietstats.core.entities import Session

# --- Enums ---


class LookupSource(str, Enum):
    """Which tier answered a session lookup."""

    CACHE = "cache"
    STORE = "store"
    NONE = "none"


# --- Configuration ---


@dataclass(frozen=True)
class SessionsConfig:
    """Session configuration."""

    # Session affinity window; also the fast-cache TTL
    cache_ttl_minutes: int = 30

    # Consult the durable store on a cache miss (within the affinity window)
    store_fallback: bool = True

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_minutes * 60


DEFAULT_CONFIG = SessionsConfig()


# --- Input Models ---


@dataclass(frozen=True)
class SessionContext:
    """Normalized attributes copied onto a session when it starts."""

    visitor_id: str
    path: str
    referrer: str | None = None
    referrer_source: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    device_type: str = "Desktop"
    browser: str = "Unknown"
    os: str = "Unknown"
    country: str | None = None


# --- Output Models ---


@dataclass(frozen=True)
class LookupResult:
    """Existing session (if any) and the tier that produced it."""

    session: Session | None
    source: LookupSource


@dataclass(frozen=True)
class SessionUpdate:
    """Session state after applying one event."""

    session: Session
    is_new: bool
