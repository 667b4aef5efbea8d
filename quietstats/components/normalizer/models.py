"""
Event normalizer input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# --- Enums ---


class EventType(str, Enum):
    """Collection event types accepted at the ingestion boundary."""

    PAGEVIEW = "pageview"
    EVENT = "event"
    OUTBOUND = "outbound"


class DeviceType(str, Enum):
    """Device classification derived from the user agent."""

    DESKTOP = "Desktop"
    MOBILE = "Mobile"
    TABLET = "Tablet"


# --- Configuration ---


@dataclass(frozen=True)
class NormalizerConfig:
    """Limits applied when validating custom event payloads."""

    max_event_name_length: int = 255
    max_properties: int = 50
    reserved_event_names: tuple[str, ...] = ("pageview", "session_start", "session_end")
    max_site_id_length: int = 100


DEFAULT_CONFIG = NormalizerConfig()


# --- Parsed Values ---


@dataclass(frozen=True)
class ParsedUserAgent:
    """Browser, device and OS labels for one user agent string."""

    browser: str = "Unknown"
    device_type: DeviceType = DeviceType.DESKTOP
    os: str = "Unknown"


@dataclass(frozen=True)
class UTMParams:
    """Campaign parameters. Missing values are None, never empty strings."""

    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    term: str | None = None
    content: str | None = None

    def is_empty(self) -> bool:
        return not any((self.source, self.medium, self.campaign, self.term, self.content))


@dataclass(frozen=True)
class GeoHint:
    """Country supplied by a CDN/edge header."""

    country_code: str
    country: str


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a payload check. Never raised."""

    valid: bool
    errors: list[str] = field(default_factory=list)


# --- Entry Point Models ---


@dataclass(frozen=True)
class NormalizeInput:
    """Raw collection event plus request metadata."""

    url: str
    user_agent: str | None = None
    referrer: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    browser_override: str | None = None


@dataclass(frozen=True)
class NormalizeOutput:
    """Normalized view of one collection event."""

    path: str
    hostname: str
    referrer_source: str
    utm: UTMParams
    user_agent: ParsedUserAgent
    geo: GeoHint | None = None
