"""
Domain entities for quietstats.

- Site: a tracked website, owned by one account
- PageView: one page load; written once, never mutated
- Session: one browser-tab visit, mutated on every event (full upsert)
- CustomEvent: a named event or outbound click inside a session
- StatsBucket: derived per-period counts, recomputable from page views
- Goal / Conversion: goal definitions (read-only here) and their hits

Invariants:
- visitor_id is always a daily-rotating fingerprint, never a raw IP or UA
- All timestamps are timezone-aware UTC
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Period = Literal["minute", "hour", "day", "month"]
GoalType = Literal["pageview", "event", "duration"]
MatchType = Literal["exact", "contains", "regex"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


class Site(BaseModel):
    """A tracked website."""

    id: str
    name: str
    domains: list[str] = Field(default_factory=list)
    timezone: str = "UTC"
    owner_id: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class PageView(BaseModel):
    """
    A single page load.

    is_unique and is_bounce are true only for the page view that opened
    its session.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    site_id: str
    visitor_id: str
    session_id: str
    path: str
    hostname: str = ""
    title: str | None = None
    referrer: str | None = None
    referrer_source: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None
    device_type: str = "Desktop"
    browser: str = "Unknown"
    os: str = "Unknown"
    country: str | None = None
    screen_width: int | None = None
    screen_height: int | None = None
    is_unique: bool = False
    is_bounce: bool = False
    timestamp: datetime


class Session(BaseModel):
    """
    A visit, keyed by the client-supplied session id.

    Invariants:
    - is_bounce stays true until a second page view, then is false for good
    - duration (ms) = ended_at - started_at
    """

    id: str
    site_id: str
    visitor_id: str
    entry_path: str
    exit_path: str
    referrer: str | None = None
    referrer_source: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    device_type: str = "Desktop"
    browser: str = "Unknown"
    os: str = "Unknown"
    country: str | None = None
    page_view_count: int = 1
    event_count: int = 0
    is_bounce: bool = True
    duration: int = 0
    started_at: datetime
    ended_at: datetime
    version: int = 1


class CustomEvent(BaseModel):
    """A named event; outbound clicks are stored with name "outbound"."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    site_id: str
    visitor_id: str
    session_id: str
    name: str
    category: str | None = None
    value: float | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    path: str = "/"
    timestamp: datetime


class StatsBucket(BaseModel):
    """Derived counts for one canonical time bucket."""

    site_id: str
    period: Period
    bucket_key: str
    views: int = 0
    visitors: int = 0
    sessions: int = 0


class Goal(BaseModel):
    """A conversion goal. Managed elsewhere; consumed read-only."""

    id: str = Field(default_factory=_new_id)
    site_id: str
    name: str
    type: GoalType
    pattern: str = ""
    match_type: MatchType = "exact"
    duration_minutes: float | None = None
    value: float | None = None
    is_active: bool = True


class Conversion(BaseModel):
    """A goal hit, recorded at most once per session and goal."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    site_id: str
    goal_id: str
    visitor_id: str
    session_id: str
    value: float | None = None
    path: str = "/"
    referrer_source: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    timestamp: datetime
