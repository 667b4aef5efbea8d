"""
CollectService - collection pipeline for page views and custom events.

Key behaviors:
- Validate the wire payload; nothing is written when validation fails
- Drop DNT/GPC, bot and (optionally) private-network traffic silently
- Normalize URL, referrer, UTM and user agent
- Fingerprint the visitor with the daily salt (no cookies, no raw IP stored)
- Reconstruct the session, then record the page view or event
- Count realtime activity and record goal conversions

Event types:
- pageview: PageView + session start/extend + realtime + conversions
- event:    CustomEvent + session extend (if any) + conversions
- outbound: CustomEvent named "outbound" with properties {"url": ...}
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from quietstats.components import identity as identity_component
from quietstats.components import normalizer
from quietstats.components.goals import Attribution, ConversionTracker, GoalContext
from quietstats.components.normalizer import EventType, NormalizeInput, NormalizeOutput
from quietstats.components.sessions import SessionContext, SessionReconstructor
from quietstats.core.entities import Conversion, CustomEvent, PageView, Session
from quietstats.core.ports.time import TimePort

logger = logging.getLogger(__name__)


# --- Enums ---


class CollectStatus(str, Enum):
    """Outcome of one collection request."""

    RECORDED = "recorded"
    NOT_TRACKED = "not_tracked"
    REJECTED = "rejected"


# --- Configuration ---


@dataclass(frozen=True)
class CollectConfig:
    """Collection configuration."""

    respect_dnt: bool = True
    exclude_bots: bool = True
    exclude_private_ips: bool = False
    default_event_name: str = "unnamed"
    identity: identity_component.IdentityConfig = identity_component.DEFAULT_CONFIG
    validation: normalizer.NormalizerConfig = normalizer.DEFAULT_CONFIG


DEFAULT_CONFIG = CollectConfig()


# --- Result Models ---


@dataclass(frozen=True)
class CollectError:
    """Collection validation error."""

    code: str
    message: str
    field_name: str | None = None


@dataclass
class CollectResult:
    """What a collection request produced."""

    status: CollectStatus
    errors: list[CollectError] = field(default_factory=list)
    reason: str | None = None
    page_view: PageView | None = None
    event: CustomEvent | None = None
    session: Session | None = None
    conversions: list[Conversion] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is not CollectStatus.REJECTED


# --- Ports ---


class PageViewSinkPort(Protocol):
    def save(self, page_view: PageView) -> PageView: ...


class EventSinkPort(Protocol):
    def save(self, event: CustomEvent) -> CustomEvent: ...


class ConversionSinkPort(Protocol):
    def save(self, conversion: Conversion) -> Conversion: ...


class RealtimeSinkPort(Protocol):
    def record(self, site_id: str, visitor_id: str, path: str, now: datetime) -> None: ...


# Field each payload message refers to
_FIELD_BY_MESSAGE = {
    "Missing siteId (s)": "s",
    "Missing event type (e)": "e",
    "Missing URL (u)": "u",
    "Invalid URL format": "u",
}

# Optional wire fields that must be strings when present (short key first)
_STRING_FIELDS: tuple[tuple[str, ...], ...] = (
    ("sid", "sessionId"),
    ("t", "title"),
    ("r", "referrer"),
    ("br",),
)
_SCREEN_FIELDS = ("sw", "sh")


# --- Helpers ---


def _payload_value(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        value = float(value)
        return value if math.isfinite(value) else None
    return None


def validate_request(
    payload: Mapping[str, Any], config: CollectConfig = DEFAULT_CONFIG
) -> list[CollectError]:
    """Validate a wire payload into CollectError records."""
    result = normalizer.validate_collect_payload(payload)
    errors = [
        CollectError(code="invalid_payload", message=msg, field_name=_FIELD_BY_MESSAGE.get(msg))
        for msg in result.errors
    ]

    site_id = _payload_value(payload, "s", "siteId")
    if site_id is not None and not normalizer.validate_site_id(site_id, config.validation):
        errors.append(
            CollectError(code="invalid_site_id", message="Invalid siteId", field_name="s")
        )

    event_type = _payload_value(payload, "e", "eventType")
    if event_type is not None and normalizer.parse_event_type(event_type) is None:
        allowed = ", ".join(t.value for t in EventType)
        errors.append(
            CollectError(
                code="invalid_event_type",
                message=f"Event type must be one of: {allowed}",
                field_name="e",
            )
        )

    for keys in _STRING_FIELDS:
        value = _payload_value(payload, *keys)
        if value is not None and not isinstance(value, str):
            errors.append(
                CollectError(
                    code="invalid_field", message=f"{keys[0]} must be a string", field_name=keys[0]
                )
            )

    for key in _SCREEN_FIELDS:
        value = payload.get(key)
        if value not in (None, "") and _as_int(value) is None:
            errors.append(
                CollectError(
                    code="invalid_field", message=f"{key} must be a finite number", field_name=key
                )
            )

    properties = payload.get("p")
    if properties is not None and not isinstance(properties, Mapping):
        errors.append(
            CollectError(
                code="invalid_properties", message="Properties must be an object", field_name="p"
            )
        )
    elif event_type is not None and normalizer.parse_event_type(event_type) is EventType.EVENT:
        props = dict(properties or {})
        name = props.get("name") or config.default_event_name
        extra = {k: v for k, v in props.items() if k not in ("name", "category", "value")}
        check = normalizer.validate_event_payload(name, extra, config.validation)
        errors.extend(
            CollectError(code="invalid_event", message=msg, field_name="p") for msg in check.errors
        )

    return errors


# --- Service ---


class CollectService:
    """
    Collection pipeline (POST /collect).

    Storage failures propagate as StorageError; the HTTP layer maps them
    to 503.
    """

    def __init__(
        self,
        page_views: PageViewSinkPort,
        events: EventSinkPort,
        sessions: SessionReconstructor,
        time_port: TimePort,
        conversions: ConversionSinkPort | None = None,
        tracker: ConversionTracker | None = None,
        realtime: RealtimeSinkPort | None = None,
        config: CollectConfig | None = None,
    ) -> None:
        self._page_views = page_views
        self._events = events
        self._sessions = sessions
        self._time = time_port
        self._conversions = conversions
        self._tracker = tracker
        self._realtime = realtime
        self._config = config or DEFAULT_CONFIG

    def _skip_reason(
        self, identity: identity_component.Identity, headers: Mapping[str, Any]
    ) -> str | None:
        if self._config.respect_dnt and not identity_component.should_track(headers):
            return "dnt"
        if self._config.exclude_bots and identity.is_bot:
            return "bot"
        if self._config.exclude_private_ips and identity.is_private_ip:
            return "private_ip"
        return None

    def collect(
        self,
        payload: Mapping[str, Any] | None,
        ip: str,
        user_agent: str | None,
        headers: Mapping[str, Any] | None = None,
    ) -> CollectResult:
        """
        Process one collection request.

        Returns:
            CollectResult. REJECTED carries errors; NOT_TRACKED carries a reason.
        """
        payload = payload or {}
        headers = headers or {}
        user_agent = user_agent or ""

        errors = validate_request(payload, self._config)
        if errors:
            return CollectResult(status=CollectStatus.REJECTED, errors=errors)

        site_id = str(_payload_value(payload, "s", "siteId"))
        event_type = normalizer.parse_event_type(_payload_value(payload, "e", "eventType"))
        url = str(_payload_value(payload, "u", "url"))
        session_id = str(_payload_value(payload, "sid", "sessionId") or uuid4().hex)
        now = self._time.now_utc()

        identity = identity_component.resolve_identity(
            ip, user_agent, site_id, now, self._config.identity
        )
        reason = self._skip_reason(identity, headers)
        if reason is not None:
            logger.info(
                "Not tracking %s request for site %s: %s", event_type.value, site_id, reason
            )
            return CollectResult(status=CollectStatus.NOT_TRACKED, reason=reason)

        referrer = _payload_value(payload, "r", "referrer")
        normalized = normalizer.run_normalize(
            NormalizeInput(
                url=url,
                user_agent=user_agent,
                referrer=referrer,
                headers=dict(headers),
                browser_override=_payload_value(payload, "br"),
            )
        )

        if event_type is EventType.PAGEVIEW:
            return self._collect_pageview(
                payload, site_id, session_id, identity.visitor_id, referrer, normalized, now
            )
        return self._collect_event(
            payload, event_type, site_id, session_id, identity.visitor_id, normalized, now
        )

    def _collect_pageview(
        self,
        payload: Mapping[str, Any],
        site_id: str,
        session_id: str,
        visitor_id: str,
        referrer: str | None,
        normalized: NormalizeOutput,
        now: datetime,
    ) -> CollectResult:
        utm = normalized.utm
        country = normalized.geo.country_code if normalized.geo else None
        ctx = SessionContext(
            visitor_id=visitor_id,
            path=normalized.path,
            referrer=referrer,
            referrer_source=normalized.referrer_source,
            utm_source=utm.source,
            utm_medium=utm.medium,
            utm_campaign=utm.campaign,
            device_type=normalized.user_agent.device_type.value,
            browser=normalized.user_agent.browser,
            os=normalized.user_agent.os,
            country=country,
        )
        update = self._sessions.record_pageview(site_id, session_id, ctx, now)

        page_view = self._page_views.save(
            PageView(
                site_id=site_id,
                visitor_id=visitor_id,
                session_id=session_id,
                path=normalized.path,
                hostname=normalized.hostname,
                title=_payload_value(payload, "t", "title"),
                referrer=referrer,
                referrer_source=normalized.referrer_source,
                utm_source=utm.source,
                utm_medium=utm.medium,
                utm_campaign=utm.campaign,
                utm_term=utm.term,
                utm_content=utm.content,
                device_type=ctx.device_type,
                browser=ctx.browser,
                os=ctx.os,
                country=country,
                screen_width=_as_int(payload.get("sw")),
                screen_height=_as_int(payload.get("sh")),
                is_unique=update.is_new,
                is_bounce=update.is_new,
                timestamp=now,
            )
        )

        if self._realtime is not None:
            self._realtime.record(site_id, visitor_id, normalized.path, now)

        conversions = self._check_goals(
            site_id,
            visitor_id,
            session_id,
            GoalContext(path=normalized.path, session_duration_minutes=_minutes(update.session)),
            Attribution(
                referrer_source=normalized.referrer_source,
                utm_source=utm.source,
                utm_medium=utm.medium,
                utm_campaign=utm.campaign,
            ),
            now,
        )

        return CollectResult(
            status=CollectStatus.RECORDED,
            page_view=page_view,
            session=update.session,
            conversions=conversions,
        )

    def _collect_event(
        self,
        payload: Mapping[str, Any],
        event_type: EventType,
        site_id: str,
        session_id: str,
        visitor_id: str,
        normalized: NormalizeOutput,
        now: datetime,
    ) -> CollectResult:
        props = dict(payload.get("p") or {})

        if event_type is EventType.OUTBOUND:
            event = CustomEvent(
                site_id=site_id,
                visitor_id=visitor_id,
                session_id=session_id,
                name="outbound",
                properties={"url": str(props.get("url") or "")},
                path=normalized.path,
                timestamp=now,
            )
        else:
            category = props.get("category")
            event = CustomEvent(
                site_id=site_id,
                visitor_id=visitor_id,
                session_id=session_id,
                name=str(props.get("name") or self._config.default_event_name),
                category=str(category) if category is not None else None,
                value=_as_float(props.get("value")),
                properties=props,
                path=normalized.path,
                timestamp=now,
            )
        self._events.save(event)

        update = self._sessions.record_event(site_id, session_id, now)
        session = update.session if update is not None else None

        conversions: list[Conversion] = []
        if event_type is EventType.EVENT:
            conversions = self._check_goals(
                site_id,
                visitor_id,
                session_id,
                GoalContext(
                    path=normalized.path,
                    event_name=event.name,
                    session_duration_minutes=_minutes(session),
                ),
                Attribution(
                    referrer_source=session.referrer_source if session else None,
                    utm_source=session.utm_source if session else None,
                    utm_medium=session.utm_medium if session else None,
                    utm_campaign=session.utm_campaign if session else None,
                ),
                now,
            )

        return CollectResult(
            status=CollectStatus.RECORDED,
            event=event,
            session=session,
            conversions=conversions,
        )

    def _check_goals(
        self,
        site_id: str,
        visitor_id: str,
        session_id: str,
        context: GoalContext,
        attribution: Attribution,
        now: datetime,
    ) -> list[Conversion]:
        if self._tracker is None:
            return []

        conversions = self._tracker.check(
            site_id, visitor_id, session_id, context, now, attribution=attribution
        )
        for conversion in conversions:
            if self._conversions is not None:
                self._conversions.save(conversion)
            self._tracker.commit(conversion)
        return conversions


def _minutes(session: Session | None) -> float | None:
    if session is None:
        return None
    return session.duration / 60_000
