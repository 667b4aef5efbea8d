"""
Session reconstructor component.

State machine per (site_id, session_id):
- Absent -> New: first page view creates page_view_count=1, is_bounce=True,
  entry_path=exit_path=path, duration=0
- New/Active -> Active: each further page view increments page_view_count,
  clears is_bounce, moves exit_path and sets duration = now - started_at
- Custom events and outbound clicks only bump event_count and duration

Lookup is two-tier: the fast cache first, then the durable store. A stored
session is only resumed while it is inside the affinity window; older or
missing records start a new session.

Concurrency: two events for one session id processed in parallel can both
read the same state and both upsert the full record. The later write wins
and the earlier increment is lost. page_view_count and is_bounce are
therefore eventually-accurate approximations. `version` increases on every
mutation so a store with compare-and-swap can detect this; the shipped
stores do plain upserts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from quietstats.core.entities import Session

from .models import (
    DEFAULT_CONFIG,
    LookupResult,
    LookupSource,
    SessionContext,
    SessionsConfig,
    SessionUpdate,
)
from .ports import SessionCachePort, SessionStorePort

logger = logging.getLogger(__name__)


def cache_key(site_id: str, session_id: str) -> str:
    return f"{site_id}:{session_id}"


def duration_ms(started_at: datetime, now: datetime) -> int:
    """Milliseconds between start and now, never negative."""
    return max(0, int((now - started_at).total_seconds() * 1000))


# --- Transitions ---


def start_session(site_id: str, session_id: str, ctx: SessionContext, now: datetime) -> Session:
    """Absent -> New."""
    return Session(
        id=session_id,
        site_id=site_id,
        visitor_id=ctx.visitor_id,
        entry_path=ctx.path,
        exit_path=ctx.path,
        referrer=ctx.referrer,
        referrer_source=ctx.referrer_source,
        utm_source=ctx.utm_source,
        utm_medium=ctx.utm_medium,
        utm_campaign=ctx.utm_campaign,
        device_type=ctx.device_type,
        browser=ctx.browser,
        os=ctx.os,
        country=ctx.country,
        page_view_count=1,
        event_count=0,
        is_bounce=True,
        duration=0,
        started_at=now,
        ended_at=now,
        version=1,
    )


def extend_with_pageview(session: Session, path: str, now: datetime) -> Session:
    """A further page view: the session is no longer a bounce."""
    return session.model_copy(
        update={
            "page_view_count": session.page_view_count + 1,
            "is_bounce": False,
            "exit_path": path,
            "duration": duration_ms(session.started_at, now),
            "ended_at": now,
            "version": session.version + 1,
        }
    )


def extend_with_event(session: Session, now: datetime) -> Session:
    """A custom event or outbound click; bounce state is untouched."""
    return session.model_copy(
        update={
            "event_count": session.event_count + 1,
            "duration": duration_ms(session.started_at, now),
            "ended_at": now,
            "version": session.version + 1,
        }
    )


# --- Lookup ---


class SessionLookup:
    """Cache-then-store session lookup."""

    def __init__(
        self,
        cache: SessionCachePort,
        store: SessionStorePort,
        config: SessionsConfig = DEFAULT_CONFIG,
    ) -> None:
        self._cache = cache
        self._store = store
        self._config = config

    def find(self, site_id: str, session_id: str, now: datetime) -> LookupResult:
        key = cache_key(site_id, session_id)

        cached = self._cache.get(key)
        if cached is not None:
            return LookupResult(session=cached, source=LookupSource.CACHE)

        if not self._config.store_fallback:
            return LookupResult(session=None, source=LookupSource.NONE)

        stored = self._store.get(site_id, session_id)
        if stored is None:
            return LookupResult(session=None, source=LookupSource.NONE)

        window = timedelta(minutes=self._config.cache_ttl_minutes)
        if now - stored.ended_at > window:
            return LookupResult(session=None, source=LookupSource.NONE)

        self._cache.set(key, stored, self._config.cache_ttl_seconds)
        return LookupResult(session=stored, source=LookupSource.STORE)

    def remember(self, session: Session) -> None:
        self._cache.set(
            cache_key(session.site_id, session.id),
            session,
            self._config.cache_ttl_seconds,
        )


# --- Reconstructor ---


class SessionReconstructor:
    """Applies collection events to sessions and persists every mutation."""

    def __init__(
        self,
        cache: SessionCachePort,
        store: SessionStorePort,
        config: SessionsConfig = DEFAULT_CONFIG,
    ) -> None:
        self._store = store
        self._lookup = SessionLookup(cache, store, config)

    def _persist(self, session: Session) -> None:
        # Full-record upsert, then refresh the cache
        self._store.save(session)
        self._lookup.remember(session)

    def record_pageview(
        self,
        site_id: str,
        session_id: str,
        ctx: SessionContext,
        now: datetime,
    ) -> SessionUpdate:
        existing = self._lookup.find(site_id, session_id, now).session

        if existing is None:
            session = start_session(site_id, session_id, ctx, now)
            logger.info("New session started for site %s", site_id)
            is_new = True
        else:
            session = extend_with_pageview(existing, ctx.path, now)
            is_new = False

        self._persist(session)
        return SessionUpdate(session=session, is_new=is_new)

    def record_event(self, site_id: str, session_id: str, now: datetime) -> SessionUpdate | None:
        """Count an event against an existing session; None if there is none."""
        existing = self._lookup.find(site_id, session_id, now).session
        if existing is None:
            return None

        session = extend_with_event(existing, now)
        self._persist(session)
        return SessionUpdate(session=session, is_new=False)
