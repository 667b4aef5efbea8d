"""
Entity repositories over a KeyValueStorePort.

Each repository maps one entity type onto the key layout in
quietstats.components.keys. Items carry the entity's JSON fields plus
pk/sk (and gsi1pk/gsi1sk for sites) and an "entity" tag.

Works with any store adapter (in-memory or SQLite).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from quietstats.components import keys
from quietstats.core.entities import (
    Conversion,
    CustomEvent,
    Goal,
    PageView,
    Session,
    Site,
    StatsBucket,
)
from quietstats.core.ports.storage import Item, KeyValueStorePort

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def to_item(key_pair: keys.KeyPair, entity: str, model: BaseModel) -> Item:
    """Serialize an entity into a store item."""
    item: Item = model.model_dump(mode="json")
    item["pk"] = key_pair.pk
    item["sk"] = key_pair.sk
    item["entity"] = entity
    if key_pair.gsi1pk is not None:
        item["gsi1pk"] = key_pair.gsi1pk
        item["gsi1sk"] = key_pair.gsi1sk
    return item


def from_item(model: type[M], item: Item | None) -> M | None:
    """Deserialize a store item; malformed records are logged and skipped."""
    if item is None:
        return None
    try:
        return model.model_validate(item)
    except ValidationError:
        logger.warning(
            "Skipping malformed %s record at %s/%s", model.__name__, item.get("pk"), item.get("sk")
        )
        return None


def from_items(model: type[M], items: list[Item]) -> list[M]:
    results = []
    for item in items:
        parsed = from_item(model, item)
        if parsed is not None:
            results.append(parsed)
    return results


class KVRepoBase:
    """Base class for key-value repositories."""

    def __init__(self, store: KeyValueStorePort) -> None:
        self.store = store

    def _between(self, rng: keys.KeyRange) -> list[Item]:
        return self.store.query(rng.pk, sk_between=(rng.sk_low, rng.sk_high))


# -----------------------------------------------------------------------------
# Sites
# -----------------------------------------------------------------------------


class SiteRepo(KVRepoBase):
    def save(self, site: Site) -> Site:
        self.store.put_item(to_item(keys.site_keys(site.id, site.owner_id), "site", site))
        return site

    def get(self, site_id: str) -> Site | None:
        pk = keys.site_pk(site_id)
        return from_item(Site, self.store.get_item(pk, keys.EntityKind.SITE.value))

    def list_by_owner(self, owner_id: str) -> list[Site]:
        return from_items(Site, self.store.query_index(keys.owner_pk(owner_id)))


# -----------------------------------------------------------------------------
# Page views, events, conversions
# -----------------------------------------------------------------------------


class PageViewRepo(KVRepoBase):
    def save(self, page_view: PageView) -> PageView:
        key_pair = keys.page_view_keys(page_view.site_id, page_view.timestamp, page_view.id)
        self.store.put_item(to_item(key_pair, "pageview", page_view))
        return page_view

    def list_range(self, site_id: str, start: datetime, end: datetime) -> list[PageView]:
        rng = keys.page_view_range(site_id, start, end)
        return from_items(PageView, self._between(rng))


class EventRepo(KVRepoBase):
    def save(self, event: CustomEvent) -> CustomEvent:
        key_pair = keys.event_keys(event.site_id, event.timestamp, event.id)
        self.store.put_item(to_item(key_pair, "event", event))
        return event

    def list_range(self, site_id: str, start: datetime, end: datetime) -> list[CustomEvent]:
        rng = keys.event_range(site_id, start, end)
        return from_items(CustomEvent, self._between(rng))


class ConversionRepo(KVRepoBase):
    def save(self, conversion: Conversion) -> Conversion:
        key_pair = keys.conversion_keys(conversion.site_id, conversion.timestamp, conversion.id)
        self.store.put_item(to_item(key_pair, "conversion", conversion))
        return conversion

    def list_range(self, site_id: str, start: datetime, end: datetime) -> list[Conversion]:
        rng = keys.conversion_range(site_id, start, end)
        return from_items(Conversion, self._between(rng))


# -----------------------------------------------------------------------------
# Sessions (SessionStorePort)
# -----------------------------------------------------------------------------


class SessionRepo(KVRepoBase):
    def get(self, site_id: str, session_id: str) -> Session | None:
        key_pair = keys.session_keys(site_id, session_id)
        return from_item(Session, self.store.get_item(key_pair.pk, key_pair.sk))

    def save(self, session: Session) -> None:
        # Full-record upsert; concurrent writers resolve last-write-wins
        key_pair = keys.session_keys(session.site_id, session.id)
        self.store.put_item(to_item(key_pair, "session", session))

    def list_for_site(self, site_id: str) -> list[Session]:
        prefix = keys.prefix(keys.EntityKind.SESSION)
        return from_items(Session, self.store.query(keys.site_pk(site_id), sk_prefix=prefix))


# -----------------------------------------------------------------------------
# Goals (GoalSourcePort)
# -----------------------------------------------------------------------------


class GoalRepo(KVRepoBase):
    def save(self, goal: Goal) -> Goal:
        self.store.put_item(to_item(keys.goal_keys(goal.site_id, goal.id), "goal", goal))
        return goal

    def get(self, site_id: str, goal_id: str) -> Goal | None:
        key_pair = keys.goal_keys(site_id, goal_id)
        return from_item(Goal, self.store.get_item(key_pair.pk, key_pair.sk))

    def list_for_site(self, site_id: str) -> list[Goal]:
        prefix = keys.prefix(keys.EntityKind.GOAL)
        return from_items(Goal, self.store.query(keys.site_pk(site_id), sk_prefix=prefix))

    def list_active(self, site_id: str) -> list[Goal]:
        return [g for g in self.list_for_site(site_id) if g.is_active]


# -----------------------------------------------------------------------------
# Stats buckets
# -----------------------------------------------------------------------------


class StatsRepo(KVRepoBase):
    def save(self, bucket: StatsBucket) -> StatsBucket:
        key_pair = keys.stats_keys(bucket.site_id, bucket.period, bucket.bucket_key)
        self.store.put_item(to_item(key_pair, "stats", bucket))
        return bucket

    def save_many(self, buckets: list[StatsBucket]) -> int:
        for bucket in buckets:
            self.save(bucket)
        return len(buckets)

    def list_range(
        self, site_id: str, period: str, start_key: str, end_key: str
    ) -> list[StatsBucket]:
        rng = keys.stats_range(site_id, period, start_key, end_key)
        return from_items(StatsBucket, self._between(rng))


# -----------------------------------------------------------------------------
# Realtime minute counters
# -----------------------------------------------------------------------------


class RealtimeRepo(KVRepoBase):
    """
    Per-minute page-view counters with the distinct visitors seen.

    Updates are read-modify-write on one item per minute, so concurrent
    writers can lose an increment, like sessions.
    """

    def __init__(self, store: KeyValueStorePort, ttl_minutes: int = 60) -> None:
        super().__init__(store)
        self.ttl_minutes = ttl_minutes

    def record(self, site_id: str, visitor_id: str, path: str, now: datetime) -> None:
        key_pair = keys.realtime_keys(site_id, now)
        item = self.store.get_item(key_pair.pk, key_pair.sk)
        if item is None:
            # First hit of a new minute; drop the minutes that have expired
            self.purge_expired(site_id, now)
            item = {
                "pk": key_pair.pk,
                "sk": key_pair.sk,
                "entity": "realtime",
                "minute": keys.minute_key(now),
                "pageviews": 0,
                "visitors": [],
                "paths": {},
            }
        item["pageviews"] = int(item.get("pageviews", 0)) + 1
        if visitor_id not in item["visitors"]:
            item["visitors"].append(visitor_id)
        item["paths"][path] = int(item["paths"].get(path, 0)) + 1
        item["expires_at"] = (now + timedelta(minutes=self.ttl_minutes)).isoformat()
        self.store.put_item(item)

    def window(self, site_id: str, now: datetime, minutes: int) -> list[Item]:
        """Unexpired minute items from the last `minutes` minutes, current one included."""
        span = max(minutes, 1) - 1
        rng = keys.realtime_range(site_id, now - timedelta(minutes=span), now)
        return [item for item in self._between(rng) if not _expired(item, now)]

    def purge_expired(self, site_id: str, now: datetime) -> int:
        """Delete minute items past their expires_at. Returns count removed."""
        cutoff = keys.realtime_keys(site_id, now).sk
        low = keys.prefix(keys.EntityKind.REALTIME)
        expired = [
            item
            for item in self.store.query(keys.site_pk(site_id), sk_between=(low, cutoff))
            if _expired(item, now)
        ]
        for item in expired:
            self.store.delete_item(item["pk"], item["sk"])
        if expired:
            logger.debug("Purged %d realtime minutes for site %s", len(expired), site_id)
        return len(expired)


def _expired(item: Item, now: datetime) -> bool:
    expires_at = item.get("expires_at")
    return expires_at is not None and datetime.fromisoformat(expires_at) <= now
