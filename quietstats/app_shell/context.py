from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from quietstats.adapters.cache import InMemoryConversionMarker, InMemorySessionCache
from quietstats.adapters.clock import SystemClock
from quietstats.adapters.memory_store import InMemoryKeyValueStore
from quietstats.adapters.repos import (
    ConversionRepo,
    EventRepo,
    GoalRepo,
    PageViewRepo,
    RealtimeRepo,
    SessionRepo,
    SiteRepo,
    StatsRepo,
)
from quietstats.adapters.sqlite.migrator import SQLiteMigrator
from quietstats.adapters.sqlite.store import SQLiteKeyValueStore
from quietstats.components.aggregation import AggregationConfig
from quietstats.components.goals import ConversionTracker
from quietstats.components.identity import IdentityConfig
from quietstats.components.normalizer import NormalizerConfig
from quietstats.components.sessions import SessionReconstructor, SessionsConfig
from quietstats.core.ports.storage import KeyValueStorePort
from quietstats.core.ports.time import TimePort
from quietstats.core.services.collect import CollectConfig, CollectService
from quietstats.core.services.stats import StatsService
from quietstats.rules.models import Rules

logger = logging.getLogger(__name__)


def build_store(rules: Rules, data_dir: Path) -> KeyValueStorePort:
    """Store selected by rules.storage; SQLite databases are migrated on open."""
    if rules.storage.backend == "sqlite":
        db_path = Path(rules.storage.sqlite_path)
        if not db_path.is_absolute():
            db_path = data_dir / db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        SQLiteMigrator(str(db_path)).run_migrations()
        logger.info("Using SQLite store at %s", db_path)
        return SQLiteKeyValueStore(str(db_path))

    logger.info("Using in-memory store")
    return InMemoryKeyValueStore()


def collect_config(rules: Rules) -> CollectConfig:
    return CollectConfig(
        respect_dnt=rules.identity.respect_dnt,
        exclude_bots=rules.identity.exclude_bots,
        exclude_private_ips=rules.identity.exclude_private_ips,
        identity=IdentityConfig(salt_prefix=rules.identity.salt_prefix),
        validation=NormalizerConfig(
            max_event_name_length=rules.validation.max_event_name_length,
            max_properties=rules.validation.max_properties,
            reserved_event_names=tuple(n.lower() for n in rules.validation.reserved_event_names),
        ),
    )


def aggregation_config(rules: Rules) -> AggregationConfig:
    return AggregationConfig(
        default_range_days=rules.aggregation.default_range_days,
        month_threshold_days=rules.aggregation.month_threshold_days,
    )


@dataclass
class ServiceContext:
    collect_service: CollectService
    stats_service: StatsService
    store: KeyValueStorePort
    site_repo: SiteRepo
    goal_repo: GoalRepo
    page_view_repo: PageViewRepo
    session_repo: SessionRepo
    stats_repo: StatsRepo
    rules: Rules
    clock: TimePort

    @classmethod
    def create(
        cls,
        rules: Rules,
        data_dir: Path | None = None,
        store: KeyValueStorePort | None = None,
        clock: TimePort | None = None,
    ) -> ServiceContext:
        clock = clock or SystemClock()
        store = store if store is not None else build_store(rules, data_dir or Path("."))

        # Repos
        site_repo = SiteRepo(store)
        goal_repo = GoalRepo(store)
        page_view_repo = PageViewRepo(store)
        event_repo = EventRepo(store)
        session_repo = SessionRepo(store)
        conversion_repo = ConversionRepo(store)
        stats_repo = StatsRepo(store)
        realtime_repo = RealtimeRepo(store, ttl_minutes=rules.aggregation.realtime_ttl_minutes)

        # Sessions and goals
        sessions_config = SessionsConfig(
            cache_ttl_minutes=rules.sessions.cache_ttl_minutes,
            store_fallback=rules.sessions.store_fallback,
        )
        reconstructor = SessionReconstructor(
            InMemorySessionCache(clock), session_repo, sessions_config
        )
        tracker = ConversionTracker(
            goal_repo, InMemoryConversionMarker(clock, sessions_config.cache_ttl_seconds)
        )

        # Services
        collect_service = CollectService(
            page_views=page_view_repo,
            events=event_repo,
            sessions=reconstructor,
            time_port=clock,
            conversions=conversion_repo,
            tracker=tracker,
            realtime=realtime_repo,
            config=collect_config(rules),
        )
        stats_service = StatsService(
            page_views=page_view_repo,
            sessions=session_repo,
            time_port=clock,
            events=event_repo,
            conversions=conversion_repo,
            stats=stats_repo,
            realtime=realtime_repo,
            config=aggregation_config(rules),
            realtime_window_minutes=rules.aggregation.realtime_window_minutes,
        )

        return cls(
            collect_service=collect_service,
            stats_service=stats_service,
            store=store,
            site_repo=site_repo,
            goal_repo=goal_repo,
            page_view_repo=page_view_repo,
            session_repo=session_repo,
            stats_repo=stats_repo,
            rules=rules,
            clock=clock,
        )
