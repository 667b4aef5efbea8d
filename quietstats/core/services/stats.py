"""
StatsService - read side: time series, totals, realtime, funnels, rollup.

Key behaviors:
- Time series are computed from raw page views and gap-filled
- Period comes from the caller or from the span of the range
- Totals compare against the preceding range of equal length
- Rollup writes StatsBucket records and is idempotent (upserts)
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from quietstats.components import aggregation, goals, metrics
from quietstats.components.aggregation import AggregationConfig, DateRange, Period
from quietstats.core.entities import Conversion, CustomEvent, PageView, Session, StatsBucket
from quietstats.core.ports.storage import Item
from quietstats.core.ports.time import TimePort

logger = logging.getLogger(__name__)


# --- Ports ---


class PageViewSourcePort(Protocol):
    def list_range(self, site_id: str, start: datetime, end: datetime) -> list[PageView]: ...


class EventSourcePort(Protocol):
    def list_range(self, site_id: str, start: datetime, end: datetime) -> list[CustomEvent]: ...


class ConversionSourcePort(Protocol):
    def list_range(self, site_id: str, start: datetime, end: datetime) -> list[Conversion]: ...


class SessionSourcePort(Protocol):
    def list_for_site(self, site_id: str) -> list[Session]: ...


class StatsSinkPort(Protocol):
    def save_many(self, buckets: list[StatsBucket]) -> int: ...


class RealtimeSourcePort(Protocol):
    def window(self, site_id: str, now: datetime, minutes: int) -> list[Item]: ...


# --- Result Models ---


@dataclass(frozen=True)
class TimeSeriesResult:
    """Gap-filled series for one range."""

    period: Period
    range: DateRange
    points: list[aggregation.TimeSeriesPoint]

    def as_dict(self) -> dict[str, Any]:
        return {
            "period": self.period.value,
            "timeSeries": [p.as_dict() for p in self.points],
        }


@dataclass(frozen=True)
class SiteTotals:
    """Headline numbers for a range, with change against the previous range."""

    views: int
    visitors: int
    sessions: int
    bounce_rate: float
    avg_duration_ms: int
    conversions: int
    conversion_rate: float
    conversion_value: float
    views_change: int
    visitors_change: int
    sessions_change: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "views": self.views,
            "visitors": self.visitors,
            "sessions": self.sessions,
            "bounceRate": self.bounce_rate,
            "avgDuration": self.avg_duration_ms,
            "avgDurationFormatted": metrics.format_duration(self.avg_duration_ms),
            "conversions": self.conversions,
            "conversionRate": self.conversion_rate,
            "conversionValue": self.conversion_value,
            "change": {
                "views": self.views_change,
                "visitors": self.visitors_change,
                "sessions": self.sessions_change,
            },
        }


@dataclass(frozen=True)
class RealtimeSnapshot:
    """Activity over the trailing realtime window."""

    minutes: int
    active_visitors: int
    pageviews: int
    top_paths: list[tuple[str, int]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "minutes": self.minutes,
            "activeVisitors": self.active_visitors,
            "pageviews": self.pageviews,
            "topPages": [{"path": p, "views": n} for p, n in self.top_paths],
        }


@dataclass(frozen=True)
class FunnelResult:
    """Funnel report plus its ranked drop-off points, or validation errors."""

    report: goals.FunnelReport | None = None
    drop_offs: list[goals.DropOffPoint] = field(default_factory=list)
    errors: list[goals.FunnelValidationError] = field(default_factory=list)


# --- Helpers ---


def _sessions_in_range(sessions: Iterable[Session], rng: DateRange) -> list[Session]:
    return [
        s for s in sessions if rng.start <= aggregation.to_utc(s.started_at) <= rng.end
    ]


def _mean_duration(sessions: list[Session]) -> int:
    if not sessions:
        return 0
    return int(sum(s.duration for s in sessions) / len(sessions))


# --- Service ---


class StatsService:
    """Query-side operations over stored page views, sessions and events."""

    def __init__(
        self,
        page_views: PageViewSourcePort,
        sessions: SessionSourcePort,
        time_port: TimePort,
        events: EventSourcePort | None = None,
        conversions: ConversionSourcePort | None = None,
        stats: StatsSinkPort | None = None,
        realtime: RealtimeSourcePort | None = None,
        config: AggregationConfig | None = None,
        realtime_window_minutes: int = 5,
    ) -> None:
        self._page_views = page_views
        self._sessions = sessions
        self._time = time_port
        self._events = events
        self._conversions = conversions
        self._stats = stats
        self._realtime = realtime
        self._config = config or aggregation.DEFAULT_CONFIG
        self._realtime_window_minutes = realtime_window_minutes

    def date_range(self, params: Mapping[str, Any] | None) -> DateRange:
        return aggregation.parse_date_range(params, self._time.now_utc(), self._config)

    def timeseries(
        self,
        site_id: str,
        params: Mapping[str, Any] | None = None,
        period: Period | str | None = None,
    ) -> TimeSeriesResult:
        """
        Gap-filled time series for a site.

        Raises ValueError for an unknown explicit period.
        """
        rng = self.date_range(params)
        chosen = (
            aggregation.coerce_period(period)
            if period
            else aggregation.determine_period(rng.start, rng.end, self._config)
        )

        page_views = self._page_views.list_range(site_id, rng.start, rng.end)
        data = aggregation.aggregate_time_series_data(page_views, chosen, self._config)
        buckets = aggregation.generate_time_buckets(rng.start, rng.end, chosen, self._config)
        points = aggregation.fill_missing_buckets(buckets, data)
        return TimeSeriesResult(period=chosen, range=rng, points=points)

    def totals(self, site_id: str, params: Mapping[str, Any] | None = None) -> SiteTotals:
        rng = self.date_range(params)
        span = rng.end - rng.start
        previous = DateRange(start=rng.start - span, end=rng.start - timedelta(microseconds=1))

        all_sessions = self._sessions.list_for_site(site_id)
        current_views = self._page_views.list_range(site_id, rng.start, rng.end)
        previous_views = self._page_views.list_range(site_id, previous.start, previous.end)
        current_sessions = _sessions_in_range(all_sessions, rng)
        previous_sessions = _sessions_in_range(all_sessions, previous)

        visitors = len({pv.visitor_id for pv in current_views})
        previous_visitors = len({pv.visitor_id for pv in previous_views})

        conversions: list[Conversion] = []
        if self._conversions is not None:
            conversions = self._conversions.list_range(site_id, rng.start, rng.end)
        converted_visitors = len({c.visitor_id for c in conversions})

        return SiteTotals(
            views=len(current_views),
            visitors=visitors,
            sessions=len(current_sessions),
            bounce_rate=metrics.calculate_bounce_rate(
                sum(1 for s in current_sessions if s.is_bounce), len(current_sessions)
            ),
            avg_duration_ms=_mean_duration(current_sessions),
            conversions=len(conversions),
            conversion_rate=metrics.calculate_conversion_rate(converted_visitors, visitors),
            conversion_value=metrics.total_conversion_value(conversions),
            views_change=metrics.calculate_percentage_change(
                len(current_views), len(previous_views)
            ),
            visitors_change=metrics.calculate_percentage_change(visitors, previous_visitors),
            sessions_change=metrics.calculate_percentage_change(
                len(current_sessions), len(previous_sessions)
            ),
        )

    def realtime(self, site_id: str, minutes: int | None = None) -> RealtimeSnapshot:
        """Distinct visitors and page views over the trailing window."""
        minutes = minutes or self._realtime_window_minutes
        if self._realtime is None:
            return RealtimeSnapshot(minutes=minutes, active_visitors=0, pageviews=0)

        items = self._realtime.window(site_id, self._time.now_utc(), minutes)
        visitors: set[str] = set()
        paths: Counter[str] = Counter()
        pageviews = 0
        for item in items:
            pageviews += int(item.get("pageviews", 0))
            visitors.update(item.get("visitors", []))
            paths.update({p: int(n) for p, n in (item.get("paths") or {}).items()})

        return RealtimeSnapshot(
            minutes=minutes,
            active_visitors=len(visitors),
            pageviews=pageviews,
            top_paths=paths.most_common(10),
        )

    def funnel(
        self,
        site_id: str,
        funnel: goals.Funnel,
        params: Mapping[str, Any] | None = None,
    ) -> FunnelResult:
        """Analyze a funnel over the range; invalid definitions return errors."""
        errors = goals.validate_funnel(funnel)
        if errors:
            return FunnelResult(errors=errors)

        rng = self.date_range(params)
        page_views = self._page_views.list_range(site_id, rng.start, rng.end)
        events: list[CustomEvent] = []
        if self._events is not None:
            events = self._events.list_range(site_id, rng.start, rng.end)

        report = goals.analyze_funnel(funnel, goals.journey_events(page_views, events))
        return FunnelResult(report=report, drop_offs=goals.identify_drop_off_points(report))

    def rollup(
        self,
        site_id: str,
        period: Period | str,
        start: datetime,
        end: datetime,
    ) -> list[StatsBucket]:
        """
        Recompute StatsBucket records for [start, end] from raw page views.

        The range widens to whole buckets, so a mid-bucket start or end never
        overwrites a stored bucket with partial counts.
        """
        first = aggregation.truncate(start, period, self._config)
        last = aggregation.truncate(end, period, self._config)
        end = aggregation.next_bucket(last, period, self._config) - timedelta(microseconds=1)
        page_views = self._page_views.list_range(site_id, first, end)
        buckets = aggregation.rollup_buckets(site_id, page_views, period, self._config)
        if self._stats is not None:
            self._stats.save_many(buckets)
        logger.info(
            "Rolled up %d %s buckets for site %s",
            len(buckets),
            aggregation.coerce_period(period).value,
            site_id,
        )
        return buckets
