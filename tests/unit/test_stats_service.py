"""
Tests for StatsService - time series, totals, realtime, funnels and rollups.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from quietstats.adapters.clock import FixedClock
from quietstats.adapters.repos import ConversionRepo, PageViewRepo, SessionRepo
from quietstats.app_shell.context import ServiceContext
from quietstats.components.aggregation import Period
from quietstats.components.goals import Funnel, FunnelStep
from quietstats.core.entities import Conversion, PageView, Session
from quietstats.core.services.stats import StatsService

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0.0.0 Safari/537.36"


def seed_view(
    ctx: ServiceContext, ts: datetime, visitor: str = "v1", session: str = "s1", path: str = "/"
) -> None:
    ctx.page_view_repo.save(
        PageView(site_id="site-1", visitor_id=visitor, session_id=session, path=path, timestamp=ts)
    )


def seed_session(
    ctx: ServiceContext, session_id: str, started: datetime, duration_ms: int, bounce: bool
) -> None:
    ctx.session_repo.save(
        Session(
            id=session_id,
            site_id="site-1",
            visitor_id="v",
            entry_path="/",
            exit_path="/",
            is_bounce=bounce,
            duration=duration_ms,
            started_at=started,
            ended_at=started + timedelta(milliseconds=duration_ms),
        )
    )


def window(start: datetime, end: datetime) -> dict[str, str]:
    return {"startDate": start.isoformat(), "endDate": end.isoformat()}


# --- Time series ---


class TestTimeSeries:
    def test_gap_filled_hourly(self, test_ctx: ServiceContext) -> None:
        seed_view(test_ctx, datetime(2024, 1, 15, 10, 15, tzinfo=UTC), "v1", "s1")
        seed_view(test_ctx, datetime(2024, 1, 15, 10, 45, tzinfo=UTC), "v1", "s1")
        seed_view(test_ctx, datetime(2024, 1, 15, 12, 30, tzinfo=UTC), "v2", "s2")

        result = test_ctx.stats_service.timeseries(
            "site-1",
            window(datetime(2024, 1, 15, 10, tzinfo=UTC), datetime(2024, 1, 15, 14, tzinfo=UTC)),
        )

        assert result.period == Period.HOUR
        assert [p.date for p in result.points] == [
            "2024-01-15T10:00:00",
            "2024-01-15T11:00:00",
            "2024-01-15T12:00:00",
            "2024-01-15T13:00:00",
            "2024-01-15T14:00:00",
        ]
        assert [p.views for p in result.points] == [2, 0, 1, 0, 0]
        assert [p.visitors for p in result.points] == [1, 0, 1, 0, 0]

    def test_default_range_is_daily(self, test_ctx: ServiceContext) -> None:
        seed_view(test_ctx, NOW - timedelta(hours=1))
        result = test_ctx.stats_service.timeseries("site-1")
        assert result.period == Period.DAY
        assert len(result.points) == 31
        assert result.points[-1].date == "2024-01-15"
        assert result.points[-1].views == 1

    def test_explicit_period(self, test_ctx: ServiceContext) -> None:
        result = test_ctx.stats_service.timeseries(
            "site-1", window(NOW - timedelta(days=3), NOW), period="day"
        )
        assert result.period == Period.DAY
        assert len(result.points) == 4

    def test_unknown_period_raises(self, test_ctx: ServiceContext) -> None:
        with pytest.raises(ValueError):
            test_ctx.stats_service.timeseries("site-1", period="fortnight")

    def test_other_sites_excluded(self, test_ctx: ServiceContext) -> None:
        test_ctx.page_view_repo.save(
            PageView(site_id="site-2", visitor_id="v", session_id="s", path="/", timestamp=NOW)
        )
        result = test_ctx.stats_service.timeseries("site-1")
        assert sum(p.views for p in result.points) == 0

    def test_as_dict(self, test_ctx: ServiceContext) -> None:
        body = test_ctx.stats_service.timeseries(
            "site-1", window(NOW - timedelta(days=1), NOW)
        ).as_dict()
        assert body["period"] == "hour"
        assert set(body["timeSeries"][0]) == {"date", "views", "visitors", "sessions"}


# --- Totals ---


class TestTotals:
    def test_totals_with_change(self, test_ctx: ServiceContext) -> None:
        current_start = NOW - timedelta(days=1)

        seed_view(test_ctx, NOW - timedelta(hours=3), "v1", "s1")
        seed_view(test_ctx, NOW - timedelta(hours=2), "v1", "s1")
        seed_view(test_ctx, NOW - timedelta(hours=1), "v2", "s2")
        seed_view(test_ctx, current_start - timedelta(hours=5), "v3", "s3")

        seed_session(test_ctx, "s1", NOW - timedelta(hours=3), 60_000, bounce=False)
        seed_session(test_ctx, "s2", NOW - timedelta(hours=1), 0, bounce=True)
        seed_session(test_ctx, "s3", current_start - timedelta(hours=5), 0, bounce=True)

        ConversionRepo(test_ctx.store).save(
            Conversion(
                site_id="site-1",
                goal_id="g1",
                visitor_id="v1",
                session_id="s1",
                value=20.0,
                timestamp=NOW - timedelta(hours=2),
            )
        )

        totals = test_ctx.stats_service.totals("site-1", window(current_start, NOW))

        assert totals.views == 3
        assert totals.visitors == 2
        assert totals.sessions == 2
        assert totals.bounce_rate == 50.0
        assert totals.avg_duration_ms == 30_000
        assert totals.conversions == 1
        assert totals.conversion_rate == 50.0
        assert totals.conversion_value == 20.0
        assert totals.views_change == 200
        assert totals.visitors_change == 100
        assert totals.sessions_change == 100

        body = totals.as_dict()
        assert body["avgDurationFormatted"] == "00:30"
        assert body["change"] == {"views": 200, "visitors": 100, "sessions": 100}

    def test_empty_site(self, test_ctx: ServiceContext) -> None:
        totals = test_ctx.stats_service.totals("site-1")
        assert totals.views == 0
        assert totals.bounce_rate == 0
        assert totals.conversion_rate == 0
        assert totals.views_change == 0


# --- Realtime ---


class TestRealtime:
    def test_counts_recent_activity(self, test_ctx: ServiceContext) -> None:
        for ip in ("203.0.113.1", "203.0.113.2"):
            test_ctx.collect_service.collect(
                {"s": "site-1", "e": "pageview", "u": "https://example.com/pricing", "sid": ip},
                ip,
                CHROME,
            )
        test_ctx.collect_service.collect(
            {"s": "site-1", "e": "pageview", "u": "https://example.com/", "sid": "x"},
            "203.0.113.1",
            CHROME,
        )

        snapshot = test_ctx.stats_service.realtime("site-1")
        assert snapshot.minutes == 5
        assert snapshot.active_visitors == 2
        assert snapshot.pageviews == 3
        assert snapshot.top_paths == [("/pricing", 2), ("/", 1)]
        assert snapshot.as_dict()["topPages"][0] == {"path": "/pricing", "views": 2}

    def test_old_activity_outside_window(
        self, test_ctx: ServiceContext, clock: FixedClock
    ) -> None:
        test_ctx.collect_service.collect(
            {"s": "site-1", "e": "pageview", "u": "https://example.com/"}, "203.0.113.1", CHROME
        )
        clock.advance(10 * 60)
        assert test_ctx.stats_service.realtime("site-1").pageviews == 0

    def test_without_realtime_source(self, test_ctx: ServiceContext) -> None:
        service = StatsService(
            PageViewRepo(test_ctx.store), SessionRepo(test_ctx.store), test_ctx.clock
        )
        snapshot = service.realtime("site-1", minutes=15)
        assert snapshot.minutes == 15
        assert snapshot.active_visitors == 0


# --- Funnels ---


class TestFunnel:
    FUNNEL = Funnel(
        name="Signup",
        steps=(FunnelStep(name="Home", pattern="/"), FunnelStep(name="Join", pattern="/join")),
    )

    def test_invalid_funnel_returns_errors(self, test_ctx: ServiceContext) -> None:
        result = test_ctx.stats_service.funnel("site-1", Funnel(name="", steps=()))
        assert result.report is None
        assert {e.code for e in result.errors} == {"name_required", "too_few_steps"}

    def test_report_from_stored_views(self, test_ctx: ServiceContext) -> None:
        seed_view(test_ctx, NOW - timedelta(minutes=10), "v1", "a", "/")
        seed_view(test_ctx, NOW - timedelta(minutes=9), "v1", "a", "/join")
        seed_view(test_ctx, NOW - timedelta(minutes=5), "v2", "b", "/")

        result = test_ctx.stats_service.funnel("site-1", self.FUNNEL)

        assert result.errors == []
        assert result.report is not None
        assert result.report.total_entries == 2
        assert result.report.completions == 1
        assert result.report.conversion_rate == 50.0
        assert result.report.avg_completion_time_ms == 60_000
        assert [(d.from_step, d.to_step, d.dropped_off) for d in result.drop_offs] == [
            ("Home", "Join", 1)
        ]


# --- Rollup ---


class TestRollup:
    def test_rollup_persists_buckets(self, test_ctx: ServiceContext) -> None:
        seed_view(test_ctx, datetime(2024, 1, 14, 9, tzinfo=UTC), "v1", "s1")
        seed_view(test_ctx, datetime(2024, 1, 15, 9, tzinfo=UTC), "v1", "s2")
        seed_view(test_ctx, datetime(2024, 1, 15, 10, tzinfo=UTC), "v2", "s3")

        start = datetime(2024, 1, 14, tzinfo=UTC)
        buckets = test_ctx.stats_service.rollup("site-1", "day", start, NOW)

        assert [(b.bucket_key, b.views, b.visitors) for b in buckets] == [
            ("2024-01-14", 1, 1),
            ("2024-01-15", 2, 2),
        ]
        stored = test_ctx.stats_repo.list_range("site-1", "day", "2024-01-14", "2024-01-15")
        assert [b.views for b in stored] == [1, 2]

    def test_rollup_is_idempotent(self, test_ctx: ServiceContext) -> None:
        seed_view(test_ctx, NOW - timedelta(hours=1))
        start = NOW - timedelta(days=1)
        test_ctx.stats_service.rollup("site-1", Period.HOUR, start, NOW)
        test_ctx.stats_service.rollup("site-1", Period.HOUR, start, NOW)
        stored = test_ctx.stats_repo.list_range(
            "site-1", "hour", "2024-01-14T00:00:00", "2024-01-15T23:00:00"
        )
        assert len(stored) == 1
        assert stored[0].views == 1

    def test_partial_range_recomputes_whole_bucket(self, test_ctx: ServiceContext) -> None:
        for hour in (1, 5, 11):
            seed_view(test_ctx, datetime(2024, 1, 15, hour, tzinfo=UTC), f"v{hour}", f"s{hour}")

        test_ctx.stats_service.rollup("site-1", "day", datetime(2024, 1, 15, tzinfo=UTC), NOW)
        buckets = test_ctx.stats_service.rollup(
            "site-1", "day", datetime(2024, 1, 15, 6, tzinfo=UTC), NOW
        )

        assert [(b.bucket_key, b.views) for b in buckets] == [("2024-01-15", 3)]
        stored = test_ctx.stats_repo.list_range("site-1", "day", "2024-01-15", "2024-01-15")
        assert [b.views for b in stored] == [3]

    def test_mid_bucket_end_includes_rest_of_bucket(self, test_ctx: ServiceContext) -> None:
        seed_view(test_ctx, datetime(2024, 1, 15, 10, 50, tzinfo=UTC))
        buckets = test_ctx.stats_service.rollup(
            "site-1",
            Period.HOUR,
            datetime(2024, 1, 15, 10, tzinfo=UTC),
            datetime(2024, 1, 15, 10, 15, tzinfo=UTC),
        )
        assert [(b.bucket_key, b.views) for b in buckets] == [("2024-01-15T10:00:00", 1)]
