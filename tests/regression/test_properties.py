import random
from datetime import UTC, datetime, timedelta

import pytest

from quietstats.components import aggregation, identity, keys, metrics
from quietstats.core.entities import Goal

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
IP = "203.0.113.7"
CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0.0.0 Safari/537.36"


def pageview(path, sid="sess-1"):
    return {"s": "site-1", "e": "pageview", "u": f"https://example.com{path}", "sid": sid}


# --- Visitor identity ---
def test_visitor_id_stable_within_a_day():
    """Same client hashes the same all day, and differently the next day or on another site."""

    def visitor(site_id, when):
        return identity.resolve_identity(IP, CHROME, site_id, when).visitor_id

    morning = visitor("site-1", datetime(2024, 1, 15, 0, 1, tzinfo=UTC))
    night = visitor("site-1", datetime(2024, 1, 15, 23, 59, tzinfo=UTC))
    tomorrow = visitor("site-1", datetime(2024, 1, 16, 0, 1, tzinfo=UTC))
    other_site = visitor("site-2", NOW)

    assert morning == night
    assert morning != tomorrow
    assert morning != other_site


def test_raw_ip_never_stored(test_ctx):
    test_ctx.goal_repo.save(
        Goal(site_id="site-1", name="Any", type="pageview", pattern="/", match_type="contains")
    )
    test_ctx.collect_service.collect(pageview("/"), IP, CHROME)
    test_ctx.collect_service.collect(
        {**pageview("/"), "e": "event", "p": {"name": "signup"}}, IP, CHROME
    )

    items = test_ctx.store.query("SITE#site-1")
    assert items
    assert all(IP not in str(item) for item in items)


# --- Storage keys ---
def test_sort_keys_order_chronologically():
    rng = random.Random(7)
    offsets = rng.sample(range(0, 400 * 86400), 200)
    stamps = [NOW + timedelta(seconds=s) for s in offsets]
    by_key = sorted(stamps, key=lambda ts: keys.page_view_keys("site-1", ts, "id").sk)
    assert by_key == sorted(stamps)


def test_range_bounds_are_inclusive():
    start = NOW
    end = NOW + timedelta(hours=1)
    rng = keys.page_view_range("site-1", start, end)
    for ts in (start, end, start + timedelta(minutes=30)):
        sk = keys.page_view_keys("site-1", ts, "zzzz-last").sk
        assert rng.sk_low <= sk <= rng.sk_high
    before = keys.page_view_keys("site-1", start - timedelta(milliseconds=1), "a").sk
    after = keys.page_view_keys("site-1", end + timedelta(milliseconds=1), "a").sk
    assert not rng.sk_low <= before <= rng.sk_high
    assert not rng.sk_low <= after <= rng.sk_high


# --- Time buckets ---
@pytest.mark.parametrize("period", ["minute", "hour", "day", "month"])
def test_generated_buckets_unique_and_sorted(period):
    start = datetime(2023, 11, 28, 7, 13, tzinfo=UTC)
    end = start + timedelta(days=3) if period == "minute" else start + timedelta(days=75)
    buckets = aggregation.generate_time_buckets(start, end, period)
    assert buckets
    assert buckets == sorted(set(buckets))


def test_every_view_lands_in_a_generated_bucket():
    start = datetime(2024, 1, 1, tzinfo=UTC)
    end = datetime(2024, 1, 31, 23, 59, tzinfo=UTC)
    buckets = set(aggregation.generate_time_buckets(start, end, "day"))
    rng = random.Random(11)
    for _ in range(100):
        ts = start + timedelta(seconds=rng.randrange(int((end - start).total_seconds())))
        assert aggregation.bucket_key(ts, "day") in buckets


# --- Derived metrics ---
def test_bounce_rate_bounded_and_monotonic():
    rates = [metrics.calculate_bounce_rate(b, 37) for b in range(38)]
    assert rates[0] == 0
    assert rates[-1] == 100
    assert rates == sorted(rates)


def test_conversion_rate_capped():
    assert metrics.calculate_conversion_rate(12, 10) == 100


# --- Sessions and conversions ---
def test_bounce_flag_tracks_page_view_count(test_ctx, clock):
    first = test_ctx.collect_service.collect(pageview("/"), IP, CHROME)
    assert first.session.is_bounce is True
    assert first.session.page_view_count == 1

    for path in ("/a", "/b", "/c"):
        clock.advance(10)
        result = test_ctx.collect_service.collect(pageview(path), IP, CHROME)
        assert result.session.is_bounce is False
        assert result.session.page_view_count > 1
        assert result.session.duration >= 0


def test_goal_converts_at_most_once_per_session(test_ctx, clock):
    test_ctx.goal_repo.save(
        Goal(
            id="g1",
            site_id="site-1",
            name="Docs",
            type="pageview",
            pattern="/docs/",
            match_type="contains",
        )
    )
    total = 0
    for n in range(5):
        clock.advance(5)
        total += len(
            test_ctx.collect_service.collect(pageview(f"/docs/{n}"), IP, CHROME).conversions
        )
    total += len(
        test_ctx.collect_service.collect(pageview("/docs/x", sid="sess-2"), IP, CHROME).conversions
    )
    assert total == 2
