"""
Time-bucketed aggregator component.

Key behaviors:
- Canonical bucket keys per period (all UTC):
  - minute: YYYY-MM-DDTHH:MM:00, minutes floored to a 5-minute boundary
  - hour:   YYYY-MM-DDTHH:00:00
  - day:    YYYY-MM-DD
  - month:  YYYY-MM
- Bucket sequences start at the bucket containing `start` and step one
  unit at a time while the cursor is <= `end`
- Page views are grouped by truncating their own timestamp, not by
  membership in a generated sequence
- visitors/sessions are distinct counts, views is a raw count

Invariants:
- No timestamp maps to two buckets of the same period
- A generated sequence never skips a canonical bucket start
"""

from __future__ import annotations

import calendar
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from quietstats.core.entities import StatsBucket

from .models import (
    DEFAULT_CONFIG,
    AggregationConfig,
    BucketCounts,
    DateRange,
    Period,
    TimeSeriesPoint,
)

logger = logging.getLogger(__name__)

KEY_FORMATS: dict[Period, str] = {
    Period.MINUTE: "%Y-%m-%dT%H:%M:00",
    Period.HOUR: "%Y-%m-%dT%H:00:00",
    Period.DAY: "%Y-%m-%d",
    Period.MONTH: "%Y-%m",
}

# Range labels offered by the dashboard picker
RANGE_PERIODS: dict[str, Period] = {
    "1h": Period.MINUTE,
    "6h": Period.HOUR,
    "12h": Period.HOUR,
    "24h": Period.HOUR,
}

RANGE_LABEL_PATTERN = re.compile(r"^(\d+)([hdwmy])$")
RANGE_UNITS: dict[str, timedelta] = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


# --- Timestamps ---


def to_utc(ts: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def coerce_timestamp(value: Any) -> datetime:
    """
    Accept a datetime or an ISO-8601 string (trailing "Z" allowed).

    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str) and value:
        return to_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    msg = f"Not a timestamp: {value!r}"
    raise ValueError(msg)


def coerce_period(period: Period | str) -> Period:
    return period if isinstance(period, Period) else Period(str(period).lower())


# --- Bucket Calculation ---


def truncate(
    ts: datetime, period: Period | str, config: AggregationConfig = DEFAULT_CONFIG
) -> datetime:
    """Start of the bucket containing `ts`."""
    ts = to_utc(ts)
    period = coerce_period(period)

    if period == Period.MINUTE:
        minute = ts.minute - ts.minute % config.minute_step
        return ts.replace(minute=minute, second=0, microsecond=0)
    elif period == Period.HOUR:
        return ts.replace(minute=0, second=0, microsecond=0)
    elif period == Period.DAY:
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)
    else:
        return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_bucket(
    bucket_start: datetime, period: Period | str, config: AggregationConfig = DEFAULT_CONFIG
) -> datetime:
    """Start of the following bucket (one unit later)."""
    period = coerce_period(period)

    if period == Period.MINUTE:
        return bucket_start + timedelta(minutes=config.minute_step)
    elif period == Period.HOUR:
        return bucket_start + timedelta(hours=1)
    elif period == Period.DAY:
        return bucket_start + timedelta(days=1)
    else:
        if bucket_start.month == 12:
            return bucket_start.replace(year=bucket_start.year + 1, month=1, day=1)
        return bucket_start.replace(month=bucket_start.month + 1, day=1)


def bucket_key(
    ts: datetime, period: Period | str, config: AggregationConfig = DEFAULT_CONFIG
) -> str:
    """Canonical key of the bucket containing `ts`."""
    period = coerce_period(period)
    return truncate(ts, period, config).strftime(KEY_FORMATS[period])


def parse_bucket_key(key: str, period: Period | str) -> datetime:
    """Bucket start (UTC) for a canonical key."""
    period = coerce_period(period)
    return datetime.strptime(key, KEY_FORMATS[period]).replace(tzinfo=UTC)


# --- Period Selection ---


def get_optimal_period(range_label: str | None) -> Period:
    """1h -> minute, 6h/12h/24h -> hour, anything else -> day."""
    return RANGE_PERIODS.get((range_label or "").strip().lower(), Period.DAY)


def determine_period(
    start: datetime, end: datetime, config: AggregationConfig = DEFAULT_CONFIG
) -> Period:
    """Server-side period selection from the span of an explicit range."""
    span = abs(to_utc(end) - to_utc(start))

    if span <= timedelta(hours=config.minute_threshold_hours):
        return Period.MINUTE
    if span <= timedelta(days=config.hour_threshold_days):
        return Period.HOUR
    if span <= timedelta(days=config.month_threshold_days):
        return Period.DAY
    return Period.MONTH


# --- Bucket Generation ---


def generate_time_buckets(
    start: datetime,
    end: datetime,
    period: Period | str,
    config: AggregationConfig = DEFAULT_CONFIG,
) -> list[str]:
    """
    Ordered, deduplicated bucket keys covering [start, end] inclusive.

    Example: 10:00Z..14:00Z by hour -> 5 keys, 10:00:00 through 14:00:00.
    """
    period = coerce_period(period)
    end = to_utc(end)
    cursor = truncate(start, period, config)

    keys: list[str] = []
    seen: set[str] = set()
    while cursor <= end:
        key = cursor.strftime(KEY_FORMATS[period])
        if key not in seen:
            seen.add(key)
            keys.append(key)
        cursor = next_bucket(cursor, period, config)
    return keys


# --- Aggregation ---


def _field(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if name in item:
                return item[name]
        elif hasattr(item, name):
            return getattr(item, name)
    return None


def aggregate_time_series_data(
    page_views: Iterable[Any],
    period: Period | str,
    config: AggregationConfig = DEFAULT_CONFIG,
) -> dict[str, BucketCounts]:
    """
    Group page views by bucket.

    Each item is a mapping or object with a timestamp, a visitor id and a
    session id (snake_case or camelCase). Items whose timestamp cannot be
    read are skipped.
    """
    period = coerce_period(period)
    views: dict[str, int] = {}
    visitors: dict[str, set[Any]] = {}
    sessions: dict[str, set[Any]] = {}

    for item in page_views:
        try:
            ts = coerce_timestamp(_field(item, "timestamp"))
        except ValueError:
            logger.warning("Skipping page view with unreadable timestamp")
            continue

        key = bucket_key(ts, period, config)
        views[key] = views.get(key, 0) + 1
        visitors.setdefault(key, set()).add(_field(item, "visitor_id", "visitorId"))
        sessions.setdefault(key, set()).add(_field(item, "session_id", "sessionId"))

    return {
        key: BucketCounts(views=count, visitors=len(visitors[key]), sessions=len(sessions[key]))
        for key, count in views.items()
    }


def _counts(value: Any) -> BucketCounts:
    if isinstance(value, BucketCounts):
        return value
    return BucketCounts(
        views=int(_field(value, "views") or 0),
        visitors=int(_field(value, "visitors") or 0),
        sessions=int(_field(value, "sessions") or 0),
    )


def fill_missing_buckets(
    all_buckets: Sequence[str], data: Mapping[str, Any]
) -> list[TimeSeriesPoint]:
    """One point per bucket in `all_buckets`, zeros where `data` has none."""
    series = []
    for key in all_buckets:
        counts = _counts(data[key]) if key in data else BucketCounts()
        series.append(
            TimeSeriesPoint(
                date=key,
                views=counts.views,
                visitors=counts.visitors,
                sessions=counts.sessions,
            )
        )
    return series


def rollup_buckets(
    site_id: str,
    page_views: Iterable[Any],
    period: Period | str,
    config: AggregationConfig = DEFAULT_CONFIG,
) -> list[StatsBucket]:
    """Aggregate page views into StatsBucket records, ordered by key."""
    period = coerce_period(period)
    data = aggregate_time_series_data(page_views, period, config)
    return [
        StatsBucket(
            site_id=site_id,
            period=period.value,
            bucket_key=key,
            views=counts.views,
            visitors=counts.visitors,
            sessions=counts.sessions,
        )
        for key, counts in sorted(data.items())
    ]


# --- Date Ranges ---


def _read_date(params: Mapping[str, Any], *names: str) -> datetime | None:
    for name in names:
        raw = params.get(name)
        if raw in (None, ""):
            continue
        try:
            return coerce_timestamp(raw)
        except ValueError:
            logger.warning("Ignoring unparseable %s=%r", name, raw)
    return None


def parse_date_range(
    params: Mapping[str, Any] | None,
    now: datetime | None = None,
    config: AggregationConfig = DEFAULT_CONFIG,
) -> DateRange:
    """
    Read start/end from query parameters.

    Missing values default to the trailing `default_range_days` ending now.
    An inverted range is swapped rather than rejected.
    """
    params = params or {}
    now = to_utc(now) if now else datetime.now(UTC)

    start = _read_date(params, "startDate", "start")
    end = _read_date(params, "endDate", "end")

    if end is None:
        end = now
    if start is None:
        start = end - timedelta(days=config.default_range_days)
    if start > end:
        start, end = end, start

    return DateRange(start=start, end=end)


def parse_range_label(
    label: str | None,
    now: datetime | None = None,
    config: AggregationConfig = DEFAULT_CONFIG,
) -> DateRange:
    """'6h', '7d', '2w', '3m', '1y' -> range ending now. Unknown labels give the default range."""
    now = to_utc(now) if now else datetime.now(UTC)
    match = RANGE_LABEL_PATTERN.match((label or "").strip().lower())
    if not match:
        return DateRange(start=now - timedelta(days=config.default_range_days), end=now)

    amount, unit = int(match.group(1)), match.group(2)
    if unit == "m":
        return DateRange(start=_shift_months(now, -amount), end=now)
    if unit == "y":
        return DateRange(start=_shift_months(now, -12 * amount), end=now)
    return DateRange(start=now - RANGE_UNITS[unit] * amount, end=now)


def _shift_months(ts: datetime, months: int) -> datetime:
    """Calendar month shift, clamping the day to the target month's length."""
    index = ts.year * 12 + ts.month - 1 + months
    year, month = divmod(index, 12)
    month += 1
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)
