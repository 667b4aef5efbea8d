"""
Derived metrics formatter component.

Display-ready numbers computed from aggregation and goal outputs.

Key behaviors:
- Rates round half up (2.5 -> 3), matching the dashboard's rounding
- Zero or negative denominators yield 0 instead of raising
- Formatting never raises on None; it renders "0" or "00:00"
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import Any

from quietstats.components.aggregation import Period, coerce_period, parse_bucket_key

MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# --- Rates ---


def calculate_percentage_change(current: float, previous: float) -> int:
    """Whole-number percent change; previous == 0 gives 100 if current > 0 else 0."""
    if previous == 0:
        return 100 if current > 0 else 0
    return _round_half_up((current - previous) / previous * 100)


def calculate_bounce_rate(bounces: float, sessions: float) -> float:
    """Bounce percentage with two decimals."""
    if sessions <= 0 or bounces < 0:
        return 0
    return _round_half_up(bounces / sessions * 10000) / 100


def calculate_conversion_rate(conversions: float, visitors: float) -> float:
    """Conversion percentage with one decimal, capped at 100."""
    if visitors <= 0:
        return 0
    return min(100, _round_half_up(conversions / visitors * 1000) / 10)


def calculate_percentage(value: float, total: float) -> float:
    """Share of total with two decimals."""
    if total <= 0:
        return 0
    return _round_half_up(value / total * 10000) / 100


def total_conversion_value(conversions: Iterable[Any]) -> float:
    """Sum of conversion values; conversions without a value count as 0."""
    return sum(getattr(c, "value", None) or 0 for c in conversions)


# --- Durations ---


def format_duration(ms: float | None) -> str:
    """MM:SS under an hour, HH:MM:SS from one hour; non-positive -> 00:00."""
    if not ms or ms <= 0:
        return "00:00"

    total_seconds = int(ms // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def format_duration_human(ms: float | None) -> str:
    """45s, 2m 5s, 1h 2m."""
    total_seconds = max(0, int((ms or 0) // 1000))
    if total_seconds < 60:
        return f"{total_seconds}s"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes}m {total_seconds % 60}s"
    return f"{minutes // 60}h {minutes % 60}m"


# --- Numbers ---


def _compact(value: float, suffix: str) -> str:
    return f"{value:.1f}".removesuffix(".0") + suffix


def format_number(n: float | None) -> str:
    """1234 -> 1.2k, 1500000 -> 1.5M, 12.5 -> 13, None -> 0."""
    if n is None:
        return "0"
    if n >= 1_000_000:
        return _compact(n / 1_000_000, "M")
    if n >= 1_000:
        return _compact(n / 1_000, "k")
    return str(_round_half_up(n))


# --- Chart Labels ---


def _clock(hour: int) -> tuple[int, str]:
    suffix = "am" if hour < 12 else "pm"
    return (hour % 12 or 12), suffix


def format_chart_label(bucket: str, period: Period | str) -> str:
    """
    Axis label for a bucket key.

    minute -> "10:15am", hour -> "2pm", day -> "Jan 15", month -> "Jan 2024".
    Keys that do not parse are returned unchanged.
    """
    period = coerce_period(period)
    try:
        start = parse_bucket_key(bucket, period)
    except ValueError:
        return bucket

    if period == Period.MINUTE:
        hour, suffix = _clock(start.hour)
        return f"{hour}:{start.minute:02d}{suffix}"
    if period == Period.HOUR:
        hour, suffix = _clock(start.hour)
        return f"{hour}{suffix}"
    if period == Period.DAY:
        return f"{MONTH_ABBR[start.month - 1]} {start.day}"
    return f"{MONTH_ABBR[start.month - 1]} {start.year}"


def generate_chart_labels(buckets: Sequence[str], period: Period | str) -> list[str]:
    return [format_chart_label(b, period) for b in buckets]
