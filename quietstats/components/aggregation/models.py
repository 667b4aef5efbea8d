"""
Time-bucketed aggregator models.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

# --- Enums ---


class Period(str, Enum):
    """Bucket granularity."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


# --- Configuration ---


@dataclass(frozen=True)
class AggregationConfig:
    """Aggregation configuration."""

    # Width of a "minute" bucket
    minute_step: int = 5

    # Range used when a query gives no dates
    default_range_days: int = 30

    # Server-side period selection thresholds
    minute_threshold_hours: int = 1
    hour_threshold_days: int = 2
    month_threshold_days: int = 90


DEFAULT_CONFIG = AggregationConfig()


# --- Value Models ---


@dataclass(frozen=True)
class BucketCounts:
    """Raw view count plus distinct visitors and sessions in one bucket."""

    views: int = 0
    visitors: int = 0
    sessions: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class TimeSeriesPoint:
    """One entry of a gap-filled series."""

    date: str
    views: int = 0
    visitors: int = 0
    sessions: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DateRange:
    """Inclusive UTC query range."""

    start: datetime
    end: datetime
