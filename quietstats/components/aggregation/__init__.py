"""
Time-bucketed aggregator component.
"""

from .component import (
    aggregate_time_series_data,
    bucket_key,
    coerce_period,
    coerce_timestamp,
    determine_period,
    fill_missing_buckets,
    generate_time_buckets,
    get_optimal_period,
    next_bucket,
    parse_bucket_key,
    parse_date_range,
    parse_range_label,
    rollup_buckets,
    to_utc,
    truncate,
)
from .models import (
    DEFAULT_CONFIG,
    AggregationConfig,
    BucketCounts,
    DateRange,
    Period,
    TimeSeriesPoint,
)

__all__ = [
    # Bucket calculation
    "bucket_key",
    "next_bucket",
    "parse_bucket_key",
    "truncate",
    # Period selection
    "determine_period",
    "get_optimal_period",
    # Series
    "aggregate_time_series_data",
    "fill_missing_buckets",
    "generate_time_buckets",
    "rollup_buckets",
    # Ranges and coercion
    "coerce_period",
    "coerce_timestamp",
    "parse_date_range",
    "parse_range_label",
    "to_utc",
    # Models
    "DEFAULT_CONFIG",
    "AggregationConfig",
    "BucketCounts",
    "DateRange",
    "Period",
    "TimeSeriesPoint",
]
