"""
Storage key encoder component.
"""

from .component import (
    RANGE_END,
    SEP,
    conversion_keys,
    conversion_range,
    decode_partition_key,
    decode_sort_key,
    event_keys,
    event_range,
    format_key_timestamp,
    goal_keys,
    minute_key,
    owner_pk,
    page_view_keys,
    page_view_range,
    parse_key_timestamp,
    prefix,
    realtime_keys,
    realtime_range,
    session_keys,
    site_keys,
    site_pk,
    stats_keys,
    stats_range,
    timestamp_range,
)
from .models import DecodedKey, EntityKind, KeyPair, KeyRange

__all__ = [
    "RANGE_END",
    "SEP",
    "DecodedKey",
    "EntityKind",
    "KeyPair",
    "KeyRange",
    "conversion_keys",
    "conversion_range",
    "decode_partition_key",
    "decode_sort_key",
    "event_keys",
    "event_range",
    "format_key_timestamp",
    "goal_keys",
    "minute_key",
    "owner_pk",
    "page_view_keys",
    "page_view_range",
    "parse_key_timestamp",
    "prefix",
    "realtime_keys",
    "realtime_range",
    "session_keys",
    "site_keys",
    "site_pk",
    "stats_keys",
    "stats_range",
    "timestamp_range",
]
