"""
Storage key encoder component.

Encodes entity keys for a partition-key/sort-key store with one secondary
index (GSI1, owner -> site listing).

Key layout (pk is always SITE#<site_id>):
- Site:        sk SITE, gsi1pk OWNER#<owner_id>, gsi1sk SITE#<site_id>
- PageView:    sk PV#<iso ts>#<id>
- Session:     sk SESSION#<session_id>
- CustomEvent: sk EVENT#<iso ts>#<id>
- Goal:        sk GOAL#<goal_id>
- Conversion:  sk CONVERSION#<iso ts>#<id>
- StatsBucket: sk STATS#<PERIOD>#<bucket_key>
- Realtime:    sk REALTIME#<YYYY-MM-DDTHH:MM>

Invariants:
- Pure functions of their inputs; no clock, no randomness
- Timestamps encode as fixed-width UTC ISO-8601 with milliseconds, so
  lexicographic order equals chronological order
"""

from __future__ import annotations

from datetime import UTC, datetime

from .models import DecodedKey, EntityKind, KeyPair, KeyRange

SEP = "#"
# Sorts after every character used in timestamps and generated ids
RANGE_END = "~"

# Number of "#"-separated components after the prefix, per entity kind
_PART_COUNTS: dict[EntityKind, int] = {
    EntityKind.SITE: 0,
    EntityKind.PAGE_VIEW: 2,
    EntityKind.SESSION: 1,
    EntityKind.EVENT: 2,
    EntityKind.GOAL: 1,
    EntityKind.CONVERSION: 2,
    EntityKind.STATS: 2,
    EntityKind.REALTIME: 1,
}


# --- Timestamp Encoding ---


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def format_key_timestamp(ts: datetime) -> str:
    """Encode a timestamp as e.g. 2024-01-15T10:15:30.123Z."""
    utc = _as_utc(ts)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_key_timestamp(value: str) -> datetime:
    """Inverse of format_key_timestamp."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def minute_key(ts: datetime) -> str:
    """Truncate a timestamp to the minute: YYYY-MM-DDTHH:MM."""
    return _as_utc(ts).strftime("%Y-%m-%dT%H:%M")


# --- Partition Keys ---


def site_pk(site_id: str) -> str:
    return f"SITE{SEP}{site_id}"


def owner_pk(owner_id: str) -> str:
    return f"OWNER{SEP}{owner_id}"


def decode_partition_key(pk: str) -> tuple[str, str]:
    """Split "SITE#abc" into ("SITE", "abc")."""
    kind, _, ident = pk.partition(SEP)
    if not ident:
        msg = f"Malformed partition key: {pk!r}"
        raise ValueError(msg)
    return kind, ident


# --- Entity Keys ---


def site_keys(site_id: str, owner_id: str) -> KeyPair:
    return KeyPair(
        pk=site_pk(site_id),
        sk=EntityKind.SITE.value,
        gsi1pk=owner_pk(owner_id),
        gsi1sk=site_pk(site_id),
    )


def page_view_keys(site_id: str, timestamp: datetime, page_view_id: str) -> KeyPair:
    sk = SEP.join((EntityKind.PAGE_VIEW.value, format_key_timestamp(timestamp), page_view_id))
    return KeyPair(pk=site_pk(site_id), sk=sk)


def session_keys(site_id: str, session_id: str) -> KeyPair:
    return KeyPair(pk=site_pk(site_id), sk=f"{EntityKind.SESSION.value}{SEP}{session_id}")


def event_keys(site_id: str, timestamp: datetime, event_id: str) -> KeyPair:
    sk = SEP.join((EntityKind.EVENT.value, format_key_timestamp(timestamp), event_id))
    return KeyPair(pk=site_pk(site_id), sk=sk)


def goal_keys(site_id: str, goal_id: str) -> KeyPair:
    return KeyPair(pk=site_pk(site_id), sk=f"{EntityKind.GOAL.value}{SEP}{goal_id}")


def conversion_keys(site_id: str, timestamp: datetime, conversion_id: str) -> KeyPair:
    sk = SEP.join((EntityKind.CONVERSION.value, format_key_timestamp(timestamp), conversion_id))
    return KeyPair(pk=site_pk(site_id), sk=sk)


def stats_keys(site_id: str, period: str, bucket_key: str) -> KeyPair:
    sk = SEP.join((EntityKind.STATS.value, period.upper(), bucket_key))
    return KeyPair(pk=site_pk(site_id), sk=sk)


def realtime_keys(site_id: str, timestamp: datetime) -> KeyPair:
    return KeyPair(
        pk=site_pk(site_id),
        sk=f"{EntityKind.REALTIME.value}{SEP}{minute_key(timestamp)}",
    )


def prefix(kind: EntityKind, *parts: str) -> str:
    """Sort-key prefix for a query, e.g. prefix(STATS, "day") -> "STATS#DAY#"."""
    segments = [kind.value, *(p.upper() if kind is EntityKind.STATS else p for p in parts)]
    return SEP.join(segments) + SEP


# --- Ranges ---


def timestamp_range(kind: EntityKind, site_id: str, start: datetime, end: datetime) -> KeyRange:
    """Sort-key range over timestamped records with start <= timestamp <= end."""
    return KeyRange(
        pk=site_pk(site_id),
        sk_low=f"{kind.value}{SEP}{format_key_timestamp(start)}",
        sk_high=f"{kind.value}{SEP}{format_key_timestamp(end)}{SEP}{RANGE_END}",
    )


def page_view_range(site_id: str, start: datetime, end: datetime) -> KeyRange:
    return timestamp_range(EntityKind.PAGE_VIEW, site_id, start, end)


def event_range(site_id: str, start: datetime, end: datetime) -> KeyRange:
    return timestamp_range(EntityKind.EVENT, site_id, start, end)


def conversion_range(site_id: str, start: datetime, end: datetime) -> KeyRange:
    return timestamp_range(EntityKind.CONVERSION, site_id, start, end)


def stats_range(site_id: str, period: str, start_key: str, end_key: str) -> KeyRange:
    """Sort-key range over stats buckets of one period, both ends inclusive."""
    return KeyRange(
        pk=site_pk(site_id),
        sk_low=stats_keys(site_id, period, start_key).sk,
        sk_high=stats_keys(site_id, period, end_key).sk,
    )


def realtime_range(site_id: str, start: datetime, end: datetime) -> KeyRange:
    return KeyRange(
        pk=site_pk(site_id),
        sk_low=realtime_keys(site_id, start).sk,
        sk_high=realtime_keys(site_id, end).sk,
    )


# --- Decoding ---


def decode_sort_key(sk: str) -> DecodedKey:
    """
    Split a sort key into its kind and components.

    Raises ValueError for unknown prefixes or a wrong component count.
    """
    head, _, rest = sk.partition(SEP)
    try:
        kind = EntityKind(head)
    except ValueError:
        msg = f"Unknown sort key prefix: {sk!r}"
        raise ValueError(msg) from None

    expected = _PART_COUNTS[kind]
    if expected == 0:
        if rest:
            msg = f"Unexpected components in sort key: {sk!r}"
            raise ValueError(msg)
        return DecodedKey(kind=kind, parts=())

    parts = tuple(rest.split(SEP, expected - 1)) if rest else ()
    if len(parts) != expected or not all(parts):
        msg = f"Malformed {kind.value} sort key: {sk!r}"
        raise ValueError(msg)
    return DecodedKey(kind=kind, parts=parts)
