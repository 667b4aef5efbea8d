"""
Identity resolver component - daily-rotating visitor fingerprints.

Key behaviors:
- Fingerprint = sha256("ip|user_agent|site_id|salt"), 64 lowercase hex chars
- Salt is derived from the UTC calendar date only, so it rotates at UTC midnight
- Private/loopback addresses and automated user agents are flagged, not dropped

Invariants:
- No raw IP or user agent leaves this module except as hash input
- Same inputs on the same UTC day always give the same fingerprint
"""

from __future__ import annotations

import hashlib
import ipaddress
from collections.abc import Mapping
from datetime import UTC, date, datetime
from typing import Any

from .models import DEFAULT_CONFIG, Identity, IdentityConfig

PRIVATE_NETWORKS = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
)

OPT_OUT_HEADERS = ("dnt", "sec-gpc")


def get_daily_salt(day: datetime | date | None = None, prefix: str = "analytics") -> str:
    """
    Return "<prefix>-YYYY-MM-DD" for the UTC date of `day`.

    Aware datetimes are converted to UTC first; naive ones are read as UTC.
    """
    if day is None:
        day = datetime.now(UTC)
    if isinstance(day, datetime):
        if day.tzinfo is not None:
            day = day.astimezone(UTC)
        day = day.date()
    return f"{prefix}-{day.isoformat()}"


def hash_visitor_id(ip: str, user_agent: str, site_id: str, salt: str) -> str:
    """SHA-256 over the pipe-joined fields, as 64 lowercase hex characters."""
    data = "|".join((ip or "", user_agent or "", site_id or "", salt or ""))
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def is_private_ip(ip: str | None) -> bool:
    """
    True for loopback and RFC1918 addresses.

    Empty and "unknown" count as private so they are never tracked. A string
    that is not an IP address at all is not private.
    """
    if not ip:
        return True
    value = ip.strip()
    if not value or value.lower() == "unknown":
        return True

    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return False

    return any(addr.version == net.version and addr in net for net in PRIVATE_NETWORKS)


def should_track(headers: Mapping[str, Any] | None) -> bool:
    """False when a Do-Not-Track or Global-Privacy-Control header is set to "1"."""
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    for name in OPT_OUT_HEADERS:
        if str(lowered.get(name, "")).strip() == "1":
            return False
    return True


def is_bot(user_agent: str | None, config: IdentityConfig = DEFAULT_CONFIG) -> bool:
    """Check a user agent against known crawler, headless and link-preview signatures."""
    if not user_agent:
        return False
    ua_lower = user_agent.lower()
    return any(sig in ua_lower for sig in config.bot_signatures)


def resolve_identity(
    ip: str,
    user_agent: str,
    site_id: str,
    now: datetime,
    config: IdentityConfig = DEFAULT_CONFIG,
) -> Identity:
    """Derive the day's fingerprint for a request and classify its traffic."""
    salt = get_daily_salt(now, prefix=config.salt_prefix)
    return Identity(
        visitor_id=hash_visitor_id(ip, user_agent, site_id, salt),
        salt=salt,
        is_bot=is_bot(user_agent, config),
        is_private_ip=is_private_ip(ip),
    )
