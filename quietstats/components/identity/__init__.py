"""
Identity resolver component - pseudonymous visitor fingerprints.
"""

from .component import (
    get_daily_salt,
    hash_visitor_id,
    is_bot,
    is_private_ip,
    resolve_identity,
    should_track,
)
from .models import DEFAULT_CONFIG, Identity, IdentityConfig

__all__ = [
    "DEFAULT_CONFIG",
    "Identity",
    "IdentityConfig",
    "get_daily_salt",
    "hash_visitor_id",
    "is_bot",
    "is_private_ip",
    "resolve_identity",
    "should_track",
]
