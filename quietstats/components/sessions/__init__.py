"""
Session reconstructor component.
"""

from .component import (
    SessionLookup,
    SessionReconstructor,
    cache_key,
    duration_ms,
    extend_with_event,
    extend_with_pageview,
    start_session,
)
from .models import (
    DEFAULT_CONFIG,
    LookupResult,
    LookupSource,
    SessionContext,
    SessionsConfig,
    SessionUpdate,
)
from .ports import SessionCachePort, SessionStorePort

__all__ = [
    # Services
    "SessionLookup",
    "SessionReconstructor",
    # Transitions
    "cache_key",
    "duration_ms",
    "extend_with_event",
    "extend_with_pageview",
    "start_session",
    # Models
    "DEFAULT_CONFIG",
    "LookupResult",
    "LookupSource",
    "SessionContext",
    "SessionsConfig",
    "SessionUpdate",
    # Ports
    "SessionCachePort",
    "SessionStorePort",
]
