"""
Event normalizer component - parses raw collection payloads.
"""

from .component import (
    BROWSER_PATTERNS,
    DEVICE_PATTERNS,
    OS_PATTERNS,
    REFERRER_SOURCES,
    country_from_headers,
    extract_hostname,
    extract_path,
    get_browser_family,
    parse_event_type,
    parse_referrer_source,
    parse_user_agent,
    parse_utm_params,
    run_normalize,
    validate_collect_payload,
    validate_event_payload,
    validate_site_id,
    validate_url,
)
from .models import (
    DEFAULT_CONFIG,
    DeviceType,
    EventType,
    GeoHint,
    NormalizeInput,
    NormalizeOutput,
    NormalizerConfig,
    ParsedUserAgent,
    UTMParams,
    ValidationResult,
)

__all__ = [
    # Entry point
    "run_normalize",
    # Parsers
    "country_from_headers",
    "extract_hostname",
    "extract_path",
    "get_browser_family",
    "parse_event_type",
    "parse_referrer_source",
    "parse_user_agent",
    "parse_utm_params",
    # Validators
    "validate_collect_payload",
    "validate_event_payload",
    "validate_site_id",
    "validate_url",
    # Tables
    "BROWSER_PATTERNS",
    "DEVICE_PATTERNS",
    "OS_PATTERNS",
    "REFERRER_SOURCES",
    # Models
    "DEFAULT_CONFIG",
    "DeviceType",
    "EventType",
    "GeoHint",
    "NormalizeInput",
    "NormalizeOutput",
    "NormalizerConfig",
    "ParsedUserAgent",
    "UTMParams",
    "ValidationResult",
]
