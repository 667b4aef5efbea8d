"""
Event normalizer component - user agent, referrer and URL parsing.

Turns raw collection payload fields into the labels stored on page views
and sessions.

Key behaviors:
- Detection tables are ordered (pattern, label) pairs, first match wins
- Unparseable input resolves to "Unknown", "Direct" or "/" and never raises
- Payload validation reports messages instead of raising

Invariants:
- Every function is pure; calling it twice on the same input gives the same result
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import ParseResult, parse_qsl, unquote, urlparse

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

# --- Detection Tables ---

# Tablet UAs frequently carry a "Mobile" token, so tablets are checked first.
DEVICE_PATTERNS: tuple[tuple[re.Pattern[str], DeviceType], ...] = (
    (re.compile(r"ipad|tablet|playbook|silk|android(?!.*mobile)", re.I), DeviceType.TABLET),
    (
        re.compile(r"mobile|iphone|ipod|android|blackberry|iemobile|opera mini", re.I),
        DeviceType.MOBILE,
    ),
)

# Chromium rebrands embed a Chrome token, so vendor tokens come before "chrome".
BROWSER_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bdia/", re.I), "Dia"),
    (re.compile(r"\barc/", re.I), "Arc"),
    (re.compile(r"edg(e|a|ios)?/", re.I), "Edge"),
    (re.compile(r"opr/|opera", re.I), "Opera"),
    (re.compile(r"samsungbrowser", re.I), "Samsung Internet"),
    (re.compile(r"ucbrowser", re.I), "UC Browser"),
    (re.compile(r"brave", re.I), "Brave"),
    (re.compile(r"vivaldi", re.I), "Vivaldi"),
    (re.compile(r"yabrowser", re.I), "Yandex"),
    (re.compile(r"whale/", re.I), "Whale"),
    (re.compile(r"ddg/|duckduckgo/", re.I), "DuckDuckGo"),
    (re.compile(r"firefox|fxios", re.I), "Firefox"),
    (re.compile(r"chrome|chromium|crios", re.I), "Chrome"),
    (re.compile(r"safari", re.I), "Safari"),
    (re.compile(r"trident|msie", re.I), "IE"),
)

# iOS UAs contain "like Mac OS X", so iOS precedes macOS. "cros" is a whole
# word and checked last; it also occurs inside "Microsoft".
OS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"iphone|ipad|ipod", re.I), "iOS"),
    (re.compile(r"android", re.I), "Android"),
    (re.compile(r"windows", re.I), "Windows"),
    (re.compile(r"mac os x|macintosh", re.I), "macOS"),
    (re.compile(r"linux", re.I), "Linux"),
    (re.compile(r"\bcros\b", re.I), "Chrome OS"),
)

BROWSER_FAMILIES: dict[str, str] = {
    "Chrome": "Chromium",
    "Edge": "Chromium",
    "Opera": "Chromium",
    "Brave": "Chromium",
    "Vivaldi": "Chromium",
    "Arc": "Chromium",
    "Dia": "Chromium",
    "Samsung Internet": "Chromium",
    "Yandex": "Chromium",
    "Whale": "Chromium",
    "Firefox": "Firefox",
    "Safari": "Safari",
    "DuckDuckGo": "Safari",
}


def _host_contains(*needles: str) -> Callable[[str], bool]:
    return lambda host: any(n in host for n in needles)


def _host_is(*domains: str) -> Callable[[str], bool]:
    return lambda host: any(host == d or host.endswith("." + d) for d in domains)


# Reddit sits ahead of the t.co shortener because "reddit.com" contains "t.co".
REFERRER_SOURCES: tuple[tuple[Callable[[str], bool], str], ...] = (
    (lambda host: "google." in host and "mail.google" not in host, "Google"),
    (_host_contains("bing."), "Bing"),
    (_host_contains("duckduckgo"), "DuckDuckGo"),
    (_host_contains("yahoo."), "Yahoo"),
    (_host_contains("baidu."), "Baidu"),
    (_host_contains("yandex."), "Yandex"),
    (_host_contains("reddit"), "Reddit"),
    (_host_is("t.co"), "Twitter"),
    (_host_contains("facebook", "fb.com"), "Facebook"),
    (_host_contains("instagram"), "Instagram"),
    (lambda host: "twitter" in host or _host_is("x.com")(host), "Twitter"),
    (_host_contains("linkedin", "lnkd.in"), "LinkedIn"),
    (_host_contains("youtube", "youtu.be"), "YouTube"),
    (_host_contains("pinterest"), "Pinterest"),
    (_host_contains("tiktok"), "TikTok"),
    (_host_contains("github"), "GitHub"),
    (_host_contains("ycombinator"), "Hacker News"),
    (_host_contains("mail.google"), "Gmail"),
    (_host_contains("outlook"), "Outlook"),
)

COUNTRY_NAMES: dict[str, str] = {
    "AR": "Argentina",
    "AT": "Austria",
    "AU": "Australia",
    "BE": "Belgium",
    "BR": "Brazil",
    "CA": "Canada",
    "CH": "Switzerland",
    "CN": "China",
    "CZ": "Czech Republic",
    "DE": "Germany",
    "DK": "Denmark",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "GB": "United Kingdom",
    "GR": "Greece",
    "HK": "Hong Kong",
    "IE": "Ireland",
    "IL": "Israel",
    "IN": "India",
    "IT": "Italy",
    "JP": "Japan",
    "KR": "South Korea",
    "MX": "Mexico",
    "NL": "Netherlands",
    "NO": "Norway",
    "NZ": "New Zealand",
    "PL": "Poland",
    "PT": "Portugal",
    "RU": "Russia",
    "SE": "Sweden",
    "SG": "Singapore",
    "TR": "Turkey",
    "UA": "Ukraine",
    "US": "United States",
    "ZA": "South Africa",
}

COUNTRY_HEADERS: tuple[str, ...] = ("cloudfront-viewer-country", "x-country-code", "cf-ipcountry")

SITE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

UTM_FIELDS = ("source", "medium", "campaign", "term", "content")


# --- User Agent ---


def _first_match(ua: str, table: tuple[tuple[re.Pattern[str], Any], ...], default: Any) -> Any:
    for pattern, label in table:
        if pattern.search(ua):
            return label
    return default


def parse_user_agent(ua: str | None) -> ParsedUserAgent:
    """
    Classify a user agent into browser, device type and OS.

    Empty input yields Unknown/Desktop/Unknown.
    """
    if not ua or ua.strip().lower() == "unknown":
        return ParsedUserAgent()

    return ParsedUserAgent(
        browser=_first_match(ua, BROWSER_PATTERNS, "Unknown"),
        device_type=_first_match(ua, DEVICE_PATTERNS, DeviceType.DESKTOP),
        os=_first_match(ua, OS_PATTERNS, "Unknown"),
    )


def get_browser_family(browser: str) -> str:
    """Map a browser label to its engine family (Chromium, Firefox, Safari, Other)."""
    return BROWSER_FAMILIES.get(browser, "Other")


# --- Referrer ---


def _hostname(url: str) -> str | None:
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    return parsed.hostname


def parse_referrer_source(referrer: str | None) -> str:
    """
    Label the traffic source behind a referrer URL.

    Returns "Direct" for an empty referrer, "Unknown" when no host can be
    parsed, a known property name when the host matches the source table,
    otherwise the hostname without a leading "www.".
    """
    if not referrer or not referrer.strip():
        return "Direct"

    host = _hostname(referrer)
    if not host:
        return "Unknown"

    for predicate, label in REFERRER_SOURCES:
        if predicate(host):
            return label

    return host[4:] if host.startswith("www.") else host


# --- URL ---


def _parse_absolute(url: str | None) -> ParseResult | None:
    if not url:
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return parsed


def extract_path(url: str | None, include_query: bool = False, include_hash: bool = False) -> str:
    """
    Return the decoded path of a URL, "/" for the root or an unparseable URL.

    Query string and fragment are appended only when requested.
    """
    parsed = _parse_absolute(url)
    if parsed is None:
        return "/"

    path = unquote(parsed.path) or "/"
    if include_query and parsed.query:
        path = f"{path}?{parsed.query}"
    if include_hash and parsed.fragment:
        path = f"{path}#{parsed.fragment}"
    return path


def extract_hostname(url: str | None) -> str:
    """Return the lowercase hostname of a URL, or "" when absent."""
    parsed = _parse_absolute(url)
    if parsed is None:
        return ""
    return parsed.hostname or ""


def parse_utm_params(url: str | None) -> UTMParams:
    """
    Extract utm_* parameters from a URL.

    Parameter names match case-insensitively; values keep their case and
    are percent-decoded. The first occurrence of a parameter wins.
    """
    if not url:
        return UTMParams()
    try:
        query = urlparse(url).query
    except ValueError:
        return UTMParams()

    found: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        name = key.lower()
        if not name.startswith("utm_"):
            continue
        short = name[4:]
        if short in UTM_FIELDS and short not in found and value:
            found[short] = value

    return UTMParams(**found)


# --- Headers ---


def _lower_keys(headers: Mapping[str, Any] | None) -> dict[str, Any]:
    return {str(k).lower(): v for k, v in (headers or {}).items()}


def country_from_headers(headers: Mapping[str, Any] | None) -> GeoHint | None:
    """
    Read the visitor country from CDN/edge headers.

    "XX" marks an unknown country and is treated as absent.
    """
    lowered = _lower_keys(headers)
    for name in COUNTRY_HEADERS:
        code = str(lowered.get(name) or "").strip().upper()
        if code and code != "XX":
            return GeoHint(country_code=code, country=COUNTRY_NAMES.get(code, code))
    return None


# --- Validation ---


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_event_type(value: Any) -> EventType | None:
    """Map a wire event type onto EventType, None when unrecognized."""
    try:
        return EventType(str(value).lower())
    except ValueError:
        return None


def validate_url(url: Any) -> bool:
    """True for absolute http(s) URLs."""
    if not isinstance(url, str):
        return False
    parsed = _parse_absolute(url)
    return parsed is not None and parsed.scheme in ("http", "https")


def validate_collect_payload(payload: Mapping[str, Any] | None) -> ValidationResult:
    """
    Check a collection payload for site id, event type and a parseable URL.

    Accepts short wire keys (s, e, u) or long names (siteId, eventType, url).
    """
    payload = payload or {}
    errors: list[str] = []

    if _pick(payload, "s", "siteId") is None:
        errors.append("Missing siteId (s)")
    if _pick(payload, "e", "eventType") is None:
        errors.append("Missing event type (e)")

    url = _pick(payload, "u", "url")
    if url is None:
        errors.append("Missing URL (u)")
    elif not isinstance(url, str) or _parse_absolute(url) is None:
        errors.append("Invalid URL format")

    return ValidationResult(valid=not errors, errors=errors)


def validate_site_id(site_id: Any, config: NormalizerConfig = DEFAULT_CONFIG) -> bool:
    """Site ids are 1-100 characters of letters, digits, "_" and "-"."""
    if not isinstance(site_id, str) or not site_id:
        return False
    if len(site_id) > config.max_site_id_length:
        return False
    return bool(SITE_ID_PATTERN.match(site_id))


def validate_event_payload(
    name: Any,
    properties: Mapping[str, Any] | None = None,
    config: NormalizerConfig = DEFAULT_CONFIG,
) -> ValidationResult:
    """Validate a custom event name and its flat property map."""
    errors: list[str] = []

    if not isinstance(name, str) or not name.strip():
        errors.append("Event name is required")
    else:
        if len(name) > config.max_event_name_length:
            errors.append(
                f"Event name must be {config.max_event_name_length} characters or less"
            )
        if name.lower() in config.reserved_event_names:
            errors.append(f"Event name '{name}' is reserved")

    if properties:
        if len(properties) > config.max_properties:
            errors.append(f"Maximum {config.max_properties} properties allowed")
        for key, value in properties.items():
            if isinstance(value, Mapping):
                errors.append(f"Property '{key}' cannot be an object")

    return ValidationResult(valid=not errors, errors=errors)


# --- Component Entry Point ---


def run_normalize(inp: NormalizeInput) -> NormalizeOutput:
    """
    Normalize one collection event.

    A client-supplied browser label overrides the parsed one; some
    Chromium rebrands are only detectable in the page.
    """
    parsed_ua = parse_user_agent(inp.user_agent)
    if inp.browser_override:
        parsed_ua = ParsedUserAgent(
            browser=inp.browser_override,
            device_type=parsed_ua.device_type,
            os=parsed_ua.os,
        )

    return NormalizeOutput(
        path=extract_path(inp.url),
        hostname=extract_hostname(inp.url),
        referrer_source=parse_referrer_source(inp.referrer),
        utm=parse_utm_params(inp.url),
        user_agent=parsed_ua,
        geo=country_from_headers(inp.headers),
    )
