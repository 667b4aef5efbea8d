"""
Identity resolver models.
"""

from __future__ import annotations

from dataclasses import dataclass

# --- Configuration ---


@dataclass(frozen=True)
class IdentityConfig:
    """Identity configuration."""

    salt_prefix: str = "analytics"

    # Lowercase substrings; any hit marks the user agent as automated
    bot_signatures: tuple[str, ...] = (
        "bot",
        "crawl",
        "spider",
        "slurp",
        "bingpreview",
        "facebookexternalhit",
        "twitterbot",
        "linkedinbot",
        "ahrefsbot",
        "semrushbot",
        "mj12bot",
        "dotbot",
        "headlesschrome",
        "phantomjs",
        "puppeteer",
        "playwright",
        "lighthouse",
        "slackbot",
        "whatsapp",
        "telegrambot",
        "discordbot",
        "python-requests",
        "curl/",
        "wget/",
    )


DEFAULT_CONFIG = IdentityConfig()


# --- Output Models ---


@dataclass(frozen=True)
class Identity:
    """Resolved pseudonymous identity for one request."""

    visitor_id: str
    salt: str
    is_bot: bool
    is_private_ip: bool
