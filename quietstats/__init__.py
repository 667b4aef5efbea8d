"""quietstats: cookieless, privacy-focused web analytics core."""

__version__ = "0.1.0"
