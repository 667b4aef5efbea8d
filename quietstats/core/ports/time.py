"""
Time port.

All internal timestamps are timezone-aware UTC. Collection and rollup code
takes the clock through this port so tests can pin it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
