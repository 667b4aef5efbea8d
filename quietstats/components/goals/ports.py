"""
Goal & funnel matcher port definitions.
"""

from __future__ import annotations

from typing import Protocol

from quietstats.core.entities import Goal


class GoalSourcePort(Protocol):
    """Read-only goal definitions."""

    def list_active(self, site_id: str) -> list[Goal]:
        """Active goals for a site."""
        ...


class ConvertedMarkerPort(Protocol):
    """Remembers which goals a session has already converted."""

    def has_converted(self, site_id: str, session_id: str, goal_id: str) -> bool:
        ...

    def mark_converted(self, site_id: str, session_id: str, goal_id: str) -> None:
        ...
