"""
Goal & funnel matcher models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# --- Validation Error ---


@dataclass(frozen=True)
class FunnelValidationError:
    """Funnel definition error."""

    code: str
    message: str
    field_name: str | None = None


# --- Match Context ---


@dataclass(frozen=True)
class GoalContext:
    """What a goal is evaluated against: one page view or event in a session."""

    path: str | None = None
    event_name: str | None = None
    session_duration_minutes: float | None = None


@dataclass(frozen=True)
class Attribution:
    """Traffic-source fields copied onto conversions."""

    referrer_source: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None


# --- Funnels ---


@dataclass(frozen=True)
class FunnelStep:
    """
    One goal-like condition in a funnel.

    For pageview steps with match_type "exact", "*" in the pattern is a
    wildcard (e.g. "/products/*").
    """

    name: str
    type: str = "pageview"
    pattern: str = ""
    match_type: str = "exact"


@dataclass(frozen=True)
class Funnel:
    """Ordered steps, optionally bounded by a completion window."""

    name: str
    steps: tuple[FunnelStep, ...]
    window_ms: int | None = None


@dataclass(frozen=True)
class JourneyEvent:
    """A page view or custom event placed on a session timeline."""

    visitor_id: str
    session_id: str
    timestamp: datetime
    path: str | None = None
    event_name: str | None = None


@dataclass(frozen=True)
class Journey:
    """How far one session progressed through a funnel."""

    visitor_id: str
    session_id: str
    steps_completed: int
    step_timestamps: tuple[datetime, ...] = ()

    def completion_time_ms(self, total_steps: int) -> int | None:
        if self.steps_completed < total_steps or len(self.step_timestamps) < 2:
            return None
        delta = self.step_timestamps[-1] - self.step_timestamps[0]
        return int(delta.total_seconds() * 1000)


@dataclass(frozen=True)
class FunnelStepResult:
    """Per-step metrics; drop_off_rate is None for the first step."""

    name: str
    reached: int
    dropped_off: int
    conversion_rate: float
    drop_off_rate: float | None
    avg_time_to_next_ms: float | None = None


@dataclass(frozen=True)
class FunnelReport:
    """Funnel analysis result."""

    name: str
    total_entries: int
    completions: int
    conversion_rate: float
    steps: list[FunnelStepResult] = field(default_factory=list)
    avg_completion_time_ms: float | None = None


@dataclass(frozen=True)
class DropOffPoint:
    """A transition where sessions were lost."""

    from_step: str
    to_step: str
    dropped_off: int
    drop_off_rate: float
