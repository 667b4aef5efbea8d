"""
Goal & funnel matcher component.

Key behaviors:
- match_pattern: exact (case-sensitive), contains (substring), regex (search)
- An invalid regex is logged and treated as no match; it never raises
- Funnel steps must be matched in order within one (visitor, session)
- Conversions are recorded at most once per session and goal

Funnel metrics:
- conversion_rate[i] = reached[i] / reached[0] * 100
- drop_off_rate[i] = (reached[i-1] - reached[i]) / reached[i-1] * 100
- the first step has no drop-off rate
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime
from functools import lru_cache
from typing import Any

from quietstats.core.entities import Conversion, CustomEvent, PageView

from .models import (
    Attribution,
    DropOffPoint,
    Funnel,
    FunnelReport,
    FunnelStep,
    FunnelStepResult,
    FunnelValidationError,
    GoalContext,
    Journey,
    JourneyEvent,
)
from .ports import ConvertedMarkerPort, GoalSourcePort

logger = logging.getLogger(__name__)

MATCH_TYPES = ("exact", "contains", "regex")


# --- Pattern Matching ---


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error:
        logger.warning("Invalid goal regex %r; treating as no match", pattern)
        return None


def match_pattern(pattern: str | None, value: str | None, match_type: str = "exact") -> bool:
    """
    Match a value against a goal pattern.

    Empty pattern or value never matches. Unknown match types fall back
    to exact.
    """
    if not pattern or not value:
        return False

    if match_type == "contains":
        return pattern in value
    if match_type == "regex":
        compiled = _compile(pattern)
        return bool(compiled and compiled.search(value))
    return value == pattern


def match_goal(goal: Any, context: GoalContext) -> bool:
    """Evaluate a goal (entity or goal-like object) against one context."""
    if not getattr(goal, "is_active", True):
        return False

    goal_type = getattr(goal, "type", None)
    match_type = getattr(goal, "match_type", "exact")

    if goal_type == "pageview":
        return match_pattern(goal.pattern, context.path, match_type)

    if goal_type == "event":
        if not context.event_name:
            return False
        return match_pattern(goal.pattern, context.event_name, match_type)

    if goal_type == "duration":
        threshold = getattr(goal, "duration_minutes", None)
        if threshold is None or context.session_duration_minutes is None:
            return False
        return context.session_duration_minutes >= threshold

    return False


# --- Conversions ---


class ConversionTracker:
    """
    Turns goal matches into conversions, once per (site, session, goal).

    check() only proposes conversions. A conversion counts against the
    session once commit() is called, after it has been saved, so a failed
    save can be retried.
    """

    def __init__(self, goals: GoalSourcePort, marker: ConvertedMarkerPort) -> None:
        self._goals = goals
        self._marker = marker

    def check(
        self,
        site_id: str,
        visitor_id: str,
        session_id: str,
        context: GoalContext,
        now: datetime,
        attribution: Attribution | None = None,
    ) -> list[Conversion]:
        attribution = attribution or Attribution()
        conversions: list[Conversion] = []

        for goal in self._goals.list_active(site_id):
            if self._marker.has_converted(site_id, session_id, goal.id):
                continue
            if not match_goal(goal, context):
                continue

            conversions.append(
                Conversion(
                    site_id=site_id,
                    goal_id=goal.id,
                    visitor_id=visitor_id,
                    session_id=session_id,
                    value=goal.value,
                    path=context.path or "/",
                    referrer_source=attribution.referrer_source,
                    utm_source=attribution.utm_source,
                    utm_medium=attribution.utm_medium,
                    utm_campaign=attribution.utm_campaign,
                    timestamp=now,
                )
            )

        return conversions

    def commit(self, conversion: Conversion) -> None:
        """Mark a saved conversion so the session cannot convert that goal again."""
        self._marker.mark_converted(conversion.site_id, conversion.session_id, conversion.goal_id)


# --- Funnels ---


def _glob(pattern: str) -> re.Pattern[str]:
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


def match_step(step: FunnelStep, event: JourneyEvent) -> bool:
    """A funnel step is a goal-like condition; "*" globs exact path patterns."""
    if step.type == "event":
        return bool(event.event_name) and match_pattern(
            step.pattern, event.event_name, step.match_type
        )
    if event.event_name is not None:
        return False
    if step.match_type == "exact" and "*" in step.pattern:
        return bool(event.path and _glob(step.pattern).match(event.path))
    return match_pattern(step.pattern, event.path, step.match_type)


def validate_funnel(funnel: Funnel) -> list[FunnelValidationError]:
    errors: list[FunnelValidationError] = []

    if not funnel.name.strip():
        errors.append(FunnelValidationError("name_required", "Funnel name is required", "name"))
    if len(funnel.steps) < 2:
        errors.append(
            FunnelValidationError("too_few_steps", "Funnel must have at least 2 steps", "steps")
        )
    if funnel.window_ms is not None and funnel.window_ms <= 0:
        errors.append(
            FunnelValidationError("invalid_window", "Window must be positive", "window_ms")
        )

    for index, step in enumerate(funnel.steps):
        if not step.pattern:
            errors.append(
                FunnelValidationError(
                    "pattern_required", f"Step {index + 1} needs a pattern", f"steps[{index}]"
                )
            )
        if step.type not in ("pageview", "event"):
            errors.append(
                FunnelValidationError(
                    "invalid_step_type", f"Unknown step type: {step.type}", f"steps[{index}]"
                )
            )
        if step.match_type not in MATCH_TYPES:
            errors.append(
                FunnelValidationError(
                    "invalid_match_type",
                    f"Unknown match type: {step.match_type}",
                    f"steps[{index}]",
                )
            )

    return errors


def journey_events(
    page_views: Iterable[PageView] = (),
    events: Iterable[CustomEvent] = (),
) -> list[JourneyEvent]:
    """Flatten stored page views and custom events into journey events."""
    flattened = [
        JourneyEvent(pv.visitor_id, pv.session_id, pv.timestamp, path=pv.path)
        for pv in page_views
    ]
    flattened.extend(
        JourneyEvent(e.visitor_id, e.session_id, e.timestamp, path=e.path, event_name=e.name)
        for e in events
    )
    return flattened


def group_by_session(events: Iterable[JourneyEvent]) -> dict[tuple[str, str], list[JourneyEvent]]:
    """Events keyed by (visitor_id, session_id), each list ordered by timestamp."""
    grouped: dict[tuple[str, str], list[JourneyEvent]] = {}
    for event in events:
        grouped.setdefault((event.visitor_id, event.session_id), []).append(event)
    for timeline in grouped.values():
        timeline.sort(key=lambda e: e.timestamp)
    return grouped


def trace_journey(
    funnel: Funnel, visitor_id: str, session_id: str, timeline: list[JourneyEvent]
) -> Journey:
    """Walk one ordered session timeline through the funnel steps."""
    stamps: list[datetime] = []
    index = 0
    started: datetime | None = None

    for event in timeline:
        if index >= len(funnel.steps):
            break
        if started is not None and funnel.window_ms:
            elapsed_ms = (event.timestamp - started).total_seconds() * 1000
            if elapsed_ms > funnel.window_ms:
                break

        if match_step(funnel.steps[index], event):
            stamps.append(event.timestamp)
            if index == 0:
                started = event.timestamp
            index += 1

    return Journey(
        visitor_id=visitor_id,
        session_id=session_id,
        steps_completed=index,
        step_timestamps=tuple(stamps),
    )


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def analyze_funnel(funnel: Funnel, events: Iterable[JourneyEvent]) -> FunnelReport:
    """Per-step reach, conversion and drop-off across all sessions."""
    journeys = [
        trace_journey(funnel, visitor_id, session_id, timeline)
        for (visitor_id, session_id), timeline in group_by_session(events).items()
    ]
    journeys = [j for j in journeys if j.steps_completed > 0]
    total_steps = len(funnel.steps)

    reached = [sum(1 for j in journeys if j.steps_completed > i) for i in range(total_steps)]
    entries = reached[0] if reached else 0

    results: list[FunnelStepResult] = []
    for i, step in enumerate(funnel.steps):
        gaps = [
            (j.step_timestamps[i + 1] - j.step_timestamps[i]).total_seconds() * 1000
            for j in journeys
            if len(j.step_timestamps) > i + 1
        ]
        if i == 0:
            dropped, drop_rate = 0, None
        else:
            dropped = reached[i - 1] - reached[i]
            drop_rate = _rate(dropped, reached[i - 1])
        results.append(
            FunnelStepResult(
                name=step.name,
                reached=reached[i],
                dropped_off=dropped,
                conversion_rate=_rate(reached[i], entries),
                drop_off_rate=drop_rate,
                avg_time_to_next_ms=_mean(gaps),
            )
        )

    completion_times: list[float] = []
    for journey in journeys:
        elapsed = journey.completion_time_ms(total_steps)
        if elapsed is not None:
            completion_times.append(float(elapsed))
    completions = reached[-1] if reached else 0

    return FunnelReport(
        name=funnel.name,
        total_entries=entries,
        completions=completions,
        conversion_rate=_rate(completions, entries),
        steps=results,
        avg_completion_time_ms=_mean(completion_times),
    )


def identify_drop_off_points(report: FunnelReport) -> list[DropOffPoint]:
    """Transitions that lost sessions, largest loss first."""
    points = [
        DropOffPoint(
            from_step=report.steps[i - 1].name,
            to_step=step.name,
            dropped_off=step.dropped_off,
            drop_off_rate=step.drop_off_rate or 0.0,
        )
        for i, step in enumerate(report.steps)
        if i > 0 and step.dropped_off > 0
    ]
    return sorted(points, key=lambda p: (-p.dropped_off, -p.drop_off_rate))
