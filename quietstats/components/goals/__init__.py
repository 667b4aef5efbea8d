"""
Goal & funnel matcher component.
"""

from .component import (
    ConversionTracker,
    analyze_funnel,
    group_by_session,
    identify_drop_off_points,
    journey_events,
    match_goal,
    match_pattern,
    match_step,
    trace_journey,
    validate_funnel,
)
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

__all__ = [
    # Matching
    "match_goal",
    "match_pattern",
    "match_step",
    # Conversions
    "ConversionTracker",
    # Funnels
    "analyze_funnel",
    "group_by_session",
    "identify_drop_off_points",
    "journey_events",
    "trace_journey",
    "validate_funnel",
    # Models
    "Attribution",
    "DropOffPoint",
    "Funnel",
    "FunnelReport",
    "FunnelStep",
    "FunnelStepResult",
    "FunnelValidationError",
    "GoalContext",
    "Journey",
    "JourneyEvent",
    # Ports
    "ConvertedMarkerPort",
    "GoalSourcePort",
]
