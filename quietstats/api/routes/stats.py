"""
Stats API routes.

Read-side endpoints for one site:
- GET  /api/sites/{site_id}/timeseries  gap-filled series
- GET  /api/sites/{site_id}/stats       totals and derived metrics
- GET  /api/sites/{site_id}/realtime    active visitors in the trailing window
- POST /api/sites/{site_id}/funnel      funnel report with drop-off points
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from quietstats.api.deps import get_stats_service
from quietstats.components import normalizer
from quietstats.components.goals import Funnel, FunnelStep
from quietstats.core.ports.storage import StorageError
from quietstats.core.services.stats import StatsService

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Request/Response Models ---


class TimeSeriesPointModel(BaseModel):
    date: str
    views: int
    visitors: int
    sessions: int


class TimeSeriesResponse(BaseModel):
    """Time series response model."""

    period: str
    time_series: list[TimeSeriesPointModel] = Field(alias="timeSeries")

    model_config = ConfigDict(populate_by_name=True)


class FunnelStepRequest(BaseModel):
    name: str = ""
    type: str = "pageview"
    pattern: str = ""
    match_type: str = Field(default="exact", alias="matchType")

    model_config = ConfigDict(populate_by_name=True)


class FunnelRequest(BaseModel):
    """Funnel definition plus an optional date range."""

    name: str = ""
    steps: list[FunnelStepRequest] = Field(default_factory=list)
    window_ms: int | None = Field(default=None, alias="windowMs")
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True)


# --- Helpers ---


def require_site_id(site_id: str) -> str:
    if not normalizer.validate_site_id(site_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "ok": False,
                "errors": [
                    {"code": "invalid_site_id", "message": "Invalid siteId", "field": "siteId"}
                ],
            },
        )
    return site_id


def storage_unavailable(e: StorageError) -> HTTPException:
    logger.error("Storage unavailable while querying stats: %s", e)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Storage unavailable",
        headers={"Retry-After": "5"},
    )


# --- Routes ---


@router.get("/{site_id}/timeseries", response_model=TimeSeriesResponse)
def get_timeseries(
    site_id: str,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    period: str | None = Query(None, description="minute, hour, day or month"),
    service: StatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    """Views, visitors and sessions per bucket, zero-filled."""
    require_site_id(site_id)
    params = {"startDate": start_date, "endDate": end_date}
    try:
        result = service.timeseries(site_id, params, period=period)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "ok": False,
                "errors": [{"code": "invalid_period", "message": str(e), "field": "period"}],
            },
        ) from e
    except StorageError as e:
        raise storage_unavailable(e) from e
    return result.as_dict()


@router.get("/{site_id}/stats")
def get_stats(
    site_id: str,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    service: StatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    """Totals for the range with change against the previous range."""
    require_site_id(site_id)
    params = {"startDate": start_date, "endDate": end_date}
    try:
        rng = service.date_range(params)
        totals = service.totals(site_id, params)
    except StorageError as e:
        raise storage_unavailable(e) from e
    return {
        **totals.as_dict(),
        "startDate": rng.start.isoformat(),
        "endDate": rng.end.isoformat(),
    }


@router.get("/{site_id}/realtime")
def get_realtime(
    site_id: str,
    minutes: int | None = Query(None, ge=1, le=60),
    service: StatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    """Active visitors over the last few minutes."""
    require_site_id(site_id)
    try:
        return service.realtime(site_id, minutes).as_dict()
    except StorageError as e:
        raise storage_unavailable(e) from e


@router.post("/{site_id}/funnel")
def post_funnel(
    site_id: str,
    body: FunnelRequest,
    service: StatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    """Ordered-step funnel over the range."""
    require_site_id(site_id)
    funnel = Funnel(
        name=body.name,
        steps=tuple(
            FunnelStep(name=s.name, type=s.type, pattern=s.pattern, match_type=s.match_type)
            for s in body.steps
        ),
        window_ms=body.window_ms,
    )
    params = {"startDate": body.start_date, "endDate": body.end_date}

    try:
        result = service.funnel(site_id, funnel, params)
    except StorageError as e:
        raise storage_unavailable(e) from e

    report = result.report
    if result.errors or report is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "ok": False,
                "errors": [
                    {"code": e.code, "message": e.message, "field": e.field_name}
                    for e in result.errors
                ],
            },
        )

    return {
        "name": report.name,
        "totalEntries": report.total_entries,
        "completions": report.completions,
        "conversionRate": report.conversion_rate,
        "avgCompletionTime": report.avg_completion_time_ms,
        "steps": [
            {
                "name": s.name,
                "reached": s.reached,
                "droppedOff": s.dropped_off,
                "conversionRate": s.conversion_rate,
                "dropOffRate": s.drop_off_rate,
                "avgTimeToNext": s.avg_time_to_next_ms,
            }
            for s in report.steps
        ],
        "dropOffs": [
            {
                "from": d.from_step,
                "to": d.to_step,
                "droppedOff": d.dropped_off,
                "dropOffRate": d.drop_off_rate,
            }
            for d in result.drop_offs
        ],
    }
