"""
Collection API routes.

Public endpoint the tracking script posts to (POST /collect, alias /t).

Responses:
- 204: recorded, or intentionally not tracked (DNT/GPC, bot, private IP)
- 400: {"ok": false, "errors": [{code, message, field}]}
- 503: storage unavailable; the client may retry after Retry-After seconds
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from quietstats.api.deps import get_collect_service
from quietstats.core.ports.storage import StorageError
from quietstats.core.services.collect import CollectError, CollectService, CollectStatus

logger = logging.getLogger(__name__)

router = APIRouter()

RETRY_AFTER_SECONDS = 5


# --- Helpers ---


def get_client_key(request: Request) -> str:
    """Client IP: first X-Forwarded-For entry, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def error_response(errors: list[CollectError]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "errors": [
                {"code": e.code, "message": e.message, "field": e.field_name} for e in errors
            ],
        },
    )


async def read_payload(request: Request) -> dict[str, Any] | None:
    """
    Decode the JSON body.

    sendBeacon posts text/plain, so the content type is not checked.
    """
    raw = await request.body()
    try:
        payload = json.loads(raw or b"null")
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


# --- Routes ---


@router.post("/collect", status_code=204, responses={400: {}, 503: {}})
@router.post("/t", status_code=204, responses={400: {}, 503: {}}, include_in_schema=False)
async def collect(
    request: Request,
    service: CollectService = Depends(get_collect_service),
) -> Response:
    """Record a page view, custom event or outbound click."""
    payload = await read_payload(request)
    if payload is None:
        return error_response(
            [CollectError(code="invalid_json", message="Body must be a JSON object")]
        )

    try:
        result = await run_in_threadpool(
            service.collect,
            payload,
            get_client_key(request),
            request.headers.get("user-agent"),
            dict(request.headers),
        )
    except StorageError as e:
        logger.error("Storage unavailable while collecting: %s", e)
        return JSONResponse(
            status_code=503,
            content={"ok": False, "errors": [{"code": "storage_unavailable"}]},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )

    if result.status is CollectStatus.REJECTED:
        return error_response(result.errors)

    return Response(status_code=204)
