"""Problem+JSON utilities and global exception handlers.

Defines the RFC7807 media type and handler callables that produce
application/problem+json responses for every error leaving the API.
"""

from __future__ import annotations

import logging
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from draftsync.logic.errors import DraftSyncError, problem_for

PROBLEM_MEDIA_TYPE = "application/problem+json"

logger = logging.getLogger(__name__)


async def handle_draftsync_error(request: Request, exc: DraftSyncError) -> JSONResponse:  # noqa: D401
    headers = {"Retry-After": "3"} if exc.retryable else None
    return JSONResponse(
        problem_for(exc),
        status_code=exc.status,
        media_type=PROBLEM_MEDIA_TYPE,
        headers=headers,
    )


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:  # noqa: D401
    status_code = int(getattr(exc, "status_code", 500) or 500)
    if isinstance(exc.detail, dict):
        detail = exc.detail
    else:
        detail = {
            "title": "Error",
            "status": status_code,
            "detail": str(exc.detail or ""),
        }
    headers = getattr(exc, "headers", None)
    return JSONResponse(
        detail,
        status_code=status_code,
        media_type=PROBLEM_MEDIA_TYPE,
        headers=dict(headers) if isinstance(headers, dict) else None,
    )


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: D401
    logger.info(
        "validation_422 route=%s method=%s errors_cnt=%s",
        request.url.path,
        request.method,
        len(exc.errors()),
    )
    problem = {
        "title": "Invalid Request",
        "status": 422,
        "detail": "Request validation failed",
        "message": "Request validation failed",
        "code": "REQUEST_SCHEMA_MISMATCH",
        "errors": [
            {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
            for e in exc.errors()
        ],
    }
    return JSONResponse(problem, status_code=422, media_type=PROBLEM_MEDIA_TYPE)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:  # noqa: D401
    logger.error("unexpected_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        {"title": "Internal Server Error", "status": 500, "code": "INTERNAL_ERROR"},
        status_code=500,
        media_type=PROBLEM_MEDIA_TYPE,
    )


__all__ = [
    "PROBLEM_MEDIA_TYPE",
    "handle_draftsync_error",
    "handle_http_exception",
    "handle_request_validation_error",
    "handle_unexpected_error",
]
