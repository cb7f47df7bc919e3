# Author: Bradley R. Kinnard — every failure gets the same envelope

"""
Turns AppError, request validation failures and anything unexpected into
the JSON error envelope. Middleware can't raise into these, so it calls
app_error_response directly.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.criticode.config import settings
from src.criticode.core.errors import STATUS_CODES, AppError, ErrorKind
from src.criticode.logging_config import get_request_id

log = logging.getLogger(__name__)

KIND_BY_STATUS = {code: kind for kind, code in STATUS_CODES.items()}


def error_body(
    request: Request,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": error,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
        "method": request.method,
    }
    if details:
        body["details"] = details
    rid = getattr(request.state, "request_id", None) or get_request_id()
    if rid:
        body["requestId"] = rid
    return body


def app_error_response(request: Request, exc: AppError) -> JSONResponse:
    if exc.is_operational:
        log.info(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}")
    else:
        log.error(f"{exc.kind.value} on {request.method} {request.url.path}: {exc.message}", exc_info=exc)

    details = dict(exc.details or {})
    if exc.reason and exc.kind is not ErrorKind.RATE_LIMIT:
        details.setdefault("reason", exc.reason)
    # internals of our own failures stay in the logs in prod
    if exc.kind is ErrorKind.INTERNAL and settings.is_production:
        details = {}

    headers: dict[str, str] = {}
    if exc.kind is ErrorKind.RATE_LIMIT:
        # rate limit fields live at the top level, clients read retryAfter straight off the body
        body = error_body(request, exc.kind.value, exc.message)
        body.update(details)
        headers["Retry-After"] = str(exc.retry_after or 1)
        # headers describe the rejecting class, not the general one
        if "limit" in details:
            headers["RateLimit-Limit"] = str(details["limit"])
        headers["RateLimit-Remaining"] = "0"
        headers["RateLimit-Reset"] = str(exc.retry_after or 1)
    else:
        body = error_body(request, exc.kind.value, exc.message, details)
    if exc.kind is ErrorKind.AUTHENTICATION:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(status_code=exc.status_code, content=body, headers=headers or None)


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    return app_error_response(request, exc)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """pydantic's 422 becomes our 400 with one entry per bad field"""
    errors = [
        {
            # drop the leading "body"/"query" so the field name reads like the payload key
            "field": ".".join(str(p) for p in err.get("loc", ())[1:]) or "request",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    log.info(f"request validation failed on {request.method} {request.url.path}: {len(errors)} problem(s)")
    body = error_body(
        request,
        ErrorKind.VALIDATION.value,
        "Please check your input and try again",
        {"errors": errors},
    )
    return JSONResponse(status_code=400, content=body)


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """unknown routes, wrong methods. same envelope as everything else"""
    kind = KIND_BY_STATUS.get(exc.status_code)
    if exc.status_code == 404:
        message = f"Route {request.method} {request.url.path} not found"
    else:
        message = str(exc.detail)
    body = error_body(request, kind.value if kind else "HTTPError", message)
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    log.error(f"unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}", exc_info=exc)

    if settings.is_production:
        body = error_body(request, ErrorKind.INTERNAL.value, "An unexpected error occurred")
    else:
        body = error_body(request, ErrorKind.INTERNAL.value, str(exc) or type(exc).__name__)
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=500, content=body)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected)
