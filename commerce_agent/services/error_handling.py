from __future__ import annotations

import logging
import traceback
import uuid
from typing import Tuple

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..models import ErrorResponse
from .errors import AssistantError

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"Invalid request: {location} {first.get('msg', '')}".strip()


def map_exception_to_error(exc: Exception) -> Tuple[str, str, int]:
    """Return error code, client-facing message and HTTP status for ``exc``.

    Client errors keep their own 4xx status; every server-side failure
    (upstream, configuration, unexpected) is answered with 500.
    """

    if isinstance(exc, RequestValidationError):
        return ("BAD_REQUEST", _validation_message(exc), status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, AssistantError):
        status_code = exc.http_status
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return (exc.code, str(exc) or exc.reason, status_code)

    if isinstance(exc, HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        code = "BAD_REQUEST" if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR else "INTERNAL_ERROR"
        return (code, detail, exc.status_code)

    return ("INTERNAL_ERROR", str(exc) or exc.__class__.__name__, status.HTTP_500_INTERNAL_SERVER_ERROR)


def build_error_response(
    *,
    exc: Exception,
    message: str,
    status_code: int,
    include_stack: bool,
) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)) if include_stack else None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def new_trace_id() -> str:
    return uuid.uuid4().hex


def log_exception(
    *,
    request: Request,
    exc: Exception,
    trace_id: str,
    error_code: str,
    handled: bool,
) -> None:
    log_message = "Handled application error" if handled else "Unhandled application error"
    log_method = logger.warning if handled else logger.error
    log_method(
        "%s trace_id=%s path=%s code=%s reason=%s",
        log_message,
        trace_id,
        request.url.path,
        error_code,
        getattr(exc, "reason", None) or exc.__class__.__name__,
        exc_info=exc if not handled else None,
    )
    if handled:
        logger.debug(
            "Full traceback for trace_id=%s\n%s",
            trace_id,
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
