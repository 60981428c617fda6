"""JSON error bodies for the operator API.

Every failure leaves the app as ``{code, message, details, request_id}``.
The tenant gateway builds its own envelope and never reaches these handlers.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ispsync.logging import get_logger

logger = get_logger(__name__)

_SCALARS = (str, int, float, bool, type(None))


def _json_safe(value):
    """Validation errors echo the rejected input; make it serialisable."""
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    return str(value)


def error_response(
    request: Request, status_code: int, code: str, message: str, details=None
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or "unknown"
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "details": details,
            "request_id": str(request_id),
        },
    )


def _split_detail(status_code: int, detail) -> tuple[str, str, object]:
    # Services raise HTTPException with either a message or a
    # {code, message, details} dict.
    if isinstance(detail, dict):
        return (
            detail.get("code", f"http_{status_code}"),
            detail.get("message", "Request failed"),
            detail.get("details"),
        )
    if isinstance(detail, str) and detail:
        return f"http_{status_code}", detail, None
    return f"http_{status_code}", "Request failed", detail


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code, message, details = _split_detail(exc.status_code, exc.detail)
    response = error_response(request, exc.status_code, code, message, details)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {key: _json_safe(val) for key, val in error.items() if key != "ctx"}
        for error in exc.errors()
    ]
    return error_response(request, 422, "validation_error", "Validation error", errors)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "UNHANDLED_ERROR method=%s path=%s request_id=%s",
        request.method,
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return error_response(request, 500, "internal_error", "Internal server error")


def register_error_handlers(app) -> None:
    # fastapi.HTTPException subclasses the starlette one.
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
