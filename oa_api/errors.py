"""
Error mapping for the HTTP edge.

Every kernel error carries an ``ErrorKind``; this module is the single
place that turns a kind into an HTTP status and the
``{"error": {"code", "message"}}`` body.  A route can move a kind to a
different status with ``status_overrides``; submit keeps FLOW_INACTIVE at
404 while catalog edits report 409, and cancel reports a finished
instance as 409 where decide reports 410.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from oa_kernel.exceptions import ErrorKind, OAKernelError
from oa_kernel.logging_config import get_logger

logger = get_logger("api.errors")

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_ASSIGNED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FLOW_INACTIVE: 404,
    ErrorKind.INSTANCE_TERMINAL: 410,
    ErrorKind.ALREADY_DECIDED: 409,
    ErrorKind.BUSINESS_BUSY: 409,
    ErrorKind.IN_USE: 409,
    ErrorKind.RESOLVE_FAILED: 422,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.INTERNAL: 500,
}

_KIND_BY_HTTP_STATUS = {
    400: ErrorKind.INVALID_INPUT,
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    405: ErrorKind.INVALID_INPUT,
}


def error_response(status: int, kind: ErrorKind, message: str) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(
        status_code=status,
        content={"error": {"code": kind.value, "message": message}},
        headers=headers,
    )


def status_overrides(overrides: Mapping[ErrorKind, int]) -> Callable[[Request], None]:
    """Route dependency that remaps kinds to statuses for that route."""
    frozen = dict(overrides)

    def apply(request: Request) -> None:
        request.state.status_overrides = frozen

    return apply


def status_for(request: Request, kind: ErrorKind) -> int:
    overrides = getattr(request.state, "status_overrides", None) or {}
    return overrides.get(kind, STATUS_BY_KIND.get(kind, 500))


async def kernel_error_handler(request: Request, exc: OAKernelError) -> JSONResponse:
    status = status_for(request, exc.kind)
    log = logger.error if status >= 500 else logger.info
    log(
        "request_failed",
        extra={"error_code": exc.code, "kind": exc.kind.value, "status": status},
    )
    return error_response(status, exc.kind, str(exc))


async def validation_error_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg', 'invalid value')}" if where else first.get("msg")
    else:
        message = "invalid request"
    logger.info("request_invalid", extra={"errors": len(errors)})
    return error_response(400, ErrorKind.INVALID_INPUT, str(message))


async def http_error_handler(
    request: Request, exc: StarletteHTTPException,
) -> JSONResponse:
    kind = _KIND_BY_HTTP_STATUS.get(exc.status_code, ErrorKind.INTERNAL)
    return error_response(exc.status_code, kind, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", exc_info=exc)
    return error_response(500, ErrorKind.INTERNAL, "internal server error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OAKernelError, kernel_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
