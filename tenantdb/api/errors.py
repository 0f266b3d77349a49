# tenantdb/api/errors.py
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantdb.core.errors import TenancyError

logger = logging.getLogger(__name__)

# Env knobs (optional)
_MAX_VALIDATION_ERRORS = int(os.getenv("ERRORS_MAX_VALIDATION_DETAILS", "50"))
_NO_STORE_ERRORS = os.getenv("ERRORS_NO_STORE", "1") == "1"
_SHOW_500_EXCEPTION = os.getenv("ERRORS_SHOW_500_EXCEPTION", "0") == "1"  # dev aid only


def _cid(request: Request) -> str:
    """
    Correlation/request id used across logs and responses.
    Prefer the id assigned by the request-id middleware, then the inbound header.
    """
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or "-"
    )


def error_response(
    request: Request,
    *,
    status_code: int,
    code: Any,
    message: str,
    type_: str,
    details: Optional[List[Dict[str, Any]]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build the shared error envelope."""
    cid = _cid(request)
    body: Dict[str, Any] = {
        "error": {"code": code, "message": message, "type": type_, "correlation_id": cid}
    }
    if details is not None:
        body["error"]["details"] = details

    out_headers = {"x-request-id": cid}
    if _NO_STORE_ERRORS:
        out_headers["Cache-Control"] = "no-store"
    if headers:
        out_headers.update(headers)
    return JSONResponse(status_code=status_code, content=body, headers=out_headers)


def _sanitize_validation_errors(errs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep loc/msg/type only; inputs are never echoed back."""
    return [
        {"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")}
        for e in errs[:_MAX_VALIDATION_ERRORS]
    ]


def tenancy_error_response(request: Request, exc: TenancyError) -> JSONResponse:
    """Log a tenant pipeline failure and render it; also used by the tenant middleware."""
    extra = exc.log_extra()
    extra.update(
        {
            "request_id": _cid(request),
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        }
    )
    if exc.status_code >= 500:
        logger.error(
            "tenancy_error: %s",
            exc.message,
            extra=extra,
            exc_info=exc if exc.__cause__ is not None else None,
        )
    else:
        logger.info("tenancy_rejection: %s", exc.message, extra=extra)

    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        type_=type(exc).__name__,
    )


async def tenancy_exception_handler(request: Request, exc: TenancyError):
    return tenancy_error_response(request, exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.info(
        "http_exception",
        extra={
            "request_id": _cid(request),
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        },
    )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.status_code,
        message=str(exc.detail),
        type_="HTTPException",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = _sanitize_validation_errors(exc.errors())
    logger.info(
        "validation_exception",
        extra={
            "request_id": _cid(request),
            "path": request.url.path,
            "method": request.method,
            "status_code": 422,
        },
    )
    return error_response(
        request,
        status_code=422,
        code=422,
        message="Validation error",
        type_="RequestValidationError",
        details=details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: minimal body, full trace server-side only."""
    logger.exception(
        "unhandled_exception",
        extra={
            "request_id": _cid(request),
            "path": request.url.path,
            "method": request.method,
            "status_code": 500,
        },
    )
    return error_response(
        request,
        status_code=500,
        code=500,
        message="Internal server error",
        type_=exc.__class__.__name__ if _SHOW_500_EXCEPTION else "InternalServerError",
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TenancyError, tenancy_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "install_error_handlers",
    "error_response",
    "tenancy_error_response",
]
