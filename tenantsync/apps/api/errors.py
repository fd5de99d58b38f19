from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantsync.apps.api.response import error_response
from tenantsync.core.errors import (
    AuthenticationError,
    ConfigurationError,
    DatabaseError,
    MirrorTableMissingError,
    NotFoundError,
    StorageError,
    StoragePermissionError,
    TenantSyncError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "STORAGE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def domain_error_status(exc: TenantSyncError) -> tuple[int, str, dict[str, Any] | None]:
    """Map a domain error onto (status, code, details) for the error envelope."""
    if isinstance(exc, ConfigurationError):
        return 409, "STORAGE_NOT_CONFIGURED", None
    if isinstance(exc, AuthenticationError):
        return 500, "CREDENTIAL_INTEGRITY_ERROR", None
    if isinstance(exc, MirrorTableMissingError):
        return 409, "MIRROR_SETUP_REQUIRED", {"setup_sql": exc.setup_sql}
    if isinstance(exc, StoragePermissionError):
        return 403, "STORAGE_FORBIDDEN", None
    if isinstance(exc, NotFoundError):
        return 404, "NOT_FOUND", None
    if isinstance(exc, StorageError):
        return 502, "STORAGE_UNAVAILABLE", None
    if isinstance(exc, DatabaseError):
        return 500, "DATABASE_ERROR", None
    return 500, "INTERNAL_ERROR", None


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_errors(exc)},
    )
    return JSONResponse(content=payload, status_code=422)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # Pydantic may put exception objects in ctx; keep only JSON-safe fields.
    return [
        {"loc": list(error.get("loc", ())), "msg": str(error.get("msg")), "type": str(error.get("type"))}
        for error in exc.errors()
    ]


async def tenantsync_exception_handler(request: Request, exc: TenantSyncError) -> JSONResponse:
    status_code, code, details = domain_error_status(exc)
    if status_code >= 500:
        logger.error("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
        # Credential corruption details stay in the log, not the response.
        message = "Internal server error" if code != "STORAGE_UNAVAILABLE" else str(exc)
    else:
        message = str(exc)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
