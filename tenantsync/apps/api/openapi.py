from __future__ import annotations

from typing import Any

from tenantsync.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", _error_example(code="BAD_REQUEST", message="Bad request")),
    401: _response(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    ),
    403: _response(
        "Forbidden",
        _error_example(code="STORAGE_FORBIDDEN", message="upload failed: new row violates row-level security policy"),
    ),
    404: _response("Not found", _error_example(code="NOT_FOUND", message="file not found")),
    409: _response(
        "Storage not configured or mirror setup required",
        _error_example(
            code="MIRROR_SETUP_REQUIRED",
            message="document_metadata table does not exist in the tenant database",
            details={"setup_sql": "CREATE TABLE IF NOT EXISTS public.document_metadata (...)"},
        ),
    ),
    422: _response(
        "Validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _response("Internal server error", _error_example(code="INTERNAL_ERROR", message="Internal server error")),
    502: _response(
        "Tenant storage unavailable",
        _error_example(code="STORAGE_UNAVAILABLE", message="download failed: ConnectError"),
    ),
}
