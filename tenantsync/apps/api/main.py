from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantsync.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    tenantsync_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from tenantsync.apps.api.response import API_VERSION
from tenantsync.apps.api.routes.documents import router as documents_router
from tenantsync.apps.api.routes.files import router as files_router
from tenantsync.apps.api.routes.health import router as health_router
from tenantsync.apps.api.routes.storage_admin import router as storage_admin_router
from tenantsync.apps.api.routes.webhooks_admin import router as webhooks_admin_router
from tenantsync.core.errors import TenantSyncError
from tenantsync.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="tenantsync API", openapi_url=f"/{API_VERSION}/openapi.json", docs_url=f"/{API_VERSION}/docs")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(TenantSyncError)
    async def _tenantsync_exception_handler(request: Request, exc: TenantSyncError):
        return await tenantsync_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Operator-facing credential and webhook administration.
    app.include_router(storage_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(webhooks_admin_router, prefix=f"/{API_VERSION}")
    app.include_router(files_router, prefix=f"/{API_VERSION}")
    app.include_router(documents_router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Admin routes take the operator bearer token; product routes take X-Tenant-Id.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="tenantsync API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if not path.startswith(f"/{API_VERSION}/admin"):
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
