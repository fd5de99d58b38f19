"""HTTP client for a tenant's own storage project.

The tenant store speaks the Supabase HTTP APIs: the Storage API under
``/storage/v1`` for blobs and PostgREST under ``/rest/v1`` for tables. Every
request authenticates with the single key selected by the client factory.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from tenantsync.core.errors import (
    StorageError,
    StorageIOError,
    StorageNotFoundError,
    StoragePermissionError,
)
from tenantsync.domain.credentials import CredentialClass
from tenantsync.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_MISSING_RELATION_CODES = {"42P01", "PGRST205", "PGRST204"}


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text[:200]}
    return payload if isinstance(payload, dict) else {}


def _error_message(body: dict[str, Any], status_code: int) -> str:
    for key in ("message", "error", "msg", "hint"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return f"HTTP {status_code}"


def _effective_status(response: httpx.Response, body: dict[str, Any]) -> int:
    # The Storage API sometimes answers 400 with the real status in the body ("statusCode": "404").
    raw = body.get("statusCode")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.isdigit():
        return int(raw)
    return response.status_code


def classify_response(response: httpx.Response, *, action: str) -> StorageError:
    """Map a failed tenant-store response onto the storage error taxonomy."""
    body = _error_body(response)
    status = _effective_status(response, body)
    message = f"{action} failed: {_error_message(body, status)}"
    code = str(body.get("code") or "")
    lowered = message.lower()
    if status in (401, 403):
        return StoragePermissionError(message, status_code=status)
    if (
        status == 404
        or code in _MISSING_RELATION_CODES
        or "does not exist" in lowered
        or "not found" in lowered
        or "could not find the table" in lowered
    ):
        return StorageNotFoundError(message, status_code=status)
    return StorageIOError(message, status_code=status)


def _is_already_exists(response: httpx.Response) -> bool:
    body = _error_body(response)
    status = _effective_status(response, body)
    return status == 409 or "already exists" in _error_message(body, status).lower()


class TenantStorageClient:
    def __init__(
        self,
        *,
        endpoint_url: str,
        api_key: str,
        credential_class: CredentialClass,
        container_name: str,
        timeout_s: float,
        used_fallback: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url.rstrip("/")
        self.credential_class = credential_class
        self.container_name = container_name
        # True when elevated access was requested but the restricted key was used instead.
        self.used_fallback = used_fallback
        self._http = httpx.AsyncClient(
            base_url=self.endpoint_url,
            timeout=timeout_s,
            transport=transport,
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
        )

    async def __aenter__(self) -> TenantStorageClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, *, action: str, **kwargs: Any) -> httpx.Response:
        start = time.monotonic()
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            record_external_call(
                integration="tenant_store",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageIOError(f"{action} failed: {exc.__class__.__name__}") from exc
        record_external_call(
            integration="tenant_store",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.status_code < 400,
        )
        return response

    def _object_url(self, path: str, *, container: str | None = None) -> str:
        bucket = quote(container or self.container_name, safe="")
        return f"/storage/v1/object/{bucket}/{quote(path, safe='/')}"

    # Blob storage.

    async def list_containers(self) -> list[str]:
        response = await self._request("GET", "/storage/v1/bucket", action="list containers")
        if response.status_code >= 400:
            raise classify_response(response, action="list containers")
        try:
            payload = response.json()
        except ValueError as exc:
            raise StorageIOError("list containers failed: invalid JSON") from exc
        if not isinstance(payload, list):
            raise StorageIOError("list containers failed: unexpected response shape")
        return [str(item.get("name") or item.get("id")) for item in payload if isinstance(item, dict)]

    async def create_container(self, name: str, *, public: bool = False) -> None:
        response = await self._request(
            "POST",
            "/storage/v1/bucket",
            action="create container",
            json={"id": name, "name": name, "public": public},
        )
        if response.status_code < 400:
            return
        # Concurrent first uploads race to create the bucket; losing that race is success.
        if _is_already_exists(response):
            logger.info("container_already_exists container=%s", name)
            return
        raise classify_response(response, action="create container")

    async def upload(self, path: str, content: bytes, *, content_type: str, upsert: bool = True) -> None:
        response = await self._request(
            "POST",
            self._object_url(path),
            action="upload",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
        )
        if response.status_code >= 400:
            raise classify_response(response, action="upload")

    async def download(self, path: str) -> bytes:
        response = await self._request("GET", self._object_url(path), action="download")
        if response.status_code >= 400:
            raise classify_response(response, action="download")
        return response.content

    async def remove(self, paths: list[str]) -> None:
        bucket = quote(self.container_name, safe="")
        response = await self._request(
            "DELETE",
            f"/storage/v1/object/{bucket}",
            action="remove",
            json={"prefixes": paths},
        )
        if response.status_code >= 400:
            raise classify_response(response, action="remove")

    # Tables (PostgREST).

    async def upsert_rows(self, table: str, rows: list[dict[str, Any]], *, on_conflict: str = "id") -> None:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            action=f"upsert into {table}",
            params={"on_conflict": on_conflict},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        if response.status_code >= 400:
            raise classify_response(response, action=f"upsert into {table}")

    async def select_rows(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        response = await self._request("GET", f"/rest/v1/{table}", action=f"select from {table}", params=params)
        if response.status_code >= 400:
            raise classify_response(response, action=f"select from {table}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise StorageIOError(f"select from {table} failed: invalid JSON") from exc
        return [row for row in payload if isinstance(row, dict)] if isinstance(payload, list) else []

    async def delete_rows(self, table: str, *, filters: dict[str, str]) -> None:
        if not filters:
            raise ValueError("refusing to delete without filters")
        params = {column: f"eq.{value}" for column, value in filters.items()}
        response = await self._request("DELETE", f"/rest/v1/{table}", action=f"delete from {table}", params=params)
        if response.status_code >= 400:
            raise classify_response(response, action=f"delete from {table}")

    async def execute_sql(self, sql: str) -> None:
        # Requires an exec_sql function in the tenant database and an elevated key.
        response = await self._request("POST", "/rest/v1/rpc/exec_sql", action="execute sql", json={"sql": sql})
        if response.status_code >= 400:
            if _is_already_exists(response):
                return
            raise classify_response(response, action="execute sql")
