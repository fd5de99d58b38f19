from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx


ELEVATED_KEY = "elevated-secret-key"
RESTRICTED_KEY = "restricted-secret-key"
ENDPOINT_URL = "https://tenant-project.example.test"


@dataclass
class RecordedRequest:
    method: str
    path: str
    api_key: str | None
    headers: dict[str, str]
    body: bytes


@dataclass
class FakeTenantStore:
    """In-memory stand-in for a tenant's Storage + PostgREST endpoints.

    Toggles model the situations the sync engine has to survive: a restricted
    key that cannot manage buckets, a missing mirror table, failing uploads.
    """

    buckets: set[str] = field(default_factory=set)
    objects: dict[tuple[str, str], bytes] = field(default_factory=dict)
    mirror_rows: dict[str, dict[str, Any]] = field(default_factory=dict)
    mirror_table_exists: bool = True
    restricted_can_manage_buckets: bool = False
    upload_status: int | None = None
    download_status: int | None = None
    remove_status: int | None = None
    mirror_write_status: int | None = None
    requests: list[RecordedRequest] = field(default_factory=list)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_for(self, method: str, prefix: str) -> list[RecordedRequest]:
        return [req for req in self.requests if req.method == method and req.path.startswith(prefix)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        api_key = request.headers.get("apikey")
        path = request.url.path
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=path,
                api_key=api_key,
                headers=dict(request.headers),
                body=request.content,
            )
        )
        if api_key not in (ELEVATED_KEY, RESTRICTED_KEY):
            return httpx.Response(401, json={"message": "Invalid API key"})
        if path.startswith("/storage/v1/bucket"):
            return self._bucket(request, api_key)
        if path.startswith("/storage/v1/object/"):
            return self._object(request)
        if path == "/rest/v1/rpc/exec_sql":
            return self._exec_sql(api_key)
        if path.startswith("/rest/v1/document_metadata"):
            return self._mirror(request)
        return httpx.Response(404, json={"message": f"no route for {path}"})

    def _bucket(self, request: httpx.Request, api_key: str) -> httpx.Response:
        if api_key == RESTRICTED_KEY and not self.restricted_can_manage_buckets:
            return httpx.Response(
                400,
                json={"statusCode": "403", "error": "Unauthorized", "message": "new row violates row-level security policy"},
            )
        if request.method == "GET":
            return httpx.Response(200, json=[{"id": name, "name": name} for name in sorted(self.buckets)])
        payload = json.loads(request.content)
        name = payload["name"]
        if name in self.buckets:
            return httpx.Response(
                400,
                json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"},
            )
        self.buckets.add(name)
        return httpx.Response(200, json={"name": name})

    def _object(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.split("/")
        bucket = parts[4]
        object_path = "/".join(parts[5:])
        if request.method == "DELETE":
            if self.remove_status is not None:
                return httpx.Response(self.remove_status, json={"message": "remove failed"})
            prefixes = json.loads(request.content)["prefixes"]
            removed = [{"name": p} for p in prefixes if self.objects.pop((bucket, p), None) is not None]
            return httpx.Response(200, json=removed)
        if bucket not in self.buckets:
            return httpx.Response(
                400,
                json={"statusCode": "404", "error": "Bucket not found", "message": "Bucket not found"},
            )
        if request.method == "POST":
            if self.upload_status is not None:
                return httpx.Response(self.upload_status, json={"message": "upload rejected"})
            self.objects[(bucket, object_path)] = request.content
            return httpx.Response(200, json={"Key": f"{bucket}/{object_path}"})
        if self.download_status is not None:
            return httpx.Response(self.download_status, json={"message": "download failed"})
        data = self.objects.get((bucket, object_path))
        if data is None:
            return httpx.Response(
                400,
                json={"statusCode": "404", "error": "not_found", "message": "Object not found"},
            )
        return httpx.Response(200, content=data)

    def _exec_sql(self, api_key: str) -> httpx.Response:
        if api_key != ELEVATED_KEY:
            return httpx.Response(403, json={"code": "42501", "message": "permission denied for function exec_sql"})
        self.mirror_table_exists = True
        return httpx.Response(200, json=None)

    def _mirror(self, request: httpx.Request) -> httpx.Response:
        if not self.mirror_table_exists:
            return httpx.Response(
                404,
                json={
                    "code": "PGRST205",
                    "message": "Could not find the table 'public.document_metadata' in the schema cache",
                },
            )
        params = request.url.params
        filters = {
            key: value[len("eq."):]
            for key, value in params.multi_items()
            if value.startswith("eq.")
        }
        if request.method == "POST":
            if self.mirror_write_status is not None:
                return httpx.Response(self.mirror_write_status, json={"message": "mirror write failed"})
            for row in json.loads(request.content):
                self.mirror_rows[str(row["id"])] = {**self.mirror_rows.get(str(row["id"]), {}), **row}
            return httpx.Response(201)
        if request.method == "DELETE":
            for row_id in [rid for rid, row in self.mirror_rows.items() if _matches(row, filters)]:
                del self.mirror_rows[row_id]
            return httpx.Response(204)
        rows = [row for row in self.mirror_rows.values() if _matches(row, filters)]
        if params.get("order") == "created_at.desc":
            rows.sort(key=lambda row: row.get("created_at") or "", reverse=True)
        if "limit" in params:
            rows = rows[: int(params["limit"])]
        return httpx.Response(200, json=rows)


def _matches(row: dict[str, Any], filters: dict[str, str]) -> bool:
    return all(str(row.get(key)) == value for key, value in filters.items())
