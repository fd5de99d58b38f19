"""Outbound file-change notifications.

Delivery is at-most-``max_attempts``: network errors, timeouts and 5xx answers
are retried with exponential backoff, while any 4xx answer is treated as a
permanent rejection. Results are returned, never raised, so a failed webhook
cannot affect the save that triggered it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from tenantsync.core.config import get_settings
from tenantsync.core.errors import TerminalClientError, TransientNetworkError, WebhookDeliveryError
from tenantsync.persistence.repos.projects import SubProjectLinkage
from tenantsync.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

FILE_CREATED = "file.created"
FILE_UPDATED = "file.updated"
PING = "ping"

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class WebhookFile:
    id: str
    name: str
    file_type: str
    description: str | None = None
    category: str | None = None
    sub_category: str | None = None


@dataclass(frozen=True)
class FileEvent:
    # Serialized once in the request frame; delivery only ever reads the bytes.
    tenant_id: str
    event: str
    file_id: str
    body: bytes

    def payload(self) -> dict[str, Any]:
        return json.loads(self.body)


@dataclass(frozen=True)
class WebhookDeliveryResult:
    delivered: bool
    attempts: int
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class PingResult:
    success: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None


def _utc_timestamp(now: datetime | None = None) -> str:
    value = now or datetime.now(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def build_file_event(
    *,
    tenant_id: str,
    event: str,
    file_meta: WebhookFile,
    content: str,
    linkage: SubProjectLinkage | None,
    sub_project_id: str,
    now: datetime | None = None,
) -> FileEvent:
    file: dict[str, Any] = {
        "id": file_meta.id,
        "name": file_meta.name,
        "content": content,
        "file_type": file_meta.file_type,
        "description": file_meta.description,
        "category": file_meta.category,
        "sub_category": file_meta.sub_category,
        "sub_project_id": sub_project_id,
        "size_bytes": len(content.encode("utf-8")),
    }
    payload: dict[str, Any] = {
        "event": event,
        "timestamp": _utc_timestamp(now),
        "user_id": tenant_id,
        "file": file,
    }
    # Without a resolved linkage the names are unknown, so the optional blocks are left out.
    if linkage is not None:
        file["project_id"] = linkage.project_id
        payload["project"] = {"id": linkage.project_id, "name": linkage.project_name}
        payload["sub_project"] = {"id": sub_project_id, "name": linkage.sub_project_name}
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return FileEvent(tenant_id=tenant_id, event=event, file_id=file_meta.id, body=body)


def _classify_response(response: httpx.Response) -> WebhookDeliveryError | None:
    status = response.status_code
    if status >= 500:
        return TransientNetworkError(f"receiver answered {status}", status_code=status)
    if status >= 400:
        return TerminalClientError(f"receiver rejected delivery with {status}", status_code=status)
    return None


def _valid_endpoint(endpoint: str) -> bool:
    try:
        url = httpx.URL(endpoint)
    except (httpx.InvalidURL, TypeError):
        return False
    return url.scheme in ("http", "https") and bool(url.host)


class WebhookNotifier:
    def __init__(
        self,
        *,
        timeout_s: float | None = None,
        max_attempts: int | None = None,
        backoff_base_s: float | None = None,
        ping_timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self.timeout_s = timeout_s if timeout_s is not None else settings.webhook_timeout_s
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.webhook_max_attempts)
        self.backoff_base_s = backoff_base_s if backoff_base_s is not None else settings.webhook_backoff_base_s
        self.ping_timeout_s = ping_timeout_s if ping_timeout_s is not None else settings.webhook_ping_timeout_s
        self._transport = transport
        # Injected so tests can assert the backoff schedule without waiting.
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base_s * (2 ** (attempt - 1))

    async def notify(
        self,
        tenant_id: str,
        event: str,
        file_meta: WebhookFile,
        content: str,
        *,
        endpoint: str | None,
        sub_project_id: str,
        linkage: SubProjectLinkage | None = None,
    ) -> WebhookDeliveryResult:
        file_event = build_file_event(
            tenant_id=tenant_id,
            event=event,
            file_meta=file_meta,
            content=content,
            linkage=linkage,
            sub_project_id=sub_project_id,
        )
        return await self.deliver(file_event, endpoint)

    async def deliver(self, file_event: FileEvent, endpoint: str | None) -> WebhookDeliveryResult:
        if not endpoint:
            return WebhookDeliveryResult(delivered=True, attempts=0)

        last_error: WebhookDeliveryError | None = None
        for attempt in range(1, self.max_attempts + 1):
            headers = {
                "Content-Type": "application/json",
                "X-Webhook-Event": file_event.event,
                "X-Webhook-Attempt": str(attempt),
                "X-Webhook-User-Id": file_event.tenant_id,
                "X-Webhook-File-Id": file_event.file_id,
            }
            try:
                status_code = await self._post(endpoint, file_event.body, headers, timeout_s=self.timeout_s)
            except TerminalClientError as exc:
                logger.warning(
                    "webhook_rejected tenant_id=%s file_id=%s event=%s attempt=%s status=%s",
                    file_event.tenant_id,
                    file_event.file_id,
                    file_event.event,
                    attempt,
                    exc.status_code,
                )
                return WebhookDeliveryResult(
                    delivered=False, attempts=attempt, status_code=exc.status_code, error=str(exc)
                )
            except TransientNetworkError as exc:
                last_error = exc
                logger.warning(
                    "webhook_attempt_failed tenant_id=%s file_id=%s event=%s attempt=%s error=%s",
                    file_event.tenant_id,
                    file_event.file_id,
                    file_event.event,
                    attempt,
                    exc,
                )
                if attempt < self.max_attempts:
                    increment_counter("webhook_retries_total")
                    await self._sleep(self.backoff_delay(attempt))
                continue
            logger.info(
                "webhook_delivered tenant_id=%s file_id=%s event=%s attempt=%s",
                file_event.tenant_id,
                file_event.file_id,
                file_event.event,
                attempt,
            )
            return WebhookDeliveryResult(delivered=True, attempts=attempt, status_code=status_code)

        increment_counter("webhook_failures_total")
        return WebhookDeliveryResult(
            delivered=False,
            attempts=self.max_attempts,
            status_code=last_error.status_code if last_error else None,
            error=str(last_error) if last_error else None,
        )

    async def ping(self, endpoint: str, *, tenant_id: str | None = None) -> PingResult:
        """Send a single ping event; used by the admin endpoint to validate a URL."""
        if not _valid_endpoint(endpoint):
            return PingResult(success=False, error="Invalid URL format")
        body = json.dumps(
            {
                "event": PING,
                "timestamp": _utc_timestamp(),
                "message": "Webhook test from tenantsync",
            }
        ).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Webhook-Event": PING, "X-Webhook-Attempt": "1"}
        if tenant_id:
            headers["X-Webhook-User-Id"] = tenant_id
        start = time.monotonic()
        try:
            status_code = await self._post(endpoint, body, headers, timeout_s=self.ping_timeout_s)
        except WebhookDeliveryError as exc:
            return PingResult(
                success=False,
                status_code=exc.status_code,
                response_time_ms=int((time.monotonic() - start) * 1000),
                error=str(exc),
            )
        return PingResult(
            success=True,
            status_code=status_code,
            response_time_ms=int((time.monotonic() - start) * 1000),
        )

    async def _post(self, endpoint: str, body: bytes, headers: dict[str, str], *, timeout_s: float) -> int:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=self._transport) as client:
                response = await client.post(endpoint, content=body, headers=headers)
        except httpx.TimeoutException as exc:
            record_external_call(
                integration="webhook", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise TransientNetworkError("timeout") from exc
        except httpx.HTTPError as exc:
            record_external_call(
                integration="webhook", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise TransientNetworkError(f"network error: {exc.__class__.__name__}") from exc
        error = _classify_response(response)
        record_external_call(
            integration="webhook",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=error is None,
        )
        if error is not None:
            raise error
        return response.status_code
