from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from tenantsync.persistence.repos.projects import SubProjectLinkage
from tenantsync.services.telemetry import get_counter
from tenantsync.services.webhooks.notifier import (
    FILE_CREATED,
    FILE_UPDATED,
    WebhookFile,
    WebhookNotifier,
    build_file_event,
)
from tenantsync.tests.utils.webhook_receiver import RecordingSleep, WebhookReceiver


FILE = WebhookFile(id="f1", name="notes.md", file_type="markdown", description="draft", category="documents")
LINKAGE = SubProjectLinkage(project_id="p1", project_name="Research", sub_project_id="sp1", sub_project_name="Drafts")


def _notifier(receiver: WebhookReceiver, sleep: RecordingSleep) -> WebhookNotifier:
    return WebhookNotifier(
        timeout_s=30.0,
        max_attempts=3,
        backoff_base_s=1.0,
        ping_timeout_s=10.0,
        transport=receiver.transport(),
        sleep=sleep,
    )


async def _notify(notifier: WebhookNotifier, endpoint: str | None = "https://hooks.example.test/in"):
    return await notifier.notify(
        "tenant-1", FILE_CREATED, FILE, "# hello", endpoint=endpoint, sub_project_id="sp1", linkage=LINKAGE
    )


@pytest.mark.asyncio
async def test_client_error_is_terminal_after_one_attempt() -> None:
    receiver = WebhookReceiver(statuses=[404])
    sleep = RecordingSleep()
    result = await _notify(_notifier(receiver, sleep))
    assert result.delivered is False
    assert result.attempts == 1
    assert result.status_code == 404
    assert len(receiver.received) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_server_error_retries_with_exponential_backoff() -> None:
    receiver = WebhookReceiver(statuses=[500, 500, 500])
    sleep = RecordingSleep()
    result = await _notify(_notifier(receiver, sleep))
    assert result.delivered is False
    assert result.attempts == 3
    assert sleep.delays == [1.0, 2.0]
    assert [req.headers["X-Webhook-Attempt"] for req in receiver.received] == ["1", "2", "3"]
    assert get_counter("webhook_retries_total") == 2


@pytest.mark.asyncio
async def test_network_error_then_success() -> None:
    receiver = WebhookReceiver(statuses=[httpx.ConnectError("refused"), 200])
    sleep = RecordingSleep()
    result = await _notify(_notifier(receiver, sleep))
    assert result.delivered is True
    assert result.attempts == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_timeout_is_retried() -> None:
    receiver = WebhookReceiver(statuses=[httpx.ReadTimeout("slow receiver"), httpx.ReadTimeout("slow receiver"), 200])
    sleep = RecordingSleep()
    result = await _notify(_notifier(receiver, sleep))
    assert result.delivered is True
    assert result.attempts == 3
    assert sleep.delays == [1.0, 2.0]
    assert get_counter("webhook_retries_total") == 2


@pytest.mark.asyncio
async def test_missing_endpoint_is_a_successful_no_op() -> None:
    receiver = WebhookReceiver()
    result = await _notify(_notifier(receiver, RecordingSleep()), endpoint=None)
    assert result.delivered is True
    assert result.attempts == 0
    assert receiver.received == []


@pytest.mark.asyncio
async def test_delivery_headers_and_payload_shape() -> None:
    receiver = WebhookReceiver()
    await _notify(_notifier(receiver, RecordingSleep()))
    request = receiver.received[0]
    assert request.headers["X-Webhook-Event"] == FILE_CREATED
    assert request.headers["X-Webhook-User-Id"] == "tenant-1"
    assert request.headers["X-Webhook-File-Id"] == "f1"
    assert request.headers["Content-Type"] == "application/json"
    payload = receiver.payloads()[0]
    assert payload["event"] == FILE_CREATED
    assert payload["user_id"] == "tenant-1"
    assert payload["file"]["content"] == "# hello"
    assert payload["file"]["size_bytes"] == len("# hello".encode("utf-8"))
    assert payload["file"]["project_id"] == "p1"
    assert payload["project"] == {"id": "p1", "name": "Research"}
    assert payload["sub_project"] == {"id": "sp1", "name": "Drafts"}


def test_file_event_is_serialized_once() -> None:
    event = build_file_event(
        tenant_id="tenant-1",
        event=FILE_UPDATED,
        file_meta=FILE,
        content="ünïcode",
        linkage=None,
        sub_project_id="sp1",
        now=datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc),
    )
    payload = json.loads(event.body)
    assert payload["timestamp"] == "2026-05-01T12:00:00Z"
    assert "project" not in payload
    assert "sub_project" not in payload
    assert "project_id" not in payload["file"]
    assert payload["file"]["sub_project_id"] == "sp1"
    assert payload["file"]["size_bytes"] == len("ünïcode".encode("utf-8"))
    assert event.payload() == payload


@pytest.mark.asyncio
async def test_ping_is_single_shot() -> None:
    receiver = WebhookReceiver(statuses=[503])
    result = await _notifier(receiver, RecordingSleep()).ping("https://hooks.example.test/in")
    assert result.success is False
    assert result.status_code == 503
    assert len(receiver.received) == 1
    assert receiver.payloads()[0]["event"] == "ping"


@pytest.mark.asyncio
async def test_ping_rejects_invalid_url() -> None:
    receiver = WebhookReceiver()
    result = await _notifier(receiver, RecordingSleep()).ping("not a url")
    assert result.success is False
    assert result.error == "Invalid URL format"
    assert receiver.received == []
