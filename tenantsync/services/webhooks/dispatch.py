from __future__ import annotations

import asyncio
import logging

from tenantsync.services.webhooks.notifier import FileEvent, WebhookDeliveryResult, WebhookNotifier


logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Run webhook deliveries as detached tasks.

    The dispatcher holds a reference to every in-flight task so it is not garbage
    collected mid-retry, and every outcome ends in the log. Deliveries still
    pending when the process exits are lost.
    """

    def __init__(self, notifier: WebhookNotifier) -> None:
        self.notifier = notifier
        self._tasks: set[asyncio.Task[WebhookDeliveryResult | None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, file_event: FileEvent, endpoint: str | None) -> asyncio.Task[WebhookDeliveryResult | None]:
        task = asyncio.create_task(
            self._run(file_event, endpoint),
            name=f"webhook:{file_event.tenant_id}:{file_event.file_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, file_event: FileEvent, endpoint: str | None) -> WebhookDeliveryResult | None:
        try:
            result = await self.notifier.deliver(file_event, endpoint)
        except Exception:  # noqa: BLE001 - detached task; the log is the only error channel
            logger.exception(
                "webhook_dispatch_crashed tenant_id=%s file_id=%s event=%s",
                file_event.tenant_id,
                file_event.file_id,
                file_event.event,
            )
            return None
        if not result.delivered:
            logger.warning(
                "webhook_delivery_failed tenant_id=%s file_id=%s event=%s attempts=%s error=%s",
                file_event.tenant_id,
                file_event.file_id,
                file_event.event,
                result.attempts,
                result.error,
            )
        return result

    async def drain(self, timeout_s: float | None = None) -> None:
        # Used by tests and graceful shutdown to wait for in-flight deliveries.
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout_s)
