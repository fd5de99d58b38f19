from tenantsync.services.webhooks.dispatch import WebhookDispatcher
from tenantsync.services.webhooks.notifier import (
    FILE_CREATED,
    FILE_UPDATED,
    FileEvent,
    PingResult,
    WebhookDeliveryResult,
    WebhookFile,
    WebhookNotifier,
    build_file_event,
)

__all__ = [
    "FILE_CREATED",
    "FILE_UPDATED",
    "FileEvent",
    "PingResult",
    "WebhookDeliveryResult",
    "WebhookDispatcher",
    "WebhookFile",
    "WebhookNotifier",
    "build_file_event",
]
