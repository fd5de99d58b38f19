from __future__ import annotations


class TenantSyncError(Exception):
    """Base error for tenantsync."""


class ConfigurationError(TenantSyncError):
    """No usable storage credential for the tenant or requested credential class."""


class AuthenticationError(TenantSyncError):
    """Encrypted credential failed tag verification (tampered data or wrong key)."""


class NotFoundError(TenantSyncError):
    """Requested record does not exist."""


class StoredFileNotFoundError(NotFoundError):
    """No authoritative file row exists for the tenant and file id."""


class StorageError(TenantSyncError):
    """Tenant blob/table store failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoragePermissionError(StorageError):
    """The selected key lacks rights for the storage operation."""


class StorageNotFoundError(StorageError, NotFoundError):
    """Container, object or table is missing in the tenant store."""


class StorageIOError(StorageError):
    """Generic transport failure talking to the tenant store."""


class MirrorTableMissingError(TenantSyncError):
    """The tenant has not created the mirror table yet."""

    def __init__(self, message: str, *, setup_sql: str) -> None:
        super().__init__(message)
        self.setup_sql = setup_sql


class WebhookDeliveryError(TenantSyncError):
    """Outbound webhook delivery failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(WebhookDeliveryError):
    """Network error, timeout or 5xx; safe to retry."""


class TerminalClientError(WebhookDeliveryError):
    """4xx response from the receiver; never retried."""


class DatabaseError(TenantSyncError):
    """Platform database write failed."""
