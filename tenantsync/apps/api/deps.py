from __future__ import annotations

import hmac
from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.core.config import get_settings
from tenantsync.persistence.db import SessionLocal
from tenantsync.services.crypto.vault import CredentialVault, get_vault
from tenantsync.services.files.sync import FileSyncEngine
from tenantsync.services.storage.factory import StorageClientFactory
from tenantsync.services.webhooks.dispatch import WebhookDispatcher
from tenantsync.services.webhooks.notifier import WebhookNotifier


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def require_admin(authorization: str | None = Header(default=None)) -> None:
    """Guard admin routes with the configured operator token."""
    settings = get_settings()
    if settings.auth_dev_bypass:
        return
    token = _parse_bearer_token(authorization)
    if token is None:
        raise _auth_error("Missing or invalid bearer token")
    expected = settings.admin_api_token
    if not expected or not hmac.compare_digest(token, expected):
        raise _auth_error("Invalid admin token")


def get_tenant_id(x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id")) -> str:
    # The upstream session layer authenticates the caller and forwards the tenant id.
    if not x_tenant_id or not x_tenant_id.strip():
        raise _auth_error("Missing tenant context")
    return x_tenant_id.strip()


def get_credential_vault() -> CredentialVault:
    return get_vault()


@lru_cache
def get_storage_factory() -> StorageClientFactory:
    return StorageClientFactory(get_vault())


@lru_cache
def get_webhook_notifier() -> WebhookNotifier:
    return WebhookNotifier()


@lru_cache
def get_webhook_dispatcher() -> WebhookDispatcher:
    # One dispatcher per process so in-flight delivery tasks stay referenced.
    return WebhookDispatcher(get_webhook_notifier())


def get_sync_engine(
    factory: StorageClientFactory = Depends(get_storage_factory),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> FileSyncEngine:
    return FileSyncEngine(factory, dispatcher)
