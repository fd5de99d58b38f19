from __future__ import annotations

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.core.config import get_settings
from tenantsync.core.errors import ConfigurationError, StorageError
from tenantsync.domain.credentials import CredentialClass, StoredKey, TenantCredential
from tenantsync.persistence.repos import credentials as credentials_repo
from tenantsync.services.crypto.vault import CredentialVault
from tenantsync.services.storage.client import TenantStorageClient


logger = logging.getLogger(__name__)


def select_key(
    credential: TenantCredential, desired_class: CredentialClass | None
) -> tuple[StoredKey, bool]:
    """Pick the key for a client and report whether a fallback was taken.

    An explicit restricted request is always honored. Elevated access is used when
    the caller asks for it, or when the caller leaves the class open and the tenant
    prefers elevated; in both cases a missing elevated key falls back to the
    restricted key.
    """
    if desired_class is CredentialClass.RESTRICTED:
        if not credential.restricted_key.present:
            raise ConfigurationError("restricted key requested but not configured for tenant")
        return credential.restricted_key, False

    wants_elevated = desired_class is CredentialClass.ELEVATED or credential.prefer_elevated
    if wants_elevated:
        if credential.elevated_key.present:
            return credential.elevated_key, False
        if credential.restricted_key.present:
            return credential.restricted_key, True
        raise ConfigurationError("elevated key requested but no key is configured for tenant")

    if credential.restricted_key.present:
        return credential.restricted_key, False
    raise ConfigurationError("restricted key is not configured and elevated access is not preferred")


class StorageClientFactory:
    def __init__(
        self,
        vault: CredentialVault,
        *,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._vault = vault
        self._timeout_s = timeout_s if timeout_s is not None else get_settings().storage_timeout_s
        # Tests inject an httpx.MockTransport standing in for the tenant store.
        self._transport = transport

    async def build_client(
        self,
        session: AsyncSession,
        tenant_id: str,
        desired_class: CredentialClass | None = None,
    ) -> TenantStorageClient:
        credential = await credentials_repo.get_credential(session, tenant_id)
        if credential is None or not credential.usable:
            raise ConfigurationError("storage is not configured for tenant")
        key, used_fallback = select_key(credential, desired_class)
        if used_fallback:
            # Elevated-only operations may then fail with permission errors in the tenant store.
            logger.warning(
                "storage_client_elevated_fallback tenant_id=%s requested=%s used=%s",
                tenant_id,
                desired_class.value if desired_class else "preferred",
                key.credential_class.value,
            )
        # AuthenticationError from the vault propagates; corrupted credentials are never retried.
        endpoint_url = self._vault.decrypt(credential.endpoint_url)
        api_key = self._vault.decrypt(key.value)
        return TenantStorageClient(
            endpoint_url=endpoint_url,
            api_key=api_key,
            credential_class=key.credential_class,
            container_name=credential.container_name,
            timeout_s=self._timeout_s,
            used_fallback=used_fallback,
            transport=self._transport,
        )


async def ensure_container(client: TenantStorageClient) -> bool:
    """Make sure the tenant's container exists; never raises.

    Returns True when the container is known to exist afterwards. A restricted key
    may be denied listing or creating buckets; the caller proceeds and lets the
    upload surface any real problem.
    """
    try:
        names = await client.list_containers()
    except StorageError as exc:
        logger.warning(
            "container_list_failed container=%s credential_class=%s error=%s",
            client.container_name,
            client.credential_class.value,
            exc,
        )
        return False
    if client.container_name in names:
        return True
    try:
        await client.create_container(client.container_name)
    except StorageError as exc:
        logger.warning(
            "container_create_failed container=%s credential_class=%s error=%s",
            client.container_name,
            client.credential_class.value,
            exc,
        )
        return False
    logger.info("container_created container=%s", client.container_name)
    return True
