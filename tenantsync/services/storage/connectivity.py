from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.core.errors import StorageError
from tenantsync.domain.credentials import CredentialClass
from tenantsync.persistence.repos import credentials as credentials_repo
from tenantsync.services.storage.factory import StorageClientFactory
from tenantsync.services.storage.mirror import MirrorStatus, check_mirror_table


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectivityReport:
    success: bool
    credential_class: CredentialClass
    used_fallback: bool
    containers: list[str]
    mirror: MirrorStatus | None
    error: str | None = None


async def verify_tenant_storage(
    session: AsyncSession,
    factory: StorageClientFactory,
    tenant_id: str,
    desired_class: CredentialClass | None = None,
) -> ConnectivityReport:
    """Exercise the stored credential against the tenant store.

    Credential and configuration errors propagate; store failures are reported.
    A successful check stamps ``last_verified_at`` and records mirror readiness
    but leaves committing to the caller.
    """
    client = await factory.build_client(session, tenant_id, desired_class)
    async with client:
        try:
            containers = await client.list_containers()
        except StorageError as exc:
            logger.warning("storage_connectivity_failed tenant_id=%s error=%s", tenant_id, exc)
            return ConnectivityReport(
                success=False,
                credential_class=client.credential_class,
                used_fallback=client.used_fallback,
                containers=[],
                mirror=None,
                error=str(exc),
            )
        mirror = await check_mirror_table(client)
    await credentials_repo.mark_verified(session, tenant_id)
    await credentials_repo.set_mirror_schema_ready(session, tenant_id, mirror.exists)
    return ConnectivityReport(
        success=True,
        credential_class=client.credential_class,
        used_fallback=client.used_fallback,
        containers=containers,
        mirror=mirror,
    )
