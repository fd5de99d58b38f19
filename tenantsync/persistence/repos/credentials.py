from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.core.config import get_settings
from tenantsync.domain.credentials import CredentialClass, CredentialUpdate, StoredKey, TenantCredential
from tenantsync.domain.models import TenantStorageCredential
from tenantsync.services.crypto.vault import CredentialVault, EncryptedValue


def _stored_key(raw: dict[str, Any] | None, credential_class: CredentialClass) -> StoredKey:
    if raw is None:
        return StoredKey.absent(credential_class)
    return StoredKey(credential_class=credential_class, present=True, value=EncryptedValue.from_json(raw))


def _to_view(row: TenantStorageCredential) -> TenantCredential:
    return TenantCredential(
        tenant_id=row.tenant_id,
        endpoint_url=EncryptedValue.from_json(row.endpoint_url),
        restricted_key=_stored_key(row.restricted_key, CredentialClass.RESTRICTED),
        elevated_key=_stored_key(row.elevated_key, CredentialClass.ELEVATED),
        container_name=row.container_name or get_settings().default_container_name,
        prefer_elevated=bool(row.prefer_elevated),
        mirror_schema_ready=bool(row.mirror_schema_ready),
        is_configured=bool(row.is_configured),
        last_verified_at=row.last_verified_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def _get_row(session: AsyncSession, tenant_id: str) -> TenantStorageCredential | None:
    result = await session.execute(
        select(TenantStorageCredential).where(TenantStorageCredential.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def get_credential(session: AsyncSession, tenant_id: str) -> TenantCredential | None:
    # Returns ciphertext only; decryption is left to the storage client factory.
    row = await _get_row(session, tenant_id)
    if row is None:
        return None
    return _to_view(row)


async def upsert_credential(
    session: AsyncSession,
    vault: CredentialVault,
    tenant_id: str,
    update: CredentialUpdate,
) -> TenantCredential:
    """Encrypt and store the supplied fields.

    Creating a record requires an endpoint URL and at least one key. On update,
    any field left as None keeps its stored value, so an admin can rotate one key
    without re-entering the other.
    """
    row = await _get_row(session, tenant_id)
    if row is None:
        if not update.endpoint_url:
            raise ValueError("endpoint URL is required")
        if not update.restricted_key and not update.elevated_key:
            raise ValueError("at least one key (restricted or elevated) is required")
        row = TenantStorageCredential(
            tenant_id=tenant_id,
            endpoint_url=vault.encrypt(update.endpoint_url).to_json(),
            container_name=update.container_name or get_settings().default_container_name,
            prefer_elevated=bool(update.prefer_elevated),
            mirror_schema_ready=False,
        )
        session.add(row)
    else:
        if update.endpoint_url:
            row.endpoint_url = vault.encrypt(update.endpoint_url).to_json()
        if update.container_name:
            row.container_name = update.container_name
        if update.prefer_elevated is not None:
            row.prefer_elevated = update.prefer_elevated
    if update.restricted_key:
        row.restricted_key = vault.encrypt(update.restricted_key).to_json()
    if update.elevated_key:
        row.elevated_key = vault.encrypt(update.elevated_key).to_json()
    row.is_configured = True
    await session.flush()
    # Reload server-side timestamps so the view can be built without a lazy load.
    await session.refresh(row)
    return _to_view(row)


async def delete_credential(session: AsyncSession, tenant_id: str) -> bool:
    result = await session.execute(
        delete(TenantStorageCredential).where(TenantStorageCredential.tenant_id == tenant_id)
    )
    return bool(result.rowcount)


async def mark_verified(session: AsyncSession, tenant_id: str, *, verified_at: datetime | None = None) -> None:
    row = await _get_row(session, tenant_id)
    if row is None:
        return
    row.last_verified_at = verified_at or datetime.now(timezone.utc)


async def set_mirror_schema_ready(session: AsyncSession, tenant_id: str, ready: bool) -> None:
    row = await _get_row(session, tenant_id)
    if row is None:
        return
    row.mirror_schema_ready = ready
