from __future__ import annotations

import logging

import pytest

from tenantsync.core.errors import AuthenticationError, ConfigurationError
from tenantsync.domain.credentials import CredentialClass, StoredKey, TenantCredential
from tenantsync.domain.models import TenantStorageCredential
from tenantsync.persistence.db import SessionLocal
from tenantsync.services.crypto.vault import CredentialVault
from tenantsync.services.storage.factory import StorageClientFactory, ensure_container, select_key
from tenantsync.tests.utils.seed import seed_tenant
from tenantsync.tests.utils.tenant_store import ELEVATED_KEY, RESTRICTED_KEY, FakeTenantStore


VAULT = CredentialVault("factory-secret")


def _credential(*, restricted: bool, elevated: bool, prefer_elevated: bool = False) -> TenantCredential:
    sealed = VAULT.encrypt("k")
    return TenantCredential(
        tenant_id="t1",
        endpoint_url=VAULT.encrypt("https://x.example.test"),
        restricted_key=(
            StoredKey(CredentialClass.RESTRICTED, True, sealed)
            if restricted
            else StoredKey.absent(CredentialClass.RESTRICTED)
        ),
        elevated_key=(
            StoredKey(CredentialClass.ELEVATED, True, sealed) if elevated else StoredKey.absent(CredentialClass.ELEVATED)
        ),
        container_name="projects",
        prefer_elevated=prefer_elevated,
        mirror_schema_ready=False,
        is_configured=True,
        last_verified_at=None,
    )


def test_elevated_request_uses_elevated_key_when_present() -> None:
    key, fallback = select_key(_credential(restricted=True, elevated=True), CredentialClass.ELEVATED)
    assert key.credential_class is CredentialClass.ELEVATED
    assert fallback is False


def test_elevated_request_falls_back_to_restricted_key() -> None:
    # Fallback is silent for callers; it is flagged so elevated-only work can be audited.
    key, fallback = select_key(_credential(restricted=True, elevated=False), CredentialClass.ELEVATED)
    assert key.credential_class is CredentialClass.RESTRICTED
    assert fallback is True


def test_explicit_restricted_request_is_never_upgraded() -> None:
    key, fallback = select_key(
        _credential(restricted=True, elevated=True, prefer_elevated=True), CredentialClass.RESTRICTED
    )
    assert key.credential_class is CredentialClass.RESTRICTED
    assert fallback is False


def test_explicit_restricted_request_without_restricted_key_fails() -> None:
    with pytest.raises(ConfigurationError, match="restricted key requested"):
        select_key(_credential(restricted=False, elevated=True), CredentialClass.RESTRICTED)


def test_open_request_follows_tenant_preference() -> None:
    preferred, _ = select_key(_credential(restricted=True, elevated=True, prefer_elevated=True), None)
    assert preferred.credential_class is CredentialClass.ELEVATED
    default, _ = select_key(_credential(restricted=True, elevated=True), None)
    assert default.credential_class is CredentialClass.RESTRICTED


@pytest.mark.asyncio
async def test_build_client_without_record_raises_configuration_error() -> None:
    factory = StorageClientFactory(VAULT, transport=FakeTenantStore().transport())
    async with SessionLocal() as session:
        with pytest.raises(ConfigurationError, match="not configured"):
            await factory.build_client(session, "missing-tenant", CredentialClass.ELEVATED)


@pytest.mark.asyncio
async def test_build_client_authenticates_with_selected_key(caplog) -> None:
    store = FakeTenantStore(buckets={"projects"})
    factory = StorageClientFactory(VAULT, transport=store.transport())
    await seed_tenant("t-fallback", vault=VAULT, restricted=True, elevated=False)
    caplog.set_level(logging.WARNING)
    async with SessionLocal() as session:
        client = await factory.build_client(session, "t-fallback", CredentialClass.ELEVATED)
    async with client:
        assert client.credential_class is CredentialClass.RESTRICTED
        assert client.used_fallback is True
        await client.upload("a/b.txt", b"hi", content_type="text/plain")
    assert store.requests[-1].api_key == RESTRICTED_KEY
    assert "storage_client_elevated_fallback" in caplog.text


@pytest.mark.asyncio
async def test_build_client_with_tampered_key_raises_authentication_error() -> None:
    await seed_tenant("t-tampered", vault=VAULT, restricted=False, elevated=True)
    async with SessionLocal() as session:
        row = await session.get(TenantStorageCredential, "t-tampered")
        row.elevated_key = {**row.elevated_key, "tag": VAULT.encrypt("other").tag}
        await session.commit()
    factory = StorageClientFactory(VAULT, transport=FakeTenantStore().transport())
    async with SessionLocal() as session:
        with pytest.raises(AuthenticationError):
            await factory.build_client(session, "t-tampered", CredentialClass.ELEVATED)


@pytest.mark.asyncio
async def test_ensure_container_creates_missing_container() -> None:
    store = FakeTenantStore()
    await seed_tenant("t-create", vault=VAULT)
    factory = StorageClientFactory(VAULT, transport=store.transport())
    async with SessionLocal() as session:
        client = await factory.build_client(session, "t-create", CredentialClass.ELEVATED)
    async with client:
        assert await ensure_container(client) is True
        # A second call sees the container and does not try to create it again.
        assert await ensure_container(client) is True
    assert store.buckets == {"projects"}
    assert len(store.requests_for("POST", "/storage/v1/bucket")) == 1
    assert store.requests[0].api_key == ELEVATED_KEY


@pytest.mark.asyncio
async def test_ensure_container_never_raises_under_restricted_key(caplog) -> None:
    store = FakeTenantStore()
    await seed_tenant("t-restricted", vault=VAULT, elevated=False)
    factory = StorageClientFactory(VAULT, transport=store.transport())
    caplog.set_level(logging.WARNING)
    async with SessionLocal() as session:
        client = await factory.build_client(session, "t-restricted", CredentialClass.RESTRICTED)
    async with client:
        assert await ensure_container(client) is False
    assert "container_list_failed" in caplog.text
    assert store.buckets == set()


@pytest.mark.asyncio
async def test_create_container_treats_already_exists_as_success() -> None:
    store = FakeTenantStore(buckets={"projects"})
    await seed_tenant("t-race", vault=VAULT)
    factory = StorageClientFactory(VAULT, transport=store.transport())
    async with SessionLocal() as session:
        client = await factory.build_client(session, "t-race", CredentialClass.ELEVATED)
    async with client:
        await client.create_container("projects")
