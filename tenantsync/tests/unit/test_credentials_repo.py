from __future__ import annotations

import pytest

from tenantsync.domain.credentials import CredentialClass, CredentialUpdate
from tenantsync.domain.models import Tenant
from tenantsync.persistence.db import SessionLocal
from tenantsync.persistence.repos import credentials as credentials_repo
from tenantsync.services.crypto.vault import CredentialVault


VAULT = CredentialVault("repo-secret")


async def _create(tenant_id: str, update: CredentialUpdate) -> None:
    async with SessionLocal() as session:
        session.add(Tenant(id=tenant_id))
        await session.flush()
        await credentials_repo.upsert_credential(session, VAULT, tenant_id, update)
        await session.commit()


@pytest.mark.asyncio
async def test_partial_update_preserves_unsupplied_keys() -> None:
    await _create(
        "t-partial",
        CredentialUpdate(endpoint_url="https://one.example.test", restricted_key="anon-1", elevated_key="svc-1"),
    )
    async with SessionLocal() as session:
        await credentials_repo.upsert_credential(
            session, VAULT, "t-partial", CredentialUpdate(endpoint_url="https://two.example.test", restricted_key="anon-2")
        )
        await session.commit()

    async with SessionLocal() as session:
        credential = await credentials_repo.get_credential(session, "t-partial")
    assert credential is not None
    assert VAULT.decrypt(credential.endpoint_url) == "https://two.example.test"
    assert VAULT.decrypt(credential.restricted_key.value) == "anon-2"
    assert credential.elevated_key.present
    assert VAULT.decrypt(credential.elevated_key.value) == "svc-1"


@pytest.mark.asyncio
async def test_stored_values_are_ciphertext_triples() -> None:
    await _create("t-cipher", CredentialUpdate(endpoint_url="https://plain.example.test", elevated_key="svc-key"))
    async with SessionLocal() as session:
        credential = await credentials_repo.get_credential(session, "t-cipher")
    assert credential is not None
    assert credential.endpoint_url.ciphertext != "https://plain.example.test"
    assert credential.restricted_key.present is False
    assert credential.present_classes == [CredentialClass.ELEVATED]
    assert credential.usable


@pytest.mark.asyncio
async def test_create_requires_endpoint_and_a_key() -> None:
    async with SessionLocal() as session:
        session.add(Tenant(id="t-invalid"))
        await session.flush()
        with pytest.raises(ValueError):
            await credentials_repo.upsert_credential(session, VAULT, "t-invalid", CredentialUpdate(restricted_key="k"))
        with pytest.raises(ValueError):
            await credentials_repo.upsert_credential(
                session, VAULT, "t-invalid", CredentialUpdate(endpoint_url="https://x.example.test")
            )


@pytest.mark.asyncio
async def test_delete_and_verification_stamp() -> None:
    await _create("t-del", CredentialUpdate(endpoint_url="https://x.example.test", restricted_key="anon"))
    async with SessionLocal() as session:
        await credentials_repo.mark_verified(session, "t-del")
        await credentials_repo.set_mirror_schema_ready(session, "t-del", True)
        await session.commit()
    async with SessionLocal() as session:
        credential = await credentials_repo.get_credential(session, "t-del")
        assert credential is not None
        assert credential.last_verified_at is not None
        assert credential.mirror_schema_ready is True
        assert await credentials_repo.delete_credential(session, "t-del") is True
        await session.commit()
    async with SessionLocal() as session:
        assert await credentials_repo.get_credential(session, "t-del") is None
        assert await credentials_repo.delete_credential(session, "t-del") is False


@pytest.mark.asyncio
async def test_rotating_one_key_returns_a_complete_view() -> None:
    await _create(
        "t-rotate",
        CredentialUpdate(endpoint_url="https://rotate.example.test", restricted_key="anon-1", elevated_key="svc-1"),
    )
    async with SessionLocal() as session:
        view = await credentials_repo.upsert_credential(session, VAULT, "t-rotate", CredentialUpdate(elevated_key="svc-2"))
        await session.commit()
    assert view.updated_at is not None
    assert view.created_at is not None
    assert VAULT.decrypt(view.elevated_key.value) == "svc-2"
    assert VAULT.decrypt(view.restricted_key.value) == "anon-1"
    assert VAULT.decrypt(view.endpoint_url) == "https://rotate.example.test"
