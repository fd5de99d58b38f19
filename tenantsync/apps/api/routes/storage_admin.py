from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.apps.api.deps import get_credential_vault, get_db, get_storage_factory, require_admin
from tenantsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantsync.apps.api.response import SuccessEnvelope, success_response
from tenantsync.core.errors import NotFoundError
from tenantsync.domain.credentials import CredentialClass, CredentialUpdate, TenantCredential
from tenantsync.persistence.repos import credentials as credentials_repo
from tenantsync.persistence.repos import tenants as tenants_repo
from tenantsync.services.crypto.vault import CredentialVault
from tenantsync.services.storage.connectivity import verify_tenant_storage
from tenantsync.services.storage.factory import StorageClientFactory
from tenantsync.services.storage.mirror import MIRROR_TABLE, MIRROR_TABLE_SQL, initialize_mirror_schema


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/tenants/{tenant_id}/storage-config",
    tags=["storage-admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)

SETUP_INSTRUCTIONS = [
    "Open the SQL editor of the tenant database.",
    "Run the statement below once.",
    f"Re-run the storage test to confirm the {MIRROR_TABLE} table is visible.",
]


class StorageConfigRequest(BaseModel):
    endpoint_url: str = Field(min_length=1)
    restricted_key: str | None = None
    elevated_key: str | None = None
    container_name: str | None = None
    prefer_elevated: bool | None = None


class StorageConfigStatus(BaseModel):
    tenant_id: str
    configured: bool
    key_classes: list[CredentialClass]
    container_name: str | None = None
    prefer_elevated: bool = False
    mirror_schema_ready: bool = False
    last_verified_at: str | None = None


class MirrorStatusResponse(BaseModel):
    exists: bool
    setup_required: bool
    setup_sql: str | None = None
    error: str | None = None


class StorageTestResponse(BaseModel):
    success: bool
    credential_class: CredentialClass
    used_fallback: bool
    container_present: bool
    mirror: MirrorStatusResponse | None = None
    error: str | None = None


class SetupSqlResponse(BaseModel):
    table: str
    sql: str
    instructions: list[str]


class MirrorInitResponse(BaseModel):
    initialized: bool
    table: str


def _status_payload(tenant_id: str, credential: TenantCredential | None) -> StorageConfigStatus:
    # Metadata only; key material never leaves the vault boundary.
    if credential is None:
        return StorageConfigStatus(tenant_id=tenant_id, configured=False, key_classes=[])
    return StorageConfigStatus(
        tenant_id=tenant_id,
        configured=credential.usable,
        key_classes=credential.present_classes,
        container_name=credential.container_name,
        prefer_elevated=credential.prefer_elevated,
        mirror_schema_ready=credential.mirror_schema_ready,
        last_verified_at=credential.last_verified_at.isoformat() if credential.last_verified_at else None,
    )


def _validate_endpoint_url(value: str) -> str:
    value = value.strip()
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        raise HTTPException(
            status_code=400, detail={"code": "INVALID_ENDPOINT_URL", "message": "Invalid endpoint URL"}
        ) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise HTTPException(
            status_code=400, detail={"code": "INVALID_ENDPOINT_URL", "message": "Invalid endpoint URL"}
        )
    return value


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@router.get("", response_model=SuccessEnvelope[StorageConfigStatus])
async def get_storage_config(
    request: Request,
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    credential = await credentials_repo.get_credential(db, tenant_id)
    return success_response(request=request, data=_status_payload(tenant_id, credential))


@router.post("", response_model=SuccessEnvelope[StorageConfigStatus])
async def save_storage_config(
    request: Request,
    tenant_id: str,
    payload: StorageConfigRequest,
    db: AsyncSession = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
) -> dict:
    update = CredentialUpdate(
        endpoint_url=_validate_endpoint_url(payload.endpoint_url),
        restricted_key=_blank_to_none(payload.restricted_key),
        elevated_key=_blank_to_none(payload.elevated_key),
        container_name=_blank_to_none(payload.container_name),
        prefer_elevated=payload.prefer_elevated,
    )
    await tenants_repo.ensure_tenant(db, tenant_id)
    try:
        credential = await credentials_repo.upsert_credential(db, vault, tenant_id, update)
    except ValueError as exc:
        await db.rollback()
        raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST", "message": str(exc)}) from exc
    await db.commit()
    logger.info(
        "storage_config_saved tenant_id=%s key_classes=%s",
        tenant_id,
        ",".join(cls.value for cls in credential.present_classes),
    )
    return success_response(request=request, data=_status_payload(tenant_id, credential))


@router.delete("", response_model=SuccessEnvelope[StorageConfigStatus])
async def delete_storage_config(
    request: Request,
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict:
    deleted = await credentials_repo.delete_credential(db, tenant_id)
    if not deleted:
        raise NotFoundError("storage configuration not found")
    await db.commit()
    logger.info("storage_config_deleted tenant_id=%s", tenant_id)
    return success_response(request=request, data=_status_payload(tenant_id, None))


@router.post("/test", response_model=SuccessEnvelope[StorageTestResponse])
async def test_storage_config(
    request: Request,
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    factory: StorageClientFactory = Depends(get_storage_factory),
) -> dict:
    report = await verify_tenant_storage(db, factory, tenant_id)
    if report.success:
        await db.commit()
    credential = await credentials_repo.get_credential(db, tenant_id)
    container = credential.container_name if credential else None
    mirror = None
    if report.mirror is not None:
        mirror = MirrorStatusResponse(
            exists=report.mirror.exists,
            setup_required=report.mirror.setup_required,
            setup_sql=report.mirror.setup_sql,
            error=report.mirror.error,
        )
    data = StorageTestResponse(
        success=report.success,
        credential_class=report.credential_class,
        used_fallback=report.used_fallback,
        container_present=container in report.containers,
        mirror=mirror,
        error=report.error,
    )
    return success_response(request=request, data=data)


@router.get("/setup-sql", response_model=SuccessEnvelope[SetupSqlResponse])
async def get_setup_sql(request: Request, tenant_id: str) -> dict:
    _ = tenant_id
    data = SetupSqlResponse(table=MIRROR_TABLE, sql=MIRROR_TABLE_SQL, instructions=SETUP_INSTRUCTIONS)
    return success_response(request=request, data=data)


@router.post("/init", response_model=SuccessEnvelope[MirrorInitResponse])
async def init_mirror_table(
    request: Request,
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    factory: StorageClientFactory = Depends(get_storage_factory),
) -> dict:
    client = await factory.build_client(db, tenant_id, CredentialClass.ELEVATED)
    async with client:
        await initialize_mirror_schema(client)
    await credentials_repo.set_mirror_schema_ready(db, tenant_id, True)
    await db.commit()
    logger.info("mirror_schema_initialized tenant_id=%s", tenant_id)
    return success_response(request=request, data=MirrorInitResponse(initialized=True, table=MIRROR_TABLE))
