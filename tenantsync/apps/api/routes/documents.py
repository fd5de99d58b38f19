from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.apps.api.deps import get_db, get_storage_factory, get_tenant_id
from tenantsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantsync.apps.api.response import SuccessEnvelope, success_response
from tenantsync.services.storage.factory import StorageClientFactory
from tenantsync.services.storage.mirror import list_mirror_documents


router = APIRouter(tags=["documents"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/documents", response_model=SuccessEnvelope[list[dict]])
async def list_documents(
    request: Request,
    project_id: str | None = Query(default=None),
    sub_project_id: str | None = Query(default=None),
    category: str | None = Query(default=None),
    sub_category: str | None = Query(default=None),
    source: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    factory: StorageClientFactory = Depends(get_storage_factory),
) -> dict:
    # Read path uses the tenant's preferred key; no class is forced.
    client = await factory.build_client(db, tenant_id)
    async with client:
        documents = await list_mirror_documents(
            client,
            project_id=project_id,
            sub_project_id=sub_project_id,
            category=category,
            sub_category=sub_category,
            source=source,
            limit=limit,
        )
    return success_response(request=request, data=[asdict(document) for document in documents])
