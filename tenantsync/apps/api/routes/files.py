from __future__ import annotations

from uuid import uuid4

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.apps.api.deps import get_db, get_sync_engine, get_tenant_id
from tenantsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantsync.apps.api.response import SuccessEnvelope, success_response
from tenantsync.services.files.sync import FileMetadata, FileSaveRequest, FileSyncEngine


router = APIRouter(tags=["files"], responses=DEFAULT_ERROR_RESPONSES)


class FileCreateRequest(BaseModel):
    file_id: str | None = None
    sub_project_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    content: str
    file_type: str = "text"
    description: str | None = None
    category: str | None = None
    sub_category: str | None = None


class FileUpdateRequest(BaseModel):
    content: str


class FileSavedResponse(BaseModel):
    file_id: str
    storage_path: str


class FileMetadataResponse(BaseModel):
    id: str
    sub_project_id: str
    name: str
    file_type: str
    description: str | None
    storage_path: str
    size_bytes: int
    created_at: str | None
    updated_at: str | None


class FileContentResponse(BaseModel):
    content: str
    metadata: FileMetadataResponse


def _metadata_payload(metadata: FileMetadata) -> FileMetadataResponse:
    return FileMetadataResponse(
        id=metadata.id,
        sub_project_id=metadata.sub_project_id,
        name=metadata.name,
        file_type=metadata.file_type,
        description=metadata.description,
        storage_path=metadata.storage_path,
        size_bytes=metadata.size_bytes,
        created_at=metadata.created_at.isoformat() if metadata.created_at else None,
        updated_at=metadata.updated_at.isoformat() if metadata.updated_at else None,
    )


@router.post("/files", status_code=201, response_model=SuccessEnvelope[FileSavedResponse])
async def create_file(
    request: Request,
    payload: FileCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    engine: FileSyncEngine = Depends(get_sync_engine),
) -> dict:
    file_id = payload.file_id or str(uuid4())
    storage_path = await engine.save(
        db,
        tenant_id,
        FileSaveRequest(
            file_id=file_id,
            sub_project_id=payload.sub_project_id,
            name=payload.name,
            content=payload.content,
            file_type=payload.file_type,
            description=payload.description,
            category=payload.category,
            sub_category=payload.sub_category,
        ),
    )
    return success_response(request=request, data=FileSavedResponse(file_id=file_id, storage_path=storage_path))


@router.get("/files/{file_id}", response_model=SuccessEnvelope[FileContentResponse])
async def get_file(
    request: Request,
    file_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    engine: FileSyncEngine = Depends(get_sync_engine),
) -> dict:
    loaded = await engine.load(db, tenant_id, file_id)
    data = FileContentResponse(content=loaded.content, metadata=_metadata_payload(loaded.metadata))
    return success_response(request=request, data=data)


@router.put("/files/{file_id}", response_model=SuccessEnvelope[FileSavedResponse])
async def update_file(
    request: Request,
    file_id: str,
    payload: FileUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    engine: FileSyncEngine = Depends(get_sync_engine),
) -> dict:
    storage_path = await engine.update(db, tenant_id, file_id, payload.content)
    return success_response(request=request, data=FileSavedResponse(file_id=file_id, storage_path=storage_path))


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(
    file_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    engine: FileSyncEngine = Depends(get_sync_engine),
) -> Response:
    # Deleting an absent file is a no-op so client retries stay safe.
    await engine.delete(db, tenant_id, file_id)
    return Response(status_code=204)


@router.get(
    "/sub-projects/{sub_project_id}/files",
    response_model=SuccessEnvelope[list[FileMetadataResponse]],
)
async def list_sub_project_files(
    request: Request,
    sub_project_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    engine: FileSyncEngine = Depends(get_sync_engine),
) -> dict:
    files = await engine.list_files(db, tenant_id, sub_project_id)
    return success_response(request=request, data=[_metadata_payload(item) for item in files])
