"""File synchronization across the tenant store and the platform database.

``save`` runs in three phases:

1. Authoritative: upload the blob, then upsert the ``project_files`` row. A
   failed upload leaves the row untouched; a failed row write after a
   successful upload leaves an orphaned blob, which is logged and surfaced.
2. Best effort: resolve project linkage and mirror the row into the tenant's
   ``document_metadata`` table. Failures are logged as warnings.
3. Detached: hand a serialized file event to the webhook dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.core.errors import (
    ConfigurationError,
    DatabaseError,
    MirrorTableMissingError,
    StorageError,
    StorageIOError,
    StorageNotFoundError,
    StoredFileNotFoundError,
)
from tenantsync.domain.credentials import CredentialClass
from tenantsync.domain.models import StoredFile
from tenantsync.persistence.repos import files as files_repo
from tenantsync.persistence.repos import projects as projects_repo
from tenantsync.persistence.repos import tenants as tenants_repo
from tenantsync.persistence.repos.projects import SubProjectLinkage
from tenantsync.services.storage.client import TenantStorageClient
from tenantsync.services.storage.factory import StorageClientFactory, ensure_container
from tenantsync.services.storage.mirror import (
    DEFAULT_CATEGORY,
    MirrorDocument,
    delete_mirror_document,
    upsert_mirror_document,
)
from tenantsync.services.telemetry import increment_counter
from tenantsync.services.webhooks.dispatch import WebhookDispatcher
from tenantsync.services.webhooks.notifier import FILE_CREATED, FILE_UPDATED, WebhookFile, build_file_event


logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    "markdown": "text/markdown; charset=utf-8",
    "json": "application/json; charset=utf-8",
}


def build_storage_path(tenant_id: str, sub_project_id: str, file_id: str, name: str) -> str:
    # Pure function of its inputs so a re-save overwrites the same object.
    return f"{tenant_id}/{sub_project_id}/{file_id}/{name}"


def content_type_for(file_type: str) -> str:
    return _CONTENT_TYPES.get(file_type, "text/plain; charset=utf-8")


@dataclass(frozen=True)
class FileSaveRequest:
    file_id: str
    sub_project_id: str
    name: str
    content: str
    file_type: str = "text"
    description: str | None = None
    category: str | None = None
    sub_category: str | None = None


@dataclass(frozen=True)
class FileMetadata:
    id: str
    tenant_id: str
    sub_project_id: str
    name: str
    file_type: str
    description: str | None
    storage_path: str
    size_bytes: int
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_row(cls, row: StoredFile) -> FileMetadata:
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            sub_project_id=row.sub_project_id,
            name=row.name,
            file_type=row.file_type,
            description=row.description,
            storage_path=row.storage_path,
            size_bytes=int(row.size_bytes or 0),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class LoadedFile:
    content: str
    metadata: FileMetadata


class FileSyncEngine:
    def __init__(self, clients: StorageClientFactory, dispatcher: WebhookDispatcher) -> None:
        self._clients = clients
        self._dispatcher = dispatcher

    async def save(self, session: AsyncSession, tenant_id: str, request: FileSaveRequest) -> str:
        """Write the file and return its storage path.

        Raises ConfigurationError or AuthenticationError before any write when no
        usable credential exists, a StorageError subclass when the upload fails,
        and DatabaseError when the row write fails after the upload.
        """
        client = await self._clients.build_client(session, tenant_id, CredentialClass.ELEVATED)
        async with client:
            await ensure_container(client)
            storage_path = build_storage_path(tenant_id, request.sub_project_id, request.file_id, request.name)
            existed = await files_repo.get_file(session, tenant_id, request.file_id) is not None

            await self._write_authoritative(session, client, tenant_id, request, storage_path)

            linkage = await self._resolve_linkage(session, tenant_id, request.sub_project_id)
            await self._mirror_best_effort(client, tenant_id, request, storage_path, linkage)

        await self._notify(
            session,
            tenant_id,
            FILE_UPDATED if existed else FILE_CREATED,
            request,
            linkage,
        )
        return storage_path

    async def update(self, session: AsyncSession, tenant_id: str, file_id: str, content: str) -> str:
        row = await files_repo.get_file(session, tenant_id, file_id)
        if row is None:
            raise StoredFileNotFoundError("file not found")
        request = FileSaveRequest(
            file_id=row.id,
            sub_project_id=row.sub_project_id,
            name=row.name,
            content=content,
            file_type=row.file_type,
            description=row.description,
        )
        return await self.save(session, tenant_id, request)

    async def load(self, session: AsyncSession, tenant_id: str, file_id: str) -> LoadedFile:
        row = await files_repo.get_file(session, tenant_id, file_id)
        if row is None:
            raise StoredFileNotFoundError("file not found")
        metadata = FileMetadata.from_row(row)
        client = await self._clients.build_client(session, tenant_id, CredentialClass.ELEVATED)
        async with client:
            try:
                data = await client.download(metadata.storage_path)
            except StorageNotFoundError as exc:
                # Row without blob means an earlier save or delete left the stores inconsistent.
                logger.error(
                    "stored_file_blob_missing tenant_id=%s file_id=%s path=%s",
                    tenant_id,
                    file_id,
                    metadata.storage_path,
                )
                raise StorageIOError("file content is missing from tenant storage") from exc
        return LoadedFile(content=data.decode("utf-8", errors="replace"), metadata=metadata)

    async def delete(self, session: AsyncSession, tenant_id: str, file_id: str) -> None:
        row = await files_repo.get_file(session, tenant_id, file_id)
        if row is None:
            return
        storage_path = row.storage_path

        client: TenantStorageClient | None
        try:
            client = await self._clients.build_client(session, tenant_id, CredentialClass.ELEVATED)
        except ConfigurationError as exc:
            logger.warning("stored_file_blob_remove_skipped tenant_id=%s file_id=%s error=%s", tenant_id, file_id, exc)
            client = None

        try:
            if client is not None:
                try:
                    await client.remove([storage_path])
                except StorageError as exc:
                    logger.warning(
                        "stored_file_blob_remove_failed tenant_id=%s file_id=%s path=%s error=%s",
                        tenant_id,
                        file_id,
                        storage_path,
                        exc,
                    )

            try:
                await files_repo.delete_file(session, tenant_id, file_id)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise DatabaseError("failed to delete file record") from exc
            logger.info("stored_file_deleted tenant_id=%s file_id=%s", tenant_id, file_id)

            if client is not None:
                try:
                    await delete_mirror_document(client, file_id)
                except (MirrorTableMissingError, StorageError) as exc:
                    increment_counter("mirror_sync_failures_total")
                    logger.warning("mirror_delete_failed tenant_id=%s file_id=%s error=%s", tenant_id, file_id, exc)
        finally:
            if client is not None:
                await client.aclose()

    async def list_files(self, session: AsyncSession, tenant_id: str, sub_project_id: str) -> list[FileMetadata]:
        rows = await files_repo.list_files(session, tenant_id, sub_project_id)
        return [FileMetadata.from_row(row) for row in rows]

    async def get_file_metadata(self, session: AsyncSession, tenant_id: str, file_id: str) -> FileMetadata:
        row = await files_repo.get_file(session, tenant_id, file_id)
        if row is None:
            raise StoredFileNotFoundError("file not found")
        return FileMetadata.from_row(row)

    async def _write_authoritative(
        self,
        session: AsyncSession,
        client: TenantStorageClient,
        tenant_id: str,
        request: FileSaveRequest,
        storage_path: str,
    ) -> StoredFile:
        content = request.content.encode("utf-8")
        # Upload errors propagate untouched; the row is never written for a failed upload.
        await client.upload(storage_path, content, content_type=content_type_for(request.file_type))
        try:
            row = await files_repo.upsert_file(
                session,
                file_id=request.file_id,
                tenant_id=tenant_id,
                sub_project_id=request.sub_project_id,
                name=request.name,
                file_type=request.file_type,
                description=request.description,
                storage_path=storage_path,
                size_bytes=len(content),
            )
            if row is None:
                raise DatabaseError("file id is already owned by another tenant")
            await session.commit()
        except (SQLAlchemyError, DatabaseError) as exc:
            await session.rollback()
            increment_counter("orphaned_blobs_total")
            logger.error(
                "stored_file_write_failed orphaned_blob tenant_id=%s file_id=%s path=%s error=%s",
                tenant_id,
                request.file_id,
                storage_path,
                exc,
            )
            if isinstance(exc, DatabaseError):
                raise
            raise DatabaseError("failed to write file record") from exc
        logger.info("stored_file_saved tenant_id=%s file_id=%s size_bytes=%s", tenant_id, request.file_id, len(content))
        return row

    async def _resolve_linkage(
        self, session: AsyncSession, tenant_id: str, sub_project_id: str
    ) -> SubProjectLinkage | None:
        try:
            return await projects_repo.get_sub_project_linkage(session, tenant_id, sub_project_id)
        except SQLAlchemyError as exc:
            logger.warning(
                "sub_project_linkage_failed tenant_id=%s sub_project_id=%s error=%s",
                tenant_id,
                sub_project_id,
                exc,
            )
            return None

    async def _mirror_best_effort(
        self,
        client: TenantStorageClient,
        tenant_id: str,
        request: FileSaveRequest,
        storage_path: str,
        linkage: SubProjectLinkage | None,
    ) -> None:
        document = MirrorDocument(
            id=request.file_id,
            title=request.name,
            url=storage_path,
            schema=request.file_type,
            category=request.category or DEFAULT_CATEGORY,
            sub_category=request.sub_category,
            project_id=linkage.project_id if linkage is not None else None,
            sub_project_id=request.sub_project_id,
        )
        try:
            await upsert_mirror_document(client, document)
        except MirrorTableMissingError:
            increment_counter("mirror_sync_failures_total")
            logger.warning("mirror_table_missing tenant_id=%s file_id=%s", tenant_id, request.file_id)
        except StorageError as exc:
            increment_counter("mirror_sync_failures_total")
            logger.warning("mirror_sync_failed tenant_id=%s file_id=%s error=%s", tenant_id, request.file_id, exc)

    async def _notify(
        self,
        session: AsyncSession,
        tenant_id: str,
        event: str,
        request: FileSaveRequest,
        linkage: SubProjectLinkage | None,
    ) -> None:
        try:
            endpoint = await tenants_repo.get_webhook_url(session, tenant_id)
        except SQLAlchemyError as exc:
            logger.warning("webhook_endpoint_lookup_failed tenant_id=%s error=%s", tenant_id, exc)
            return
        if not endpoint:
            return
        file_event = build_file_event(
            tenant_id=tenant_id,
            event=event,
            file_meta=WebhookFile(
                id=request.file_id,
                name=request.name,
                file_type=request.file_type,
                description=request.description,
                category=request.category,
                sub_category=request.sub_category,
            ),
            content=request.content,
            linkage=linkage,
            sub_project_id=request.sub_project_id,
        )
        self._dispatcher.dispatch(file_event, endpoint)
