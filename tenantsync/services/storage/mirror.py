"""Tenant-owned metadata mirror.

Each saved file is mirrored as one row of ``document_metadata`` in the tenant's
own database so the tenant's tooling can browse documents without reaching the
platform. The column layout is a fixed contract with tenant-side consumers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from tenantsync.core.errors import (
    ConfigurationError,
    MirrorTableMissingError,
    StorageError,
    StorageNotFoundError,
)
from tenantsync.domain.credentials import CredentialClass
from tenantsync.services.storage.client import TenantStorageClient


logger = logging.getLogger(__name__)

MIRROR_TABLE = "document_metadata"

MIRROR_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS public.document_metadata (
  id TEXT PRIMARY KEY,
  title TEXT,
  url TEXT,
  created_at TIMESTAMPTZ DEFAULT now(),
  schema TEXT,
  category TEXT,
  sub_category TEXT,
  project_id TEXT,
  sub_project_id TEXT,
  source TEXT
);

CREATE INDEX IF NOT EXISTS idx_document_metadata_project_id ON public.document_metadata(project_id);
CREATE INDEX IF NOT EXISTS idx_document_metadata_sub_project_id ON public.document_metadata(sub_project_id);
CREATE INDEX IF NOT EXISTS idx_document_metadata_category ON public.document_metadata(category);
"""

DEFAULT_SOURCE = "project"
DEFAULT_CATEGORY = "documents"

_COLUMNS = (
    "id",
    "title",
    "url",
    "created_at",
    "schema",
    "category",
    "sub_category",
    "project_id",
    "sub_project_id",
    "source",
)


@dataclass(frozen=True)
class MirrorDocument:
    id: str
    title: str | None = None
    url: str | None = None
    schema: str | None = None
    category: str | None = None
    sub_category: str | None = None
    project_id: str | None = None
    sub_project_id: str | None = None
    source: str | None = DEFAULT_SOURCE
    created_at: str | None = None

    def to_row(self) -> dict[str, Any]:
        row = {column: getattr(self, column) for column in _COLUMNS}
        if row["created_at"] is None:
            row["created_at"] = datetime.now(timezone.utc).isoformat()
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> MirrorDocument:
        values = {column: row.get(column) for column in _COLUMNS}
        values["id"] = str(values["id"])
        return cls(**values)


@dataclass(frozen=True)
class MirrorStatus:
    exists: bool
    setup_sql: str | None = None
    error: str | None = None

    @property
    def setup_required(self) -> bool:
        return not self.exists


def _missing(exc: Exception) -> MirrorTableMissingError:
    error = MirrorTableMissingError(
        f"{MIRROR_TABLE} table does not exist in the tenant database",
        setup_sql=MIRROR_TABLE_SQL,
    )
    error.__cause__ = exc
    return error


async def check_mirror_table(client: TenantStorageClient) -> MirrorStatus:
    try:
        await client.select_rows(MIRROR_TABLE, columns="id", limit=1)
    except StorageNotFoundError as exc:
        return MirrorStatus(exists=False, setup_sql=MIRROR_TABLE_SQL, error=str(exc))
    except StorageError as exc:
        logger.warning("mirror_table_check_failed error=%s", exc)
        return MirrorStatus(exists=False, error=str(exc))
    return MirrorStatus(exists=True)


async def upsert_mirror_document(client: TenantStorageClient, document: MirrorDocument) -> None:
    try:
        await client.upsert_rows(MIRROR_TABLE, [document.to_row()], on_conflict="id")
    except StorageNotFoundError as exc:
        raise _missing(exc) from exc


async def delete_mirror_document(client: TenantStorageClient, document_id: str) -> None:
    try:
        await client.delete_rows(MIRROR_TABLE, filters={"id": document_id})
    except StorageNotFoundError as exc:
        raise _missing(exc) from exc


async def list_mirror_documents(
    client: TenantStorageClient,
    *,
    project_id: str | None = None,
    sub_project_id: str | None = None,
    category: str | None = None,
    sub_category: str | None = None,
    source: str | None = None,
    limit: int | None = None,
) -> list[MirrorDocument]:
    filters = {
        key: value
        for key, value in (
            ("project_id", project_id),
            ("sub_project_id", sub_project_id),
            ("category", category),
            ("sub_category", sub_category),
            ("source", source),
        )
        if value
    }
    try:
        rows = await client.select_rows(
            MIRROR_TABLE,
            filters=filters,
            order="created_at.desc",
            limit=limit,
        )
    except StorageNotFoundError as exc:
        raise _missing(exc) from exc
    return [MirrorDocument.from_row(row) for row in rows]


async def initialize_mirror_schema(client: TenantStorageClient) -> None:
    """Create the mirror table through the tenant's exec_sql function.

    DDL needs the elevated key; a restricted client is rejected before any call
    so the admin gets the setup SQL to run by hand instead.
    """
    if client.credential_class is not CredentialClass.ELEVATED:
        raise ConfigurationError("mirror table initialization requires an elevated key")
    await client.execute_sql(MIRROR_TABLE_SQL)
    logger.info("mirror_table_initialized endpoint=%s", client.endpoint_url)
