from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.domain.models import StoredFile


_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


async def get_file(session: AsyncSession, tenant_id: str, file_id: str) -> StoredFile | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        select(StoredFile).where(StoredFile.id == file_id, StoredFile.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def list_files(session: AsyncSession, tenant_id: str, sub_project_id: str) -> list[StoredFile]:
    result = await session.execute(
        select(StoredFile)
        .where(StoredFile.tenant_id == tenant_id, StoredFile.sub_project_id == sub_project_id)
        .order_by(StoredFile.name, StoredFile.id)
    )
    return list(result.scalars().all())


async def upsert_file(
    session: AsyncSession,
    *,
    file_id: str,
    tenant_id: str,
    sub_project_id: str,
    name: str,
    file_type: str,
    description: str | None,
    storage_path: str,
    size_bytes: int,
) -> StoredFile | None:
    """Insert the file row or update it in place on id conflict.

    The conflict update only applies to rows owned by the same tenant; a
    colliding id from another tenant leaves that row untouched and returns None.
    """
    insert = _INSERTS.get(session.get_bind().dialect.name)
    if insert is None:
        raise RuntimeError(f"upsert not supported for dialect {session.get_bind().dialect.name}")
    values = {
        "id": file_id,
        "tenant_id": tenant_id,
        "sub_project_id": sub_project_id,
        "name": name,
        "file_type": file_type,
        "description": description,
        "storage_path": storage_path,
        "size_bytes": size_bytes,
    }
    stmt = insert(StoredFile).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[StoredFile.id],
        set_={
            "sub_project_id": stmt.excluded.sub_project_id,
            "name": stmt.excluded.name,
            "file_type": stmt.excluded.file_type,
            "description": func.coalesce(stmt.excluded.description, StoredFile.description),
            "storage_path": stmt.excluded.storage_path,
            "size_bytes": stmt.excluded.size_bytes,
            "updated_at": func.now(),
        },
        where=StoredFile.tenant_id == tenant_id,
    )
    await session.execute(stmt)
    # Re-read so callers see server-side timestamps after the upsert.
    result = await session.execute(
        select(StoredFile)
        .where(StoredFile.id == file_id, StoredFile.tenant_id == tenant_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def delete_file(session: AsyncSession, tenant_id: str, file_id: str) -> bool:
    result = await session.execute(
        delete(StoredFile).where(StoredFile.id == file_id, StoredFile.tenant_id == tenant_id)
    )
    return bool(result.rowcount)
