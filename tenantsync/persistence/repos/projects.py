from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.domain.models import Project, SubProject


@dataclass(frozen=True)
class SubProjectLinkage:
    project_id: str
    project_name: str
    sub_project_id: str
    sub_project_name: str


async def get_sub_project_linkage(
    session: AsyncSession, tenant_id: str, sub_project_id: str
) -> SubProjectLinkage | None:
    # Join through projects so a sub-project id from another tenant resolves to None.
    result = await session.execute(
        select(Project.id, Project.name, SubProject.id, SubProject.name)
        .join(SubProject, SubProject.project_id == Project.id)
        .where(SubProject.id == sub_project_id, Project.tenant_id == tenant_id)
    )
    row = result.first()
    if row is None:
        return None
    project_id, project_name, sp_id, sp_name = row
    return SubProjectLinkage(
        project_id=project_id,
        project_name=project_name,
        sub_project_id=sp_id,
        sub_project_name=sp_name,
    )
