from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantsync.domain.models import Tenant


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def ensure_tenant(session: AsyncSession, tenant_id: str) -> Tenant:
    # Credential and webhook admin calls may arrive before any other tenant data exists.
    tenant = await get_tenant(session, tenant_id)
    if tenant is None:
        tenant = Tenant(id=tenant_id)
        session.add(tenant)
        await session.flush()
    return tenant


async def get_webhook_url(session: AsyncSession, tenant_id: str) -> str | None:
    result = await session.execute(select(Tenant.webhook_url).where(Tenant.id == tenant_id))
    value = result.scalar_one_or_none()
    return value or None


async def set_webhook_url(session: AsyncSession, tenant_id: str, webhook_url: str | None) -> Tenant:
    tenant = await ensure_tenant(session, tenant_id)
    tenant.webhook_url = webhook_url or None
    return tenant
