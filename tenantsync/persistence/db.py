from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tenantsync.core.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # The sqlite test database keeps its default pool.
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=max(1, int(settings.db_pool_size)),
            max_overflow=max(0, int(settings.db_max_overflow)),
            pool_recycle=1800,
        )
    return create_async_engine(settings.database_url, **kwargs)


engine = build_engine(get_settings())
# Rows stay readable after commit; the sync engine builds views from them.
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def database_reachable(session: AsyncSession) -> bool:
    # Lightweight read used by the health route.
    try:
        await session.execute(select(1))
        return True
    except Exception:
        return False
