from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite file before any tenantsync module reads them.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), f'tenantsync_test_{os.getpid()}.db')}",
)
os.environ.setdefault("CREDENTIAL_ENCRYPTION_SECRET", "test-credential-encryption-secret")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("AUTH_DEV_BYPASS", "false")

import pytest  # noqa: E402

from tenantsync.domain.models import Base  # noqa: E402
from tenantsync.persistence.db import engine  # noqa: E402
from tenantsync.services.telemetry import reset_telemetry  # noqa: E402


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Fresh tables per test; dispose so pooled connections never outlive their event loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_telemetry() -> None:
    reset_telemetry()
    yield
    reset_telemetry()
