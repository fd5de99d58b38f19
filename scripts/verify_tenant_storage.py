from __future__ import annotations

import argparse
import asyncio
import sys

from tenantsync.core.errors import TenantSyncError
from tenantsync.core.logging import configure_logging
from tenantsync.domain.credentials import CredentialClass
from tenantsync.persistence.db import SessionLocal
from tenantsync.services.crypto.vault import get_vault
from tenantsync.services.storage.connectivity import verify_tenant_storage
from tenantsync.services.storage.factory import StorageClientFactory, ensure_container


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check a tenant's stored storage credential end to end")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument(
        "--class",
        dest="credential_class",
        choices=[cls.value for cls in CredentialClass],
        default=None,
        help="Force a credential class (default: the tenant's preference)",
    )
    return parser


async def _verify(args: argparse.Namespace) -> int:
    desired = CredentialClass(args.credential_class) if args.credential_class else None
    factory = StorageClientFactory(get_vault())
    async with SessionLocal() as session:
        report = await verify_tenant_storage(session, factory, args.tenant, desired)
        if not report.success:
            print(f"connectivity failed using {report.credential_class.value} key: {report.error}")
            return 1
        await session.commit()
        client = await factory.build_client(session, args.tenant, desired)
        async with client:
            container_ready = await ensure_container(client)

    print(f"credential_class={report.credential_class.value}")
    if report.used_fallback:
        print("warning: elevated key missing, fell back to restricted key")
    print(f"container={client.container_name} ready={container_ready}")
    if report.mirror is not None and report.mirror.exists:
        print("mirror_table=present")
    else:
        print("mirror_table=missing; run the setup SQL from the storage-config/setup-sql endpoint")
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_verify(args))
    except TenantSyncError as exc:
        print(f"verify_tenant_storage failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
