from tenantsync.services.storage.client import TenantStorageClient
from tenantsync.services.storage.factory import StorageClientFactory, ensure_container, select_key

__all__ = ["StorageClientFactory", "TenantStorageClient", "ensure_container", "select_key"]
