from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from tenantsync.services.crypto.vault import EncryptedValue


class CredentialClass(str, Enum):
    # Elevated keys bypass the tenant's access policies; restricted keys are bound by them.
    ELEVATED = "elevated"
    RESTRICTED = "restricted"


@dataclass(frozen=True)
class StoredKey:
    # Tagged so callers branch on `present`, never on a missing attribute.
    credential_class: CredentialClass
    present: bool
    value: EncryptedValue | None = None

    @classmethod
    def absent(cls, credential_class: CredentialClass) -> StoredKey:
        return cls(credential_class=credential_class, present=False, value=None)


@dataclass(frozen=True)
class TenantCredential:
    tenant_id: str
    endpoint_url: EncryptedValue
    restricted_key: StoredKey
    elevated_key: StoredKey
    container_name: str
    prefer_elevated: bool
    mirror_schema_ready: bool
    is_configured: bool
    last_verified_at: datetime | None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def usable(self) -> bool:
        return self.is_configured and (self.restricted_key.present or self.elevated_key.present)

    def key_for(self, credential_class: CredentialClass) -> StoredKey:
        if credential_class is CredentialClass.ELEVATED:
            return self.elevated_key
        return self.restricted_key

    @property
    def present_classes(self) -> list[CredentialClass]:
        return [key.credential_class for key in (self.restricted_key, self.elevated_key) if key.present]


@dataclass(frozen=True)
class CredentialUpdate:
    # None means "not supplied": updates keep the stored value for that field.
    endpoint_url: str | None = None
    restricted_key: str | None = None
    elevated_key: str | None = None
    container_name: str | None = None
    prefer_elevated: bool | None = None
