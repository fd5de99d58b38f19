from tenantsync.services.crypto.vault import CredentialVault, EncryptedValue, get_vault

__all__ = [
    "CredentialVault",
    "EncryptedValue",
    "get_vault",
]
