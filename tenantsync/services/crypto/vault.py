"""Symmetric encryption for tenant storage credentials.

Every secret is stored as a ``{ciphertext, iv, tag}`` triple produced by
AES-256-GCM. The key is derived from one configured secret string, so there
is no key storage and no rotation: changing the secret makes every stored
credential undecryptable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tenantsync.core.config import get_settings
from tenantsync.core.errors import AuthenticationError
from tenantsync.services.crypto.utils import b64decode_str, b64encode_bytes, derive_key


IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass(frozen=True)
class EncryptedValue:
    ciphertext: str
    iv: str
    tag: str

    def to_json(self) -> dict[str, str]:
        return {"ciphertext": self.ciphertext, "iv": self.iv, "tag": self.tag}

    @classmethod
    def from_json(cls, raw: Any) -> EncryptedValue:
        # Stored rows must always carry the full triple; anything else is corruption.
        if not isinstance(raw, dict):
            raise AuthenticationError("encrypted value is not an object")
        try:
            return cls(ciphertext=str(raw["ciphertext"]), iv=str(raw["iv"]), tag=str(raw["tag"]))
        except KeyError as exc:
            raise AuthenticationError(f"encrypted value is missing {exc.args[0]}") from exc


class CredentialVault:
    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("credential encryption secret is empty")
        self._aesgcm = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> EncryptedValue:
        # A fresh random IV per call; GCM must never reuse an IV under the same key.
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return EncryptedValue(
            ciphertext=b64encode_bytes(sealed[:-TAG_LENGTH]),
            iv=b64encode_bytes(iv),
            tag=b64encode_bytes(sealed[-TAG_LENGTH:]),
        )

    def decrypt(self, value: EncryptedValue) -> str:
        try:
            ciphertext = b64decode_str(value.ciphertext)
            iv = b64decode_str(value.iv)
            tag = b64decode_str(value.tag)
        except ValueError as exc:
            raise AuthenticationError("encrypted value is malformed") from exc
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise AuthenticationError("encrypted value has an invalid iv or tag length")
        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise AuthenticationError("credential failed integrity verification") from exc
        return plaintext.decode("utf-8")


@lru_cache
def get_vault() -> CredentialVault:
    # One vault per process, keyed from settings at first use.
    return CredentialVault(get_settings().credential_encryption_secret)
