from __future__ import annotations

import base64
from dataclasses import replace

import pytest

from tenantsync.core.errors import AuthenticationError
from tenantsync.services.crypto.vault import IV_LENGTH, TAG_LENGTH, CredentialVault, EncryptedValue


def _flip_bit(encoded: str, byte_index: int, bit: int) -> str:
    raw = bytearray(base64.b64decode(encoded))
    raw[byte_index] ^= 1 << bit
    return base64.b64encode(bytes(raw)).decode("ascii")


@pytest.mark.parametrize("plaintext", ["", "https://abc.example.co", "clé-🔑-ключ", "x" * 4096])
def test_roundtrip_preserves_plaintext(plaintext: str) -> None:
    vault = CredentialVault("unit-secret")
    assert vault.decrypt(vault.encrypt(plaintext)) == plaintext


def test_encrypt_produces_fresh_iv_each_call() -> None:
    vault = CredentialVault("unit-secret")
    first = vault.encrypt("same input")
    second = vault.encrypt("same input")
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext
    assert len(base64.b64decode(first.iv)) == IV_LENGTH
    assert len(base64.b64decode(first.tag)) == TAG_LENGTH


@pytest.mark.parametrize("field_name", ["ciphertext", "iv", "tag"])
@pytest.mark.parametrize("byte_index", [0, 5, -1])
@pytest.mark.parametrize("bit", [0, 3, 7])
def test_single_bit_flip_fails_verification(field_name: str, byte_index: int, bit: int) -> None:
    vault = CredentialVault("unit-secret")
    sealed = vault.encrypt("service-role-key")
    tampered = replace(sealed, **{field_name: _flip_bit(getattr(sealed, field_name), byte_index, bit)})
    with pytest.raises(AuthenticationError):
        vault.decrypt(tampered)


def test_wrong_secret_fails_verification() -> None:
    sealed = CredentialVault("secret-a").encrypt("anon-key")
    with pytest.raises(AuthenticationError):
        CredentialVault("secret-b").decrypt(sealed)


def test_malformed_components_fail_as_authentication_errors() -> None:
    vault = CredentialVault("unit-secret")
    sealed = vault.encrypt("value")
    with pytest.raises(AuthenticationError):
        vault.decrypt(replace(sealed, iv="not base64!!"))
    with pytest.raises(AuthenticationError):
        vault.decrypt(replace(sealed, tag=base64.b64encode(b"short").decode("ascii")))


def test_json_triple_roundtrip_and_missing_fields() -> None:
    vault = CredentialVault("unit-secret")
    sealed = vault.encrypt("value")
    stored = sealed.to_json()
    assert set(stored) == {"ciphertext", "iv", "tag"}
    assert vault.decrypt(EncryptedValue.from_json(stored)) == "value"
    with pytest.raises(AuthenticationError):
        EncryptedValue.from_json({"ciphertext": stored["ciphertext"], "iv": stored["iv"]})
    with pytest.raises(AuthenticationError):
        EncryptedValue.from_json("not-an-object")


def test_empty_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        CredentialVault("")
