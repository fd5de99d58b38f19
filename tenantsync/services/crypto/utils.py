from __future__ import annotations

import base64
import binascii
import hashlib


def b64encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def b64decode_str(value: str) -> bytes:
    """Decode strict base64 text; raises ValueError on malformed input."""
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError("value is not valid base64") from exc


def derive_key(secret: str) -> bytes:
    # SHA-256 of the configured secret gives a fixed 32-byte AES key without persisting key material.
    return hashlib.sha256(secret.encode("utf-8")).digest()
