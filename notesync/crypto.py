"""AES-GCM sealing for stored upstream access tokens.

Sealed format: base64(iv[12] || ciphertext+tag). The key is the secret
padded with ``"0"`` (or truncated) to 32 bytes.
"""
from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_IV_BYTES = 12


class TokenDecryptionError(ValueError):
    """Sealed token is malformed or was sealed with a different secret."""


def _derive_key(secret: str) -> bytes:
    return secret.encode("utf-8").ljust(32, b"0")[:32]


def encrypt_token(token: str, secret: str) -> str:
    iv = os.urandom(_IV_BYTES)
    sealed = AESGCM(_derive_key(secret)).encrypt(iv, token.encode("utf-8"), None)
    return base64.b64encode(iv + sealed).decode("ascii")


def decrypt_token(encrypted_token: str, secret: str) -> str:
    try:
        combined = base64.b64decode(encrypted_token, validate=True)
    except (ValueError, TypeError) as exc:
        raise TokenDecryptionError("Sealed token is not valid base64") from exc
    if len(combined) <= _IV_BYTES:
        raise TokenDecryptionError("Sealed token is too short")
    iv, sealed = combined[:_IV_BYTES], combined[_IV_BYTES:]
    try:
        plain = AESGCM(_derive_key(secret)).decrypt(iv, sealed, None)
    except InvalidTag as exc:
        raise TokenDecryptionError("Sealed token failed authentication") from exc
    return plain.decode("utf-8")
