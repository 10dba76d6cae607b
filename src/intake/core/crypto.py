"""Field-level encryption for sensitive submission data.

Phone numbers and identifier numbers are stored encrypted with AES-256-GCM
and alongside a salted SHA-256 hash for equality lookups.

Payload format: ``v1:<iv b64>:<tag b64>:<ciphertext b64>``.
"""

from __future__ import annotations

import base64
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.intake.config import get_settings

_VERSION = "v1"
_IV_BYTES = 12
_TAG_BYTES = 16


class CryptoError(ValueError):
    """Raised for a malformed key or an undecryptable payload."""


def _load_key(data_key: str | None = None) -> bytes:
    raw = data_key if data_key is not None else get_settings().DATA_KEY
    try:
        key = base64.b64decode(raw, validate=True)
    except ValueError as exc:
        raise CryptoError("DATA_KEY must be 32-byte base64") from exc
    if len(key) != 32:
        raise CryptoError("DATA_KEY must be 32-byte base64")
    return key


def encrypt_field(plain: str, data_key: str | None = None) -> str:
    """Encrypt a UTF-8 string into a versioned payload."""
    aesgcm = AESGCM(_load_key(data_key))
    iv = os.urandom(_IV_BYTES)
    # AESGCM appends the 16-byte tag to the ciphertext
    sealed = aesgcm.encrypt(iv, plain.encode("utf-8"), None)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return ":".join(
        [
            _VERSION,
            base64.b64encode(iv).decode("ascii"),
            base64.b64encode(tag).decode("ascii"),
            base64.b64encode(ciphertext).decode("ascii"),
        ]
    )


def decrypt_field(payload: str, data_key: str | None = None) -> str:
    """Decrypt a payload produced by :func:`encrypt_field`.

    Raises:
        CryptoError: If the payload is malformed or fails authentication.
    """
    parts = payload.split(":")
    if len(parts) != 4 or parts[0] != _VERSION:
        raise CryptoError("Invalid encrypted payload")

    try:
        iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts[1:])
    except ValueError as exc:
        raise CryptoError("Invalid encrypted payload") from exc

    aesgcm = AESGCM(_load_key(data_key))
    try:
        plain = aesgcm.decrypt(iv, ciphertext + tag, None)
    except (InvalidTag, ValueError) as exc:
        raise CryptoError("Invalid encrypted payload") from exc
    return plain.decode("utf-8")


def hash_field(value: str, salt: str | None = None) -> str:
    """Salted SHA-256 hex digest used for lookups without decryption."""
    salt = salt if salt is not None else get_settings().DATA_HASH_SALT
    return hashlib.sha256(f"{salt}:{value}".encode()).hexdigest()
