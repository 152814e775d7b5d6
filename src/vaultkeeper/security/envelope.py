"""
Envelope codec for vault payloads.

Every call to :func:`encrypt` derives a fresh key from the user's password and
a new random salt, so two records sealed under the same password share
neither key nor ciphertext.

Blob layout (persisted and transmitted as-is)::

    [salt:16][nonce:12][ciphertext + GCM tag:variable]

There is no separate password check: a wrong password and a tampered blob both
fail tag verification and surface as :class:`AuthenticationFailedError`.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.exceptions import (
    AuthenticationFailedError,
    EncryptionError,
    MalformedBlobError,
)
from .kdf import SALT_SIZE, derive_key, generate_salt

NONCE_SIZE = 12  # 96-bit GCM nonce
HEADER_SIZE = SALT_SIZE + NONCE_SIZE


def encrypt(plaintext: bytes, password: str) -> bytes:
    """
    Seal ``plaintext`` under a key derived from ``password``.

    - 16-byte random salt
    - PBKDF2-HMAC-SHA256 key (:func:`vaultkeeper.security.kdf.derive_key`)
    - AES-256-GCM with a fresh 96-bit nonce, no associated data

    Returns ``salt || nonce || ciphertext``.
    """
    try:
        salt = generate_salt()
        nonce = os.urandom(NONCE_SIZE)
    except NotImplementedError as e:
        raise EncryptionError(f"failed to gather randomness: {e}") from e

    key = derive_key(password, salt)
    ct = AESGCM(key).encrypt(nonce, bytes(plaintext), None)
    return salt + nonce + ct


def decrypt(blob: bytes, password: str) -> bytes:
    """
    Open a blob produced by :func:`encrypt`.

    Raises :class:`MalformedBlobError` when the blob cannot hold a salt and a
    nonce, and :class:`AuthenticationFailedError` when the tag does not verify.
    """
    if len(blob) < SALT_SIZE:
        raise MalformedBlobError("invalid encrypted data: too short for salt")
    if len(blob) < HEADER_SIZE:
        raise MalformedBlobError("invalid encrypted data: too short for nonce")

    salt = bytes(blob[:SALT_SIZE])
    nonce = bytes(blob[SALT_SIZE:HEADER_SIZE])
    ct = bytes(blob[HEADER_SIZE:])

    key = derive_key(password, salt)
    try:
        return AESGCM(key).decrypt(nonce, ct, None)
    except InvalidTag as e:
        raise AuthenticationFailedError("decryption failed: authentication tag mismatch") from e


def encrypt_file(path: str | Path, password: str) -> bytes:
    """
    Read ``path`` fully into memory and seal it.

    ``OSError`` from reading is propagated unchanged.
    """
    content = Path(path).expanduser().read_bytes()
    return encrypt(content, password)


def encrypt_json(obj: Dict[str, Any], password: str) -> bytes:
    raw = json.dumps(obj, ensure_ascii=False).encode("utf-8")
    return encrypt(raw, password)


def decrypt_json(blob: bytes, password: str) -> Dict[str, Any]:
    raw = decrypt(blob, password)
    return json.loads(raw.decode("utf-8"))
