"""Symmetric encryption for OAuth tokens stored at rest."""

from __future__ import annotations

import base64
import hashlib
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

if TYPE_CHECKING:
    from collections.abc import Sequence


def _derive_key(secret_key: str) -> bytes:
    """Derive a Fernet key from an application secret using SHA-256."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_value(plaintext: str, secret_key: str) -> str:
    """Encrypt a string with the current secret and return URL-safe ciphertext."""
    f = Fernet(_derive_key(secret_key))
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(
    ciphertext: str,
    secret_key: str,
    fallback_keys: Sequence[str] = (),
) -> str:
    """Decrypt a ciphertext string. Raises ValueError on failure.

    ``fallback_keys`` are retired secrets tried after ``secret_key``, so rows
    written before a key rotation stay readable.
    """
    keys = [secret_key, *fallback_keys]
    f = MultiFernet([Fernet(_derive_key(key)) for key in keys])
    try:
        return f.decrypt(ciphertext.encode()).decode()
    except (InvalidToken, UnicodeError) as exc:
        raise ValueError("Failed to decrypt credential data") from exc
