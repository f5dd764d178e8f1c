"""Credential encryption for persisted sessions.

Uses Fernet symmetric encryption so provider API keys are never written to
storage in plaintext. The encryption key is loaded from the SECRETS_KEY
environment variable.
"""

import base64
import hashlib
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from playground.db.database import database_path


class SecretsError(Exception):
    """Error related to secrets management."""

    pass


def _derive_key(key_material: str) -> bytes:
    """Derive a valid Fernet key (32 bytes, base64-encoded)."""
    key_hash = hashlib.sha256(key_material.encode()).digest()
    return base64.urlsafe_b64encode(key_hash)


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Get or create the Fernet cipher for encryption.

    The key is derived from SECRETS_KEY environment variable.
    If not set, uses a deterministic key based on DATABASE_PATH for development.
    """
    key_material = os.environ.get("SECRETS_KEY")

    if not key_material:
        # Development fallback: NOT SECURE FOR PRODUCTION
        key_material = f"dev-secrets-key-{database_path()}"

    return Fernet(_derive_key(key_material))


def encrypt_secret(value: str) -> str:
    """Encrypt a credential. Empty values stay empty.

    Args:
        value: The plaintext credential

    Returns:
        Base64-encoded encrypted value
    """
    if not value:
        return ""
    encrypted = _get_fernet().encrypt(value.encode("utf-8"))
    return encrypted.decode("utf-8")


def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a credential produced by encrypt_secret.

    Args:
        encrypted_value: Base64-encoded encrypted value

    Returns:
        The plaintext credential

    Raises:
        SecretsError: If decryption fails
    """
    if not encrypted_value:
        return ""
    try:
        decrypted = _get_fernet().decrypt(encrypted_value.encode("utf-8"))
        return decrypted.decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise SecretsError(f"Failed to decrypt secret: {e}") from e
