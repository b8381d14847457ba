"""Secret store - encrypts per-user credentials at rest.

Tokens are ``urlsafe_b64(salt + fernet_token)``; the Fernet key is derived
from ENCRYPTION_KEY with PBKDF2-HMAC-SHA256 and the per-message salt.
"""
import base64
import binascii
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import settings

SALT_LENGTH = 16
ITERATIONS = 100_000


class SecretStoreError(Exception):
    """Raised when a secret cannot be encrypted or decrypted."""


class SecretStore:
    """Encrypt and decrypt short secrets (API keys, OAuth tokens)."""

    def __init__(self, key: Optional[str]):
        self._key = key

    def _fernet(self, salt: bytes) -> Fernet:
        if not self._key:
            raise SecretStoreError("ENCRYPTION_KEY not set in environment")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=ITERATIONS,
        )
        derived = kdf.derive(self._key.encode())
        return Fernet(base64.urlsafe_b64encode(derived))

    def encrypt(self, text: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        token = self._fernet(salt).encrypt(text.encode())
        return base64.urlsafe_b64encode(salt + token).decode()

    def decrypt(self, encrypted: str) -> str:
        try:
            raw = base64.urlsafe_b64decode(encrypted.encode())
        except (binascii.Error, ValueError) as e:
            raise SecretStoreError(f"Malformed secret: {e}") from e

        if len(raw) <= SALT_LENGTH:
            raise SecretStoreError("Malformed secret: too short")

        salt, token = raw[:SALT_LENGTH], raw[SALT_LENGTH:]
        try:
            return self._fernet(salt).decrypt(token).decode()
        except InvalidToken as e:
            raise SecretStoreError("Secret could not be decrypted with the configured key") from e


# Global instance
secret_store = SecretStore(settings.encryption_key)
