"""
Credential vault for the workflow engine.

Secrets referenced by steps and connectors are stored as Fernet
(AES-128-CBC + HMAC) tokens and only decrypted just before a step
needs them.
"""

import json
from functools import lru_cache
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import get_settings


def generate_encryption_key() -> str:
    """Return a fresh urlsafe-base64 Fernet key suitable for ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()


class CredentialVault:
    """
    Manages encryption and decryption of sensitive credentials using Fernet.
    """

    def __init__(self, key: Optional[str] = None):
        """
        Initialize the vault with an encryption key.

        Args:
            key: Encryption key (base64 encoded). If None, uses ENCRYPTION_KEY from settings.

        Raises:
            ValueError: If no key is configured or the key is malformed
        """
        if key is None:
            key = get_settings().ENCRYPTION_KEY
        if not key:
            raise ValueError("ENCRYPTION_KEY is not configured")

        self.cipher = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string using Fernet.

        Args:
            plaintext: Plain text to encrypt

        Returns:
            Encrypted string (base64 encoded)
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode()
        encrypted = self.cipher.encrypt(plaintext)
        return encrypted.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a string using Fernet.

        Raises:
            ValueError: If decryption fails
        """
        try:
            if isinstance(ciphertext, str):
                ciphertext = ciphertext.encode()
            decrypted = self.cipher.decrypt(ciphertext)
            return decrypted.decode()
        except InvalidToken as e:
            raise ValueError(f"Decryption failed: {e.__class__.__name__}")

    def encrypt_json(self, data: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(data))

    def decrypt_json(self, ciphertext: str) -> dict[str, Any]:
        return json.loads(self.decrypt(ciphertext))


@lru_cache()
def get_credential_vault() -> CredentialVault:
    """Vault bound to the configured ENCRYPTION_KEY."""
    return CredentialVault()
