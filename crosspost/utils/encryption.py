"""
Encryption utilities for stored OAuth tokens

Tokens are encrypted with Fernet (AES-128-CBC + HMAC) before they reach the
database and decrypted when an account is loaded.
"""
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger


class TokenCipher:
    """Fernet cipher bound to one key."""

    def __init__(self, key: Optional[str] = None):
        """
        Args:
            key: Urlsafe base64 Fernet key. A throwaway key is generated when
                omitted, which is only useful for tests and local runs.
        """
        if not key:
            logger.warning("No ENCRYPTION_KEY configured, generating an ephemeral key")
            key = Fernet.generate_key().decode()
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        """Encrypt a string value. None passes through."""
        if value is None:
            return None
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, encrypted_value: Optional[str]) -> Optional[str]:
        """
        Decrypt an encrypted string value.

        Returns:
            Decrypted plain text string, or None if decryption fails
        """
        if encrypted_value is None:
            return None
        try:
            return self._fernet.decrypt(encrypted_value.encode()).decode()
        except InvalidToken:
            logger.error("Decryption failed: Invalid token or encryption key changed")
            return None
