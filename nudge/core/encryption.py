"""Token encryption utilities using Fernet symmetric encryption.

Used by the session repository so Strava tokens are never written to disk in
plain text.
"""

from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""


class EncryptionKeyError(EncryptionError):
    """Raised when decryption fails due to wrong encryption key.

    This typically occurs when ENCRYPTION_KEY is not set or changed,
    causing tokens encrypted with a different key to fail decryption.
    """


class TokenCipher:
    """Fernet cipher bound to one key.

    When no key is configured a new one is generated, which only survives
    for the lifetime of the process.
    """

    def __init__(self, key: str | bytes | None = None) -> None:
        if not key:
            logger.warning(
                "ENCRYPTION_KEY not set. Generating a new key (sessions will not survive a restart). "
                "Set ENCRYPTION_KEY with a Fernet key (use Fernet.generate_key())."
            )
            key = Fernet.generate_key()
        if isinstance(key, str):
            key = key.encode()
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid ENCRYPTION_KEY: {e}")
            raise EncryptionError("Invalid ENCRYPTION_KEY format. Must be a Fernet key (base64-encoded string).") from e

    def encrypt(self, token: str) -> str:
        """Encrypt a token string for storage.

        Raises:
            EncryptionError: If encryption fails
        """
        try:
            encrypted = self._fernet.encrypt(token.encode())
            return base64.urlsafe_b64encode(encrypted).decode()
        except Exception as e:
            logger.error(f"Token encryption failed: {e}")
            raise EncryptionError(f"Failed to encrypt token: {e}") from e

    def decrypt(self, encrypted_token: str) -> str:
        """Decrypt a token produced by ``encrypt``.

        Raises:
            EncryptionKeyError: If decryption fails due to wrong encryption key
            EncryptionError: If decryption fails for other reasons
        """
        try:
            encrypted_bytes = base64.urlsafe_b64decode(encrypted_token.encode())
            return self._fernet.decrypt(encrypted_bytes).decode()
        except InvalidToken as e:
            error_msg = (
                "Token decryption failed: Wrong encryption key. "
                "ENCRYPTION_KEY is not set or has changed since the session was saved; "
                "log in again to create a new session."
            )
            logger.error(error_msg)
            raise EncryptionKeyError(error_msg) from e
        except Exception as e:
            logger.error(f"Token decryption failed: {e}")
            raise EncryptionError(f"Failed to decrypt token: {e}") from e
