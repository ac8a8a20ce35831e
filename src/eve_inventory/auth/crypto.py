"""
Token encryption at rest.

Access and refresh tokens are encrypted with Fernet using a key generated
once and kept next to the credential files. The key never leaves the machine.
"""

import logging
import os

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

__all__ = ["TokenCipher", "InvalidToken"]


class TokenCipher:
    """Symmetric encryption for stored token fields."""

    def __init__(self, key: bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def load_or_create(cls, key_path: str) -> "TokenCipher":
        """
        Load the local key, generating and persisting it on first use.

        Args:
            key_path: Path of the key file (created with mode 0600).

        Returns:
            A cipher bound to the persisted key.
        """
        if os.path.exists(key_path):
            with open(key_path, "rb") as f:
                key = f.read().strip()
            return cls(key)

        os.makedirs(os.path.dirname(key_path) or ".", exist_ok=True)
        key = Fernet.generate_key()
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        logger.info(f"Generated token encryption key: {key_path}")
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token. Raises InvalidToken on a wrong key or tampering."""
        return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
