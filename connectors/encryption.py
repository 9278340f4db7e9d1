"""
At-rest encryption for channel secrets.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Access/refresh tokens and the custom instance details captured during a
handshake (instance URLs, app passwords, …) go through the same cipher.

The key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).  Without a key, values are stored as
plaintext and a warning is logged once.  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)


class SecretCipher:
    """Thin wrapper around Fernet that degrades to a no-op without a key."""

    def __init__(self, key: Optional[str | bytes] = None) -> None:
        self._fernet: Optional[Fernet] = None
        if key:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if self._fernet is None or not plaintext:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Values written before encryption was enabled are not valid Fernet
        tokens; they are returned unchanged.
        """
        if self._fernet is None or not ciphertext:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            return ciphertext


_cipher: Optional[SecretCipher] = None


def get_cipher() -> SecretCipher:
    """Lazy-initialise the process-wide cipher once."""
    global _cipher
    if _cipher is None:
        if not config.token_encryption_key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set — channel secrets will be stored as plaintext"
            )
        _cipher = SecretCipher(config.token_encryption_key or None)
        if _cipher.enabled:
            logger.info("Channel secret encryption enabled (Fernet)")
    return _cipher


def encrypt_secret(plaintext: str) -> str:
    return get_cipher().encrypt(plaintext)


def decrypt_secret(ciphertext: str) -> str:
    return get_cipher().decrypt(ciphertext)
