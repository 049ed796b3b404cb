"""Credential service — turns stored password blobs into cleartext for the Xtream client."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from tvsync.errors import DecryptionFailed

logger = logging.getLogger(__name__)

PLAIN_PREFIX = "plain:"


class CredentialService:
    """Decrypts source password blobs.

    Blobs prefixed with ``plain:`` (or carrying no recognised prefix) are
    cleartext. Anything else goes to *decryptor*, which the host application
    provides (keychain, KMS, ...). Decryption happens only when a client is
    built and the result is never persisted or logged.
    """

    def __init__(
        self,
        decryptor: Optional[Callable[[str], str]] = None,
        encrypted_prefix: str = "enc:",
    ):
        self._decryptor = decryptor
        self.encrypted_prefix = encrypted_prefix

    def is_encrypted(self, blob: Optional[str]) -> bool:
        return bool(blob) and blob.startswith(self.encrypted_prefix)

    def decrypt(self, blob: Optional[str]) -> str:
        if not blob:
            raise DecryptionFailed("No credential stored")
        if blob.startswith(PLAIN_PREFIX):
            return blob[len(PLAIN_PREFIX):]
        if not self.is_encrypted(blob):
            return blob
        if self._decryptor is None:
            raise DecryptionFailed("Credential is encrypted but no decryptor is configured")
        try:
            value = self._decryptor(blob[len(self.encrypted_prefix):])
        except DecryptionFailed:
            raise
        except Exception as e:
            logger.error(f"Credential decryption failed: {type(e).__name__}")
            raise DecryptionFailed("Credential could not be decrypted") from e
        if not value:
            raise DecryptionFailed("Credential decrypted to an empty value")
        return value
