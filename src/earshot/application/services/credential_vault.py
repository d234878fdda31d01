"""Symmetric encryption of provider credentials at rest.

Hey future me - every OAuth token we store goes through seal() before it touches the
database and through unseal() right before a provider call. Format of a sealed value:

    base64( nonce[12 bytes] || AES-256-GCM ciphertext || tag[16 bytes] )

The key is NOT derived with a KDF. The configured secret is UTF-8 encoded, right-padded
with "0" and cut to 32 bytes. Rows written by earlier deployments use the same rule, so
changing it makes every stored token unreadable. Rotating ENCRYPTION_KEY has the same
effect: all users have to link their accounts again.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from earshot.domain.exceptions import DecryptionError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def derive_key(secret: str) -> bytes:
    """Turn the configured secret into a 32 byte AES key (pad with "0", truncate)."""
    return secret.encode("utf-8").ljust(KEY_SIZE, b"0")[:KEY_SIZE]


class CredentialVault:
    """Seals and unseals credential strings with AES-256-GCM."""

    def __init__(self, secret: str | None) -> None:
        self._aesgcm: AESGCM | None = None
        if secret and secret.strip():
            self._aesgcm = AESGCM(derive_key(secret))

    @property
    def is_configured(self) -> bool:
        return self._aesgcm is not None

    def _cipher(self) -> AESGCM:
        if self._aesgcm is None:
            raise DecryptionError("ENCRYPTION_KEY is not configured")
        return self._aesgcm

    def seal(self, plaintext: str) -> str:
        """Encrypt plaintext with a fresh random nonce."""
        cipher = self._cipher()
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def unseal(self, ciphertext: str) -> str:
        """Decrypt a value produced by seal().

        Raises:
            DecryptionError: key missing, input malformed, or authentication failed
        """
        cipher = self._cipher()
        try:
            combined = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError) as e:
            raise DecryptionError("Sealed credential is not valid base64") from e

        if len(combined) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Sealed credential is too short")

        nonce, body = combined[:NONCE_SIZE], combined[NONCE_SIZE:]
        try:
            plaintext = cipher.decrypt(nonce, body, None)
        except InvalidTag as e:
            # Wrong key or tampered row. Log without the payload.
            logger.error("Credential authentication failed (wrong key or corrupted row)")
            raise DecryptionError("Sealed credential failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Sealed credential is not valid UTF-8") from e
