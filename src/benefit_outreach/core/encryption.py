"""Credential encryption for practice messaging secrets.

API keys and auth tokens are stored AES-256-GCM encrypted as
``base64(iv):base64(tag):base64(ciphertext)`` with a fresh 12-byte IV
per value.
"""

from __future__ import annotations

import base64
import binascii
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from benefit_outreach.core.exceptions import CredentialEncryptionError
from benefit_outreach.core.log_setup import get_logger

log = get_logger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16
_BASE64_PART = re.compile(r"^[A-Za-z0-9+/]+=*$")


def _parse_key(key: str) -> bytes:
    """Accept a 32-character raw key or a 64-character hex key."""
    if len(key) == 32:
        return key.encode("utf-8")
    try:
        raw = bytes.fromhex(key)
    except ValueError:
        raw = b""
    if len(raw) != 32:
        raise CredentialEncryptionError(
            "ENCRYPTION_KEY must be 32 bytes (64 hex characters)"
        )
    return raw


class CredentialEncryption:
    """AES-256-GCM encrypt/decrypt for credentials stored in the database."""

    def __init__(self, key: str) -> None:
        if not key:
            raise CredentialEncryptionError("ENCRYPTION_KEY environment variable is required")
        self._aesgcm = AESGCM(_parse_key(key))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential.

        Raises:
            CredentialEncryptionError: If plaintext is empty.
        """
        if not plaintext:
            raise CredentialEncryptionError("Plaintext cannot be empty")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
        )

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises:
            CredentialEncryptionError: On empty input, malformed input,
                tampering, or a changed key.
        """
        if not ciphertext:
            raise CredentialEncryptionError("Ciphertext cannot be empty")

        parts = ciphertext.split(":")
        if len(parts) != 3:
            raise CredentialEncryptionError("Invalid ciphertext format")

        try:
            iv, tag, data = (base64.b64decode(part, validate=True) for part in parts)
            plaintext = self._aesgcm.decrypt(iv, data + tag, None)
        except (InvalidTag, binascii.Error, ValueError) as e:
            raise CredentialEncryptionError(
                "Failed to decrypt data - data may be corrupted or encryption key changed",
                cause=e,
            ) from e

        return plaintext.decode("utf-8")

    @staticmethod
    def is_encrypted(value: str | None) -> bool:
        """Check whether a value looks like ``iv:tag:ciphertext``."""
        if not value:
            return False
        parts = value.split(":")
        if len(parts) != 3:
            return False
        return all(_BASE64_PART.match(part) for part in parts)

    @staticmethod
    def generate_key() -> str:
        """Generate a new hex-encoded 32-byte key."""
        return os.urandom(32).hex()


def encrypt_if_present(
    value: str | None,
    encryption: CredentialEncryption,
) -> str | None:
    """Encrypt a value, passing None/empty through as None."""
    if not value:
        return None
    return encryption.encrypt(value)


def decrypt_if_present(
    value: str | None,
    encryption: CredentialEncryption | None,
) -> str | None:
    """Decrypt a stored credential.

    Values that are not in encrypted format are returned unchanged
    (credentials saved before encryption was introduced). Decryption
    failures return None so callers treat the credential as missing.
    """
    if not value:
        return None

    if not CredentialEncryption.is_encrypted(value):
        log.warning("Credential is not encrypted, using stored value as-is")
        return value

    if encryption is None:
        log.error("Encrypted credential found but no encryption key is configured")
        return None

    try:
        return encryption.decrypt(value)
    except CredentialEncryptionError as e:
        log.error("Failed to decrypt credential", error=e.message)
        return None


_encryption: CredentialEncryption | None = None


def get_encryption() -> CredentialEncryption | None:
    """Process-wide encryption helper built from settings.

    Returns None when no key is configured (development).
    """
    global _encryption
    if _encryption is None:
        from benefit_outreach.config import get_settings

        key = get_settings().security.encryption_key
        if not key:
            return None
        _encryption = CredentialEncryption(key)
    return _encryption
