"""Tests for credential encryption."""

from __future__ import annotations

import pytest

from benefit_outreach.core.encryption import (
    CredentialEncryption,
    decrypt_if_present,
    encrypt_if_present,
)
from benefit_outreach.core.exceptions import CredentialEncryptionError

HEX_KEY = "0f" * 32


@pytest.fixture
def encryption() -> CredentialEncryption:
    return CredentialEncryption(HEX_KEY)


class TestCredentialEncryption:
    """AES-256-GCM credential encryption."""

    def test_round_trip(self, encryption):
        ciphertext = encryption.encrypt("SG.secret-key")

        assert ciphertext != "SG.secret-key"
        assert len(ciphertext.split(":")) == 3
        assert encryption.decrypt(ciphertext) == "SG.secret-key"

    def test_fresh_iv_per_call(self, encryption):
        assert encryption.encrypt("same") != encryption.encrypt("same")

    def test_raw_32_character_key(self):
        encryption = CredentialEncryption("k" * 32)
        assert encryption.decrypt(encryption.encrypt("token")) == "token"

    @pytest.mark.parametrize("key", ["short", "zz" * 32, "ab" * 20])
    def test_invalid_key(self, key):
        with pytest.raises(CredentialEncryptionError, match="32 bytes"):
            CredentialEncryption(key)

    def test_missing_key(self):
        with pytest.raises(CredentialEncryptionError, match="required"):
            CredentialEncryption("")

    def test_empty_plaintext(self, encryption):
        with pytest.raises(CredentialEncryptionError, match="Plaintext cannot be empty"):
            encryption.encrypt("")

    def test_empty_ciphertext(self, encryption):
        with pytest.raises(CredentialEncryptionError, match="Ciphertext cannot be empty"):
            encryption.decrypt("")

    def test_malformed_ciphertext(self, encryption):
        with pytest.raises(CredentialEncryptionError, match="Invalid ciphertext format"):
            encryption.decrypt("only:two")

    def test_tampered_ciphertext(self, encryption):
        iv, tag, data = encryption.encrypt("secret").split(":")
        other_tag = encryption.encrypt("other").split(":")[1]

        with pytest.raises(CredentialEncryptionError, match="Failed to decrypt"):
            encryption.decrypt(f"{iv}:{other_tag}:{data}")

    def test_wrong_key(self, encryption):
        ciphertext = encryption.encrypt("secret")

        with pytest.raises(CredentialEncryptionError):
            CredentialEncryption("1e" * 32).decrypt(ciphertext)

    def test_is_encrypted(self, encryption):
        assert CredentialEncryption.is_encrypted(encryption.encrypt("x")) is True
        assert CredentialEncryption.is_encrypted("AC1234567890") is False
        assert CredentialEncryption.is_encrypted(None) is False

    def test_generate_key(self):
        key = CredentialEncryption.generate_key()

        assert len(key) == 64
        CredentialEncryption(key)


class TestOptionalHelpers:
    def test_encrypt_if_present(self, encryption):
        assert encrypt_if_present(None, encryption) is None
        assert encrypt_if_present("", encryption) is None
        assert encryption.decrypt(encrypt_if_present("abc", encryption)) == "abc"

    def test_decrypt_plaintext_passthrough(self, encryption):
        assert decrypt_if_present("AC_legacy_plain", encryption) == "AC_legacy_plain"

    def test_decrypt_failure_returns_none(self, encryption):
        ciphertext = CredentialEncryption("1e" * 32).encrypt("secret")
        assert decrypt_if_present(ciphertext, encryption) is None

    def test_decrypt_without_key_returns_none(self, encryption):
        assert decrypt_if_present(encryption.encrypt("secret"), None) is None
