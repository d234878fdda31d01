"""Tests for CredentialVault (AES-256-GCM sealing of stored tokens)."""

import base64

import pytest

from earshot.application.services.credential_vault import (
    KEY_SIZE,
    CredentialVault,
    derive_key,
)
from earshot.domain.exceptions import DecryptionError


class TestDeriveKey:
    """The key rule must stay byte-compatible with rows already stored."""

    def test_short_secret_is_padded_with_ascii_zeros(self) -> None:
        assert derive_key("abc") == b"abc" + b"0" * (KEY_SIZE - 3)

    def test_long_secret_is_truncated(self) -> None:
        secret = "x" * 50
        assert derive_key(secret) == b"x" * KEY_SIZE

    def test_multibyte_secret_counts_bytes_not_characters(self) -> None:
        key = derive_key("ü" * 20)
        assert len(key) == KEY_SIZE
        assert key == ("ü" * 16).encode("utf-8")


class TestSealUnseal:
    """Round trips and failure modes."""

    @pytest.mark.parametrize(
        "plaintext",
        ["BQD-access-token", "", "ünïcødé ♫ 音楽", "a" * 4096],
    )
    def test_round_trip(self, vault: CredentialVault, plaintext: str) -> None:
        assert vault.unseal(vault.seal(plaintext)) == plaintext

    def test_same_plaintext_seals_differently(self, vault: CredentialVault) -> None:
        """Fresh nonce per seal, equal tokens must not be recognizable in the DB."""
        assert vault.seal("token") != vault.seal("token")

    def test_sealed_format_is_nonce_ciphertext_tag(self, vault: CredentialVault) -> None:
        raw = base64.b64decode(vault.seal("abcd"))
        # 12 byte nonce + 4 byte ciphertext + 16 byte tag
        assert len(raw) == 12 + 4 + 16

    def test_wrong_key_raises_decryption_error(self, vault: CredentialVault) -> None:
        sealed = vault.seal("secret")
        other = CredentialVault("a-completely-different-secret")
        with pytest.raises(DecryptionError):
            other.unseal(sealed)

    def test_tampered_ciphertext_raises(self, vault: CredentialVault) -> None:
        raw = bytearray(base64.b64decode(vault.seal("secret")))
        raw[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            vault.unseal(base64.b64encode(bytes(raw)).decode())

    def test_invalid_base64_raises(self, vault: CredentialVault) -> None:
        with pytest.raises(DecryptionError, match="base64"):
            vault.unseal("not base64 !!!")

    def test_too_short_input_raises(self, vault: CredentialVault) -> None:
        short = base64.b64encode(b"\x00" * 20).decode()
        with pytest.raises(DecryptionError, match="too short"):
            vault.unseal(short)

    def test_non_ascii_input_raises(self, vault: CredentialVault) -> None:
        with pytest.raises(DecryptionError):
            vault.unseal("ciphertext-with-ü")


class TestMissingKey:
    """A blank key is allowed at startup but every crypto call fails loudly."""

    @pytest.mark.parametrize("secret", [None, "", "   "])
    def test_not_configured(self, secret: str | None) -> None:
        vault = CredentialVault(secret)
        assert vault.is_configured is False
        with pytest.raises(DecryptionError):
            vault.seal("token")
        with pytest.raises(DecryptionError):
            vault.unseal("AAAA")

    def test_configured(self, vault: CredentialVault) -> None:
        assert vault.is_configured is True
