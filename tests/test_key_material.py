"""
Tests for key material loading and vault configuration.

Tests cover:
- Hex and raw-text key derivation
- Legacy sha256 derivation
- Missing key rejection (no default key)
- KeyMaterial immutability and masked repr
- VaultConfig.from_env
"""
import hashlib

import pytest

from provider_vault.exceptions import ConfigError
from provider_vault.vault.config import (
    KeyMaterial,
    VaultConfig,
    as_key_bytes,
    generate_key,
    load_key_material,
)

from .conftest import HEX_KEY


class TestLoadKeyMaterial:
    """Tests for load_key_material()."""

    def test_hex_key_is_decoded(self):
        """A 64-char hex secret decodes to its 32 bytes."""
        km = load_key_material(HEX_KEY)
        assert km.key == bytes.fromhex(HEX_KEY)

    def test_uppercase_hex_key(self):
        """Hex detection is case-insensitive."""
        assert load_key_material(HEX_KEY.upper()).key == bytes.fromhex(HEX_KEY)

    def test_short_text_key_is_zero_padded(self):
        """Raw text shorter than 32 bytes is zero-padded."""
        km = load_key_material("short-secret")
        assert km.key == b"short-secret" + b"\x00" * 20
        assert len(km.key) == 32

    def test_long_text_key_is_truncated(self):
        """Raw text longer than 32 bytes is truncated."""
        secret = "default-32-byte-encryption-key!!!!"
        km = load_key_material(secret)
        assert km.key == secret.encode()[:32]

    def test_63_hex_chars_is_treated_as_text(self):
        """Only exactly 64 hex characters count as a hex key."""
        km = load_key_material(HEX_KEY[:63])
        assert km.key == HEX_KEY[:32].encode()

    def test_text_fallback_logs_warning(self, caplog):
        """The weak raw-text path warns without logging the secret."""
        with caplog.at_level("WARNING", logger="provider_vault"):
            load_key_material("not-a-hex-key")
        assert "64 hex characters" in caplog.text
        assert "not-a-hex-key" not in caplog.text

    def test_sha256_derivation(self):
        """sha256 derivation hashes the secret text."""
        km = load_key_material("legacy", derivation="sha256")
        assert km.key == hashlib.sha256(b"legacy").digest()

    @pytest.mark.parametrize("secret", [None, ""])
    def test_missing_secret_raises(self, secret):
        """No secret means ConfigError, never a default key."""
        with pytest.raises(ConfigError, match="No encryption key configured"):
            load_key_material(secret)

    def test_unknown_derivation_raises(self):
        with pytest.raises(ConfigError, match="Unsupported key derivation"):
            load_key_material(HEX_KEY, derivation="pbkdf2")

    def test_deterministic(self):
        assert load_key_material("abc") == load_key_material("abc")


class TestKeyMaterial:
    """Tests for the KeyMaterial value."""

    def test_rejects_wrong_length(self):
        with pytest.raises(ConfigError):
            KeyMaterial(b"\x01" * 31)

    def test_is_immutable(self, key):
        with pytest.raises(AttributeError):
            key._key = b"\x00" * 32

    def test_repr_hides_key(self, key):
        """repr() exposes a fingerprint only."""
        text = repr(key)
        assert HEX_KEY not in text
        assert key.fingerprint in text
        assert len(key.fingerprint) == 12

    def test_bytes(self, key):
        assert bytes(key) == bytes.fromhex(HEX_KEY)

    def test_equality(self, key, new_key):
        assert key == load_key_material(HEX_KEY)
        assert key != new_key

    def test_as_key_bytes(self, key):
        assert as_key_bytes(key) == key.key
        assert as_key_bytes(key.key) == key.key
        with pytest.raises(ConfigError):
            as_key_bytes(b"short")


class TestGenerateKey:
    """Tests for generate_key()."""

    def test_generates_loadable_hex_key(self):
        secret = generate_key()
        assert len(secret) == 64
        assert load_key_material(secret).key == bytes.fromhex(secret)

    def test_keys_are_random(self):
        assert generate_key() != generate_key()


class TestVaultConfig:
    """Tests for VaultConfig.from_env()."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "VAULT_ENCRYPTION_KEY",
            "VAULT_KEY_DERIVATION",
            "VAULT_ROTATION_CONCURRENCY",
            "VAULT_ROTATION_TIMEOUT",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VAULT_ENCRYPTION_KEY", HEX_KEY)
        monkeypatch.setenv("VAULT_ROTATION_CONCURRENCY", "8")
        monkeypatch.setenv("VAULT_ROTATION_TIMEOUT", "2.5")
        config = VaultConfig.from_env()
        assert config.encryption_key.key == bytes.fromhex(HEX_KEY)
        assert config.key_derivation == "direct"
        assert config.rotation_concurrency == 8
        assert config.rotation_timeout == 2.5

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("VAULT_ENCRYPTION_KEY", HEX_KEY)
        config = VaultConfig.from_env()
        assert config.rotation_concurrency == 4
        assert config.rotation_timeout is None

    def test_missing_key(self):
        with pytest.raises(ConfigError):
            VaultConfig.from_env()

    def test_sha256_derivation_from_env(self, monkeypatch):
        monkeypatch.setenv("VAULT_ENCRYPTION_KEY", "legacy")
        monkeypatch.setenv("VAULT_KEY_DERIVATION", "SHA256")
        config = VaultConfig.from_env()
        assert config.key_derivation == "sha256"
        assert config.encryption_key.key == hashlib.sha256(b"legacy").digest()

    def test_invalid_concurrency(self, monkeypatch):
        monkeypatch.setenv("VAULT_ENCRYPTION_KEY", HEX_KEY)
        monkeypatch.setenv("VAULT_ROTATION_CONCURRENCY", "0")
        with pytest.raises(ConfigError, match="Invalid vault configuration"):
            VaultConfig.from_env()

    def test_invalid_derivation_in_model(self, key):
        with pytest.raises(ValueError):
            VaultConfig(encryption_key=key, key_derivation="rot13")
