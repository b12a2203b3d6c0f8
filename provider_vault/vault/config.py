"""
Vault Configuration — Key material loading and validated settings.

Reads the shared encryption secret from the environment:
    VAULT_ENCRYPTION_KEY = <64-char hex key, or legacy raw text>
    VAULT_KEY_DERIVATION = direct | sha256
    VAULT_ROTATION_CONCURRENCY = <int>
    VAULT_ROTATION_TIMEOUT = <seconds>

Security Note:
    Never log key material. Only log key fingerprints.
"""
import os
import re
import hmac
import hashlib
import secrets
import logging
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import ConfigError

logger = logging.getLogger("provider_vault")

KEY_LENGTH = 32  # AES-256

_HEX_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")

DERIVATIONS = ("direct", "sha256")


class KeyMaterial:
    """Immutable 32-byte symmetric key.

    The raw bytes are reachable through :attr:`key` (or ``bytes(km)``) but
    are never part of ``repr()``; use :attr:`fingerprint` in log lines.
    """

    __slots__ = ("_key",)

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ConfigError(
                f"Key material must be exactly {KEY_LENGTH} bytes"
            )
        object.__setattr__(self, "_key", bytes(key))

    def __setattr__(self, name, value):
        raise AttributeError("KeyMaterial is immutable")

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def fingerprint(self) -> str:
        """Short SHA-256 fingerprint, safe to log."""
        return hashlib.sha256(self._key).hexdigest()[:12]

    def __bytes__(self) -> bytes:
        return self._key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyMaterial):
            return NotImplemented
        return hmac.compare_digest(self._key, other._key)

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        return f"<KeyMaterial sha256:{self.fingerprint}>"


def load_key_material(
    secret: Optional[str],
    derivation: str = "direct",
) -> KeyMaterial:
    """Normalize a configured secret into a 32-byte key.

    ``direct`` derivation hex-decodes a 64-character hex secret; any other
    secret is copied as UTF-8 bytes into a zero-filled 32-byte buffer
    (zero-padded when shorter, truncated when longer). ``sha256``
    derivation hashes the secret's UTF-8 bytes, which is how keys were
    derived on the legacy request path.

    Args:
        secret: Configured secret string.
        derivation: ``"direct"`` or ``"sha256"``.

    Returns:
        KeyMaterial instance.

    Raises:
        ConfigError: If the secret is missing or the derivation unknown.
    """
    if not secret:
        raise ConfigError(
            "No encryption key configured. "
            "Set VAULT_ENCRYPTION_KEY=<64-char hex key>"
        )
    if derivation not in DERIVATIONS:
        raise ConfigError(f"Unsupported key derivation: {derivation}")
    if derivation == "sha256":
        return KeyMaterial(hashlib.sha256(secret.encode("utf-8")).digest())
    if _HEX_KEY_PATTERN.match(secret):
        return KeyMaterial(bytes.fromhex(secret))
    raw = secret.encode("utf-8")
    logger.warning(
        "Encryption key is not 64 hex characters (%d bytes of text); "
        "using zero-padded raw bytes. Generate a proper key for new setups.",
        len(raw),
    )
    buffer = bytearray(KEY_LENGTH)
    chunk = raw[:KEY_LENGTH]
    buffer[:len(chunk)] = chunk
    return KeyMaterial(bytes(buffer))


def generate_key() -> str:
    """Generate a random 32-byte key and return it as 64 hex characters.

    This is a utility for operators to generate new keys.
    """
    return secrets.token_hex(KEY_LENGTH)


def as_key_bytes(key: Union[KeyMaterial, bytes]) -> bytes:
    """Return raw key bytes, validating length for plain ``bytes`` keys."""
    if isinstance(key, KeyMaterial):
        return key.key
    if isinstance(key, (bytes, bytearray)) and len(key) == KEY_LENGTH:
        return bytes(key)
    raise ConfigError(f"Encryption key must be exactly {KEY_LENGTH} bytes")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    encryption_key: KeyMaterial
    key_derivation: str = Field(default="direct")
    rotation_concurrency: int = Field(default=4, ge=1, le=64)
    rotation_timeout: Optional[float] = Field(default=None, gt=0)

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("key_derivation")
    @classmethod
    def validate_derivation(cls, v: str) -> str:
        """Validate key derivation mode is supported."""
        if v not in DERIVATIONS:
            raise ValueError(f"Unsupported key derivation: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.

        Raises:
            ConfigError: If the key is missing or any value is invalid.
        """
        derivation = os.environ.get("VAULT_KEY_DERIVATION", "direct").lower()
        key = load_key_material(
            os.environ.get("VAULT_ENCRYPTION_KEY"), derivation,
        )
        values = {
            "encryption_key": key,
            "key_derivation": derivation,
        }
        concurrency = os.environ.get("VAULT_ROTATION_CONCURRENCY")
        if concurrency:
            values["rotation_concurrency"] = concurrency
        timeout = os.environ.get("VAULT_ROTATION_TIMEOUT")
        if timeout:
            values["rotation_timeout"] = timeout
        try:
            config = cls(**values)
        except ValidationError as err:
            raise ConfigError(f"Invalid vault configuration: {err}") from err
        logger.debug(
            "Loaded vault config: key=%s derivation=%s concurrency=%d",
            key.fingerprint, derivation, config.rotation_concurrency,
        )
        return config
