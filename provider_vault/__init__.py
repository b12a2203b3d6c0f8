"""Provider Vault.

At-rest encryption of third-party AI provider API keys stored in account
records, with verification and key rotation.
"""
from .version import __version__
from .data import ProviderCredential
from .exceptions import (
    VaultError,
    ConfigError,
    FormatError,
    CryptoError,
    NotFound,
    StoreError,
    RotationError,
    RotationTimeout,
)

__all__ = [
    "__version__",
    "ProviderCredential",
    "VaultError",
    "ConfigError",
    "FormatError",
    "CryptoError",
    "NotFound",
    "StoreError",
    "RotationError",
    "RotationTimeout",
]
