"""Provider Vault — Encrypted provider API keys and key rotation.

Security Note (Threat Model):
    Envelopes are AES-256-CBC without an integrity tag. A wrong key or a
    corrupted ciphertext is detected only through padding failure, and a
    tampered ciphertext that still pads correctly decrypts to garbage.
    Decrypted keys live in process memory for the duration of one call.
"""

from .config import (
    KeyMaterial,
    VaultConfig,
    generate_key,
    load_key_material,
)
from .crypto import decrypt, encrypt, is_envelope
from .probe import ProbeResult, mask_secret, probe_accounts, verify
from .store import MemoryProviderStore, PgProviderStore, ProviderCredentialStore
from .keyring import ProviderKeyring
from .key_rotation import (
    AccountRotationResult,
    RotationCoordinator,
    RotationReport,
    rotate_master_key,
)

__all__ = [
    "KeyMaterial",
    "VaultConfig",
    "generate_key",
    "load_key_material",
    "encrypt",
    "decrypt",
    "is_envelope",
    "verify",
    "mask_secret",
    "probe_accounts",
    "ProbeResult",
    "ProviderCredentialStore",
    "MemoryProviderStore",
    "PgProviderStore",
    "ProviderKeyring",
    "RotationCoordinator",
    "RotationReport",
    "AccountRotationResult",
    "rotate_master_key",
]
