"""Typed exception hierarchy for the provider vault.

Security Note:
    Exception messages and details never carry plaintext, ciphertext
    or key bytes. Only account ids, provider ids and key fingerprints.
"""
from typing import Any, Optional

UNREADABLE_CREDENTIAL = "credential unreadable - reconfigure this provider"


class VaultError(Exception):
    """Base exception for all provider vault errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(VaultError, ValueError):
    """Key material or vault configuration is missing or malformed."""


class FormatError(VaultError, ValueError):
    """Envelope string does not have the ``iv:ciphertext`` hex shape."""

    operator_message = UNREADABLE_CREDENTIAL


class CryptoError(VaultError):
    """Decryption failed: wrong key or corrupted ciphertext."""

    operator_message = UNREADABLE_CREDENTIAL


class NotFound(VaultError, LookupError):
    """No record exists for the requested account (or provider)."""

    def __init__(self, message: str, account_id: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.account_id = account_id


class StoreError(VaultError):
    """The provider credential store failed to read or write."""


class RotationError(VaultError):
    """One or more providers of a single account failed to rotate.

    ``failures`` holds ``(index, provider, error)`` tuples where ``error`` is
    the :class:`FormatError` or :class:`CryptoError` raised for it.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        account_id: Any = None,
        failures: Optional[list[tuple[int, str, VaultError]]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.account_id = account_id
        self.failures = failures or []


class RotationTimeout(VaultError):
    """An account's rotation did not finish within the configured timeout."""

    retryable = True

    def __init__(self, message: str, account_id: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.account_id = account_id
