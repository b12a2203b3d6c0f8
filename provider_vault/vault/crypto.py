"""
Vault Crypto Core — AES-256-CBC envelopes for provider API keys.

Envelope format (persisted in the ``apiKey`` field):
    <hex(iv) 32 chars>:<hex(ciphertext) multiple of 32 chars>

Security Note:
    Never log plaintext or ciphertext values.
    CBC carries no integrity tag: a wrong key or corrupted ciphertext is only
    detected through a PKCS#7 padding mismatch.
"""
import os
import re
import logging
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..exceptions import CryptoError, FormatError
from .config import KeyMaterial, as_key_bytes

logger = logging.getLogger("provider_vault")

IV_SIZE = 16  # AES block size, 128-bit IV
BLOCK_BITS = 128
SEPARATOR = ":"

_HEX_SEGMENT = re.compile(r"^[0-9a-fA-F]+$")
_ENVELOPE_PATTERN = re.compile(r"^[0-9a-f]{32}:(?:[0-9a-f]{32})+$")

Key = Union[KeyMaterial, bytes]


def _cipher(key: Key, iv: bytes) -> Cipher:
    return Cipher(algorithms.AES(as_key_bytes(key)), modes.CBC(iv))


def encrypt(key: Key, plaintext: bytes) -> str:
    """Encrypt plaintext into an ``iv:ciphertext`` envelope.

    A fresh 16-byte IV is drawn from ``os.urandom`` on every call.

    Args:
        key: 32-byte key.
        plaintext: Data to encrypt.

    Returns:
        Lowercase hex envelope string.
    """
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = _cipher(key, iv).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()
    return f"{iv.hex()}{SEPARATOR}{ct.hex()}"


def parse_envelope(envelope: str) -> tuple[bytes, bytes]:
    """Split and hex-decode an envelope into ``(iv, ciphertext)``.

    Raises:
        FormatError: If the envelope is not two non-empty hex segments, the
            IV is not 16 bytes, or the ciphertext is not block aligned.
    """
    if not isinstance(envelope, str):
        raise FormatError("Envelope must be a string")
    parts = envelope.split(SEPARATOR)
    if len(parts) != 2:
        raise FormatError(
            "Invalid envelope format: expected exactly one ':' delimiter"
        )
    iv_hex, ct_hex = parts
    if not iv_hex or not ct_hex:
        raise FormatError("Invalid envelope format: missing iv or ciphertext")
    if not _HEX_SEGMENT.match(iv_hex) or not _HEX_SEGMENT.match(ct_hex):
        raise FormatError("Invalid envelope format: segments must be hex")
    try:
        iv = bytes.fromhex(iv_hex)
        ct = bytes.fromhex(ct_hex)
    except ValueError as err:
        raise FormatError(f"Invalid envelope format: {err}") from err
    if len(iv) != IV_SIZE:
        raise FormatError(
            f"Invalid envelope format: iv is {len(iv)} bytes, expected {IV_SIZE}"
        )
    if len(ct) % IV_SIZE:
        raise FormatError(
            "Invalid envelope format: ciphertext is not a multiple of "
            f"{IV_SIZE} bytes"
        )
    return iv, ct


def decrypt(key: Key, envelope: str) -> bytes:
    """Decrypt an ``iv:ciphertext`` envelope.

    Args:
        key: 32-byte key.
        envelope: Envelope string produced by :func:`encrypt`.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        FormatError: If the envelope is malformed.
        CryptoError: On padding mismatch (wrong key or corruption).
    """
    iv, ct = parse_envelope(envelope)
    decryptor = _cipher(key, iv).decryptor()
    padded = decryptor.update(ct) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as err:
        raise CryptoError(
            "Decryption failed: key mismatch or corrupted ciphertext"
        ) from err


def is_envelope(value: object) -> bool:
    """Return True if value has the persisted envelope shape."""
    return isinstance(value, str) and bool(_ENVELOPE_PATTERN.match(value))
