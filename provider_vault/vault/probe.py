"""
Verification Probe — round-trip checks of stored envelopes.

Security Note:
    Plaintext is only exposed through ``ProbeResult.preview`` and only when
    the caller asks for ``reveal=True``. It is never logged.
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union
from collections.abc import Iterable

from ..exceptions import CryptoError, FormatError, NotFound, StoreError, VaultError
from .crypto import Key, decrypt
from .store import ProviderCredentialStore

logger = logging.getLogger("provider_vault")

_MASK = "********"


def verify(key: Key, expected_plaintext: Union[bytes, str], envelope: str) -> bool:
    """Decrypt ``envelope`` and compare it to ``expected_plaintext``.

    Returns False on malformed envelopes or decryption failure. Never
    mutates state.
    """
    if isinstance(expected_plaintext, str):
        expected_plaintext = expected_plaintext.encode("utf-8")
    try:
        recovered = decrypt(key, envelope)
    except (FormatError, CryptoError):
        return False
    return hmac.compare_digest(recovered, expected_plaintext)


def mask_secret(value: str, visible: int = 4) -> str:
    """Keep the first ``visible`` characters of a secret and mask the rest."""
    if len(value) <= visible:
        return _MASK
    return value[:visible] + _MASK


@dataclass
class ProbeResult:
    """Decryption status of one provider credential."""
    account_id: Any
    provider: Optional[str]
    ok: bool
    preview: Optional[str] = None
    error: Optional[VaultError] = None

    @property
    def message(self) -> str:
        if self.ok:
            return "ok"
        return getattr(self.error, "operator_message", None) or str(self.error)


async def probe_accounts(
    store: ProviderCredentialStore,
    key: Key,
    account_ids: Iterable[Any],
    reveal: bool = False,
) -> list[ProbeResult]:
    """Report whether every stored provider key decrypts under ``key``.

    Args:
        store: Provider credential store.
        key: Key expected to decrypt the stored envelopes.
        account_ids: Accounts to inspect.
        reveal: Put the full plaintext in ``preview`` instead of a mask.

    Returns:
        One result per provider; an account that is missing or cannot be
        read yields one failed result with ``provider`` set to None.
    """
    results: list[ProbeResult] = []
    for account_id in account_ids:
        try:
            providers = await store.list(account_id)
        except (NotFound, StoreError) as err:
            logger.warning("Could not read providers for account=%s: %s", account_id, err)
            results.append(
                ProbeResult(account_id=account_id, provider=None, ok=False, error=err)
            )
            continue
        for credential in providers:
            try:
                plaintext = decrypt(key, credential.api_key).decode("utf-8")
            except UnicodeDecodeError as err:
                error = CryptoError(
                    "Decrypted key is not valid UTF-8: key mismatch or corruption"
                )
                error.__cause__ = err
                results.append(ProbeResult(account_id, credential.provider, False, error=error))
            except (FormatError, CryptoError) as err:
                results.append(ProbeResult(account_id, credential.provider, False, error=err))
            else:
                preview = plaintext if reveal else mask_secret(plaintext)
                results.append(ProbeResult(account_id, credential.provider, True, preview=preview))
        logger.info(
            "Probed account=%s providers=%d key=%s",
            account_id, len(providers), getattr(key, "fingerprint", "raw"),
        )
    return results
