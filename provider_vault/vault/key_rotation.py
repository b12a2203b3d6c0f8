"""
Vault Key Rotation — Re-encryption of provider keys under a new key.

Every account is an independent unit of work:

1. read the full provider list,
2. decrypt each ``apiKey`` with the old key, re-encrypt it with the new key
   and verify the new envelope round-trips,
3. upsert the whole list once if every provider verified,
4. otherwise write nothing for that account.

Accounts run concurrently on a bounded pool. A failure in one account is
recorded in the :class:`RotationReport` and never aborts the batch.

Security Note:
    Plaintext exists in memory only while one provider is re-encrypted.
    Never log plaintext or ciphertext values.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional
from collections.abc import Iterable

from ..data import ProviderCredential
from ..exceptions import (
    CryptoError,
    FormatError,
    NotFound,
    RotationError,
    RotationTimeout,
    StoreError,
    VaultError,
)
from .crypto import Key, decrypt, encrypt
from .probe import verify
from .store import ProviderCredentialStore

logger = logging.getLogger("provider_vault")

ROTATED = "rotated"
FAILED = "failed"


@dataclass
class AccountRotationResult:
    """Outcome of rotating one account."""
    account_id: Any
    status: str
    providers: int = 0
    error: Optional[VaultError] = None

    @property
    def ok(self) -> bool:
        return self.status == ROTATED

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.error, "retryable", False))

    def to_dict(self) -> dict:
        data = {
            "account_id": self.account_id,
            "status": self.status,
            "providers": self.providers,
        }
        if self.error is not None:
            data["error"] = type(self.error).__name__
            data["message"] = str(self.error)
            data["retryable"] = self.retryable
            failures = getattr(self.error, "failures", None)
            if failures:
                data["failures"] = [
                    {"index": idx, "provider": provider, "error": type(err).__name__}
                    for idx, provider, err in failures
                ]
        return data


@dataclass
class RotationReport:
    """Per-account results of a rotation batch, in request order."""
    results: list[AccountRotationResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[AccountRotationResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[AccountRotationResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def get(self, account_id: Any) -> Optional[AccountRotationResult]:
        for result in self.results:
            if result.account_id == account_id:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "total": len(self.results),
            "rotated": len(self.succeeded),
            "failed": len(self.failed),
            "accounts": [r.to_dict() for r in self.results],
        }


def reencrypt_providers(
    providers: list[ProviderCredential],
    old_key: Key,
    new_key: Key,
    account_id: Any = None,
) -> list[ProviderCredential]:
    """Re-encrypt every provider key of one account, all or nothing.

    Returns:
        New provider list with every ``apiKey`` replaced.

    Raises:
        RotationError: If any provider fails to decrypt or verify; none of
            the computed envelopes are returned.
    """
    updated: list[ProviderCredential] = []
    failures: list[tuple[int, str, VaultError]] = []
    for idx, credential in enumerate(providers):
        try:
            plaintext = decrypt(old_key, credential.api_key)
            envelope = encrypt(new_key, plaintext)
            if not verify(new_key, plaintext, envelope):
                raise CryptoError(
                    "Re-encrypted key failed round-trip verification"
                )
        except (FormatError, CryptoError) as err:
            failures.append((idx, credential.provider, err))
            continue
        updated.append(credential.with_api_key(envelope))
    if failures:
        names = ", ".join(provider for _, provider, _ in failures)
        raise RotationError(
            f"Account {account_id}: {len(failures)} provider(s) failed to "
            f"rotate ({names})",
            account_id=account_id,
            failures=failures,
        )
    return updated


class RotationCoordinator:
    """Rotate provider keys of many accounts from one key to another.

    Args:
        store: Provider credential store.
        concurrency: Maximum number of accounts rotated at once.
        timeout: Optional per-account limit (seconds) on reading and
            re-encrypting; exceeding it fails that account as retryable.
    """

    def __init__(
        self,
        store: ProviderCredentialStore,
        concurrency: int = 4,
        timeout: Optional[float] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._store = store
        self._concurrency = concurrency
        self._timeout = timeout
        # account id -> [lock, holders and waiters]
        self._locks: dict[Any, list] = {}

    @asynccontextmanager
    async def _account_lock(self, account_id: Any):
        entry = self._locks.get(account_id)
        if entry is None:
            entry = self._locks[account_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[account_id]

    async def _prepare(
        self, account_id: Any, old_key: Key, new_key: Key,
    ) -> list[ProviderCredential]:
        providers = await self._store.list(account_id)
        return reencrypt_providers(providers, old_key, new_key, account_id)

    async def _persist(
        self, account_id: Any, providers: list[ProviderCredential],
    ) -> None:
        # once issued, the write is allowed to finish before a
        # cancellation propagates
        write = asyncio.ensure_future(self._store.upsert(account_id, providers))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.wait([write])
            if not write.cancelled() and write.exception() is not None:
                logger.error(
                    "Write for account=%s failed during cancellation: %s",
                    account_id, write.exception(),
                )
            raise

    async def rotate_account(
        self, account_id: Any, old_key: Key, new_key: Key,
    ) -> AccountRotationResult:
        """Rotate a single account; failures are returned, never raised."""
        async with self._account_lock(account_id):
            try:
                if self._timeout is not None:
                    updated = await asyncio.wait_for(
                        self._prepare(account_id, old_key, new_key),
                        timeout=self._timeout,
                    )
                else:
                    updated = await self._prepare(account_id, old_key, new_key)
            except asyncio.TimeoutError:
                logger.warning(
                    "Rotation timed out for account=%s after %ss",
                    account_id, self._timeout,
                )
                return AccountRotationResult(
                    account_id, FAILED,
                    error=RotationTimeout(
                        f"Rotation of account {account_id} timed out",
                        account_id=account_id,
                    ),
                )
            except RotationError as err:
                logger.error("Rotation failed for account=%s: %s", account_id, err)
                return AccountRotationResult(
                    account_id, FAILED, providers=len(err.failures), error=err,
                )
            except (NotFound, StoreError) as err:
                logger.error(
                    "Could not read providers for account=%s: %s", account_id, err,
                )
                return AccountRotationResult(account_id, FAILED, error=err)
            except Exception as err:
                logger.error(
                    "Could not read providers for account=%s: %s", account_id, err,
                )
                error = StoreError(
                    f"Failed to read providers for account {account_id}: {err}"
                )
                error.__cause__ = err
                return AccountRotationResult(account_id, FAILED, error=error)

            if not updated:
                logger.info("Account=%s has no providers; nothing to rotate", account_id)
                return AccountRotationResult(account_id, ROTATED, providers=0)

            try:
                await self._persist(account_id, updated)
            except VaultError as err:
                logger.error(
                    "Failed to persist rotated providers for account=%s: %s",
                    account_id, err,
                )
                return AccountRotationResult(
                    account_id, FAILED, providers=len(updated), error=err,
                )
            except Exception as err:
                logger.error(
                    "Failed to persist rotated providers for account=%s: %s",
                    account_id, err,
                )
                error = StoreError(
                    f"Failed to write providers for account {account_id}: {err}"
                )
                error.__cause__ = err
                return AccountRotationResult(
                    account_id, FAILED, providers=len(updated), error=error,
                )

        logger.info(
            "Rotated account=%s (%d provider(s))", account_id, len(updated),
        )
        return AccountRotationResult(account_id, ROTATED, providers=len(updated))

    async def rotate(
        self,
        old_key: Key,
        new_key: Key,
        account_ids: Iterable[Any],
    ) -> RotationReport:
        """Re-encrypt all provider keys of ``account_ids`` under ``new_key``.

        Duplicate account ids are rotated once.

        Returns:
            RotationReport with one result per distinct account.
        """
        accounts = list(dict.fromkeys(account_ids))
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(account_id: Any) -> AccountRotationResult:
            async with semaphore:
                return await self.rotate_account(account_id, old_key, new_key)

        logger.info(
            "Starting key rotation %s -> %s for %d account(s) (concurrency=%d)",
            getattr(old_key, "fingerprint", "raw"),
            getattr(new_key, "fingerprint", "raw"),
            len(accounts), self._concurrency,
        )
        results = await asyncio.gather(*(_bounded(a) for a in accounts))
        report = RotationReport(list(results))
        logger.info(
            "Key rotation complete: %d rotated, %d failed",
            len(report.succeeded), len(report.failed),
        )
        return report


async def rotate_master_key(
    store: ProviderCredentialStore,
    old_key: Key,
    new_key: Key,
    account_ids: Iterable[Any],
    concurrency: int = 4,
    timeout: Optional[float] = None,
) -> RotationReport:
    """Rotate ``account_ids`` from ``old_key`` to ``new_key`` in one call."""
    coordinator = RotationCoordinator(store, concurrency=concurrency, timeout=timeout)
    return await coordinator.rotate(old_key, new_key, account_ids)
