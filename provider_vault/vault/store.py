"""
Provider Credential Store — boundary to the account document store.

The vault never persists anything itself; it reads and replaces whole
``providers`` lists through a :class:`ProviderCredentialStore`:

- ``list(account_id)`` — all credentials of an account
- ``upsert(account_id, providers)`` — replace the whole list in one write
- ``get(account_id, provider)`` — one credential, built on ``list``

Callers computing a partial update read the full list, mutate it in memory
and upsert the full result. No lock guards an account against a concurrent
unrelated update: the later whole-list write wins.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any
from collections.abc import Iterable, Sequence

import orjson

from ..data import ProviderCredential, dump_providers, parse_providers
from ..exceptions import NotFound, StoreError

logger = logging.getLogger("provider_vault")


class ProviderCredentialStore(ABC):
    """Async store of per-account provider credential lists."""

    @abstractmethod
    async def list(self, account_id: Any) -> list[ProviderCredential]:
        """Return the provider list of an account.

        Raises:
            NotFound: If the account has no record.
        """

    @abstractmethod
    async def upsert(
        self, account_id: Any, providers: Sequence[ProviderCredential],
    ) -> None:
        """Replace the entire provider list of an account in one write."""

    async def get(self, account_id: Any, provider: str) -> ProviderCredential:
        """Return the credential for ``provider``.

        Raises:
            NotFound: If the account or the provider entry is missing.
        """
        for credential in await self.list(account_id):
            if credential.provider == provider:
                return credential
        raise NotFound(
            f"Provider {provider} is not configured for account {account_id}",
            account_id=account_id,
        )


class MemoryProviderStore(ProviderCredentialStore):
    """In-process store keeping each provider list as one JSON document.

    Documents are held as orjson bytes, so ``raw(account_id)`` can be compared
    byte-for-byte before and after an operation.
    """

    def __init__(self, documents: dict[Any, bytes] = None):
        self._documents: dict[Any, bytes] = dict(documents or {})

    def raw(self, account_id: Any) -> bytes:
        """Return the stored document bytes of an account."""
        try:
            return self._documents[account_id]
        except KeyError:
            raise NotFound(
                f"No record for account {account_id}", account_id=account_id,
            ) from None

    def accounts(self) -> list[Any]:
        return list(self._documents.keys())

    async def list(self, account_id: Any) -> list[ProviderCredential]:
        return parse_providers(self.raw(account_id))

    async def upsert(
        self, account_id: Any, providers: Sequence[ProviderCredential],
    ) -> None:
        self._documents[account_id] = dump_providers(providers)

    # ------------------------------------------------------------------
    # Export format: {"<accountId>": [<provider document>, ...]}
    # ------------------------------------------------------------------

    @classmethod
    def from_export(cls, data: bytes) -> "MemoryProviderStore":
        """Load a JSON export mapping account ids to provider lists."""
        try:
            parsed = orjson.loads(data)
        except orjson.JSONDecodeError as err:
            raise StoreError(f"Invalid export document: {err}") from err
        if not isinstance(parsed, dict):
            raise StoreError("Export document must be a JSON object")
        return cls({
            account_id: orjson.dumps(providers or [])
            for account_id, providers in parsed.items()
        })

    def to_export(self) -> bytes:
        """Dump all accounts in the JSON export format."""
        return orjson.dumps(
            {
                account_id: orjson.loads(document)
                for account_id, document in self._documents.items()
            },
            option=orjson.OPT_INDENT_2,
        )


# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_PROVIDERS = """
SELECT {column}
FROM {table}
WHERE "{key}" = $1
"""

_UPDATE_PROVIDERS = """
UPDATE {table}
SET {column} = $1::jsonb
WHERE "{key}" = $2
"""


class PgProviderStore(ProviderCredentialStore):
    """Adapter over an asyncpg-compatible pool and a jsonb ``providers`` column.

    Args:
        db_pool: asyncpg-compatible connection pool.
        table: Table holding account settings.
        column: jsonb column with the provider list.
        key_column: Column identifying the account.
    """

    def __init__(
        self,
        db_pool: Any,
        table: str = "ai_settings",
        column: str = "providers",
        key_column: str = "userId",
    ):
        self._db = db_pool
        fmt = {"table": table, "column": column, "key": key_column}
        self._column = column
        self._select = _SELECT_PROVIDERS.format(**fmt)
        self._update = _UPDATE_PROVIDERS.format(**fmt)

    async def list(self, account_id: Any) -> list[ProviderCredential]:
        try:
            async with self._db.acquire() as conn:
                row = await conn.fetchrow(self._select, account_id)
        except Exception as err:
            raise StoreError(
                f"Failed to read providers for account {account_id}: {err}"
            ) from err
        if row is None:
            raise NotFound(
                f"No record for account {account_id}", account_id=account_id,
            )
        return parse_providers(row[self._column])

    async def upsert(
        self, account_id: Any, providers: Iterable[ProviderCredential],
    ) -> None:
        document = dump_providers(providers).decode("utf-8")
        try:
            async with self._db.acquire() as conn:
                status = await conn.execute(self._update, document, account_id)
        except Exception as err:
            raise StoreError(
                f"Failed to write providers for account {account_id}: {err}"
            ) from err
        # asyncpg returns a command tag such as "UPDATE 1"
        if isinstance(status, str) and status.strip().endswith(" 0"):
            raise NotFound(
                f"No record for account {account_id}", account_id=account_id,
            )
        logger.debug("Providers replaced for account=%s", account_id)
