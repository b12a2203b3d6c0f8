"""
Tests for provider credential store adapters.

Tests cover:
- MemoryProviderStore list/upsert/get and export format
- PgProviderStore against a fake asyncpg-style pool
"""
from contextlib import asynccontextmanager

import orjson
import pytest

from provider_vault.exceptions import NotFound, StoreError
from provider_vault.vault.store import MemoryProviderStore, PgProviderStore


class TestMemoryProviderStore:
    """Tests for the in-process store."""

    @pytest.mark.asyncio
    async def test_list(self, store, gemini):
        providers = await store.list("acct-a")
        assert [p.provider for p in providers] == ["gemini", "openai"]
        assert providers[0].api_key == gemini.api_key

    @pytest.mark.asyncio
    async def test_list_missing_account(self, store):
        with pytest.raises(NotFound) as exc:
            await store.list("nobody")
        assert exc.value.account_id == "nobody"

    @pytest.mark.asyncio
    async def test_upsert_replaces_whole_list(self, store):
        providers = await store.list("acct-a")
        await store.upsert("acct-a", providers[1:])
        assert [p.provider for p in await store.list("acct-a")] == ["openai"]
        # other accounts untouched
        assert len(await store.list("acct-b")) == 2

    @pytest.mark.asyncio
    async def test_upsert_creates_account(self, store, gemini):
        await store.upsert("acct-new", [gemini])
        assert "acct-new" in store.accounts()

    @pytest.mark.asyncio
    async def test_get(self, store, openai):
        credential = await store.get("acct-a", "openai")
        assert credential.api_key == openai.api_key

    @pytest.mark.asyncio
    async def test_get_missing_provider(self, store):
        with pytest.raises(NotFound, match="anthropic"):
            await store.get("acct-a", "anthropic")

    def test_export_round_trip(self, store):
        exported = store.to_export()
        restored = MemoryProviderStore.from_export(exported)
        assert restored.accounts() == ["acct-a", "acct-b"]
        assert restored.raw("acct-a") == store.raw("acct-a")

    def test_from_export_null_providers(self):
        restored = MemoryProviderStore.from_export(b'{"acct": null}')
        assert restored.raw("acct") == b"[]"

    @pytest.mark.parametrize("data", [b"not json", b"[1, 2]"])
    def test_from_export_invalid(self, data):
        with pytest.raises(StoreError):
            MemoryProviderStore.from_export(data)


class FakeConnection:
    def __init__(self, rows, fail=False):
        self.rows = rows
        self.fail = fail
        self.executed = []

    async def fetchrow(self, query, account_id):
        if self.fail:
            raise ConnectionError("connection refused")
        if account_id not in self.rows:
            return None
        return {"providers": self.rows[account_id]}

    async def execute(self, query, document, account_id):
        if self.fail:
            raise ConnectionError("connection refused")
        self.executed.append((query, document, account_id))
        if account_id not in self.rows:
            return "UPDATE 0"
        self.rows[account_id] = document
        return "UPDATE 1"


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


class TestPgProviderStore:
    """Tests for the asyncpg-compatible adapter."""

    @pytest.fixture
    def conn(self, gemini, openai):
        document = orjson.dumps([gemini.to_document(), openai.to_document()])
        return FakeConnection({"user-1": document.decode()})

    @pytest.mark.asyncio
    async def test_list_parses_jsonb_text(self, conn):
        store = PgProviderStore(FakePool(conn))
        providers = await store.list("user-1")
        assert [p.provider for p in providers] == ["gemini", "openai"]

    @pytest.mark.asyncio
    async def test_list_accepts_decoded_json(self, conn, gemini):
        conn.rows["user-2"] = [gemini.to_document()]
        store = PgProviderStore(FakePool(conn))
        assert (await store.list("user-2"))[0].provider == "gemini"

    @pytest.mark.asyncio
    async def test_list_null_column(self, conn):
        conn.rows["user-3"] = None
        store = PgProviderStore(FakePool(conn))
        assert await store.list("user-3") == []

    @pytest.mark.asyncio
    async def test_list_missing_row(self, conn):
        store = PgProviderStore(FakePool(conn))
        with pytest.raises(NotFound):
            await store.list("user-404")

    @pytest.mark.asyncio
    async def test_upsert_writes_whole_document(self, conn, openai):
        store = PgProviderStore(FakePool(conn))
        await store.upsert("user-1", [openai])
        query, document, account_id = conn.executed[-1]
        assert 'WHERE "userId" = $2' in query
        assert "$1::jsonb" in query
        assert account_id == "user-1"
        assert [d["provider"] for d in orjson.loads(document)] == ["openai"]

    @pytest.mark.asyncio
    async def test_upsert_missing_row(self, conn, openai):
        store = PgProviderStore(FakePool(conn))
        with pytest.raises(NotFound):
            await store.upsert("user-404", [openai])

    @pytest.mark.asyncio
    async def test_custom_table(self, conn):
        store = PgProviderStore(
            FakePool(conn), table="accounts", column="providers", key_column="id",
        )
        await store.list("user-1")
        await store.upsert("user-1", [])
        assert 'UPDATE accounts' in conn.executed[-1][0]
        assert 'WHERE "id" = $2' in conn.executed[-1][0]

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_error(self, conn, openai):
        conn.fail = True
        store = PgProviderStore(FakePool(conn))
        with pytest.raises(StoreError, match="Failed to read"):
            await store.list("user-1")
        with pytest.raises(StoreError, match="Failed to write"):
            await store.upsert("user-1", [openai])
