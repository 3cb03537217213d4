"""
Document store behaviour shared by the in-process and SQLite backends,
plus backend selection from configuration.
"""

import asyncio

import pytest

from paydesk import config
from paydesk.exceptions import DocumentNotFound, TransactionError
from paydesk.storage import (
    Document,
    DocumentStore,
    StorageMode,
    create_store,
    get_storage_mode,
    matches,
    new_document_id,
)
from paydesk.storage.memory import MemoryDocumentStore
from paydesk.storage.sqlite import SqliteDocumentStore

SEED = {
    "employees": {
        "e1": {"name": "Al", "companyId": "A", "payRate": 20.0, "active": True},
        "e2": {"name": "Bea", "companyId": "A", "payRate": 150.0, "active": False},
        "e3": {"name": "Cy", "companyId": "B", "payRate": 18.0, "active": True},
    },
}


@pytest.fixture(params=["memory", "sqlite"])
async def backend(request, tmp_path):
    if request.param == "memory":
        store = MemoryDocumentStore(SEED)
    else:
        store = SqliteDocumentStore(str(tmp_path / "docs.db"))
        async with store.transaction() as tx:
            for doc_id, data in SEED["employees"].items():
                tx.set("employees", doc_id, data)
    yield store
    await store.close()


def ids(docs):
    return sorted(d.id for d in docs)


class TestReads:
    async def test_query_all(self, backend):
        assert ids(await backend.query("employees", {})) == ["e1", "e2", "e3"]

    async def test_query_equality_conjunction(self, backend):
        docs = await backend.query("employees", {"companyId": "A", "active": True})
        assert ids(docs) == ["e1"]

    async def test_null_filter_values_are_ignored(self, backend):
        docs = await backend.query("employees", {"companyId": "B", "active": None})
        assert ids(docs) == ["e3"]

    async def test_numeric_filter(self, backend):
        docs = await backend.query("employees", {"payRate": 150.0})
        assert ids(docs) == ["e2"]

    async def test_unknown_collection_is_empty(self, backend):
        assert await backend.query("checks", {}) == []

    async def test_get(self, backend):
        doc = await backend.get("employees", "e1")
        assert doc == Document("e1", SEED["employees"]["e1"])
        assert await backend.get("employees", "missing") is None

    async def test_returned_documents_are_copies(self, backend):
        doc = await backend.get("employees", "e1")
        doc.data["name"] = "Mallory"
        assert (await backend.get("employees", "e1")).data["name"] == "Al"


class TestWrites:
    async def test_add_returns_new_id(self, backend):
        doc_id = await backend.add("checks", {"amount": 100.0, "companyId": "A"})
        assert len(doc_id) == 20
        assert (await backend.get("checks", doc_id)).data == {"amount": 100.0, "companyId": "A"}

    async def test_update_merges_fields(self, backend):
        await backend.update("employees", "e1", {"payRate": 22.5})
        data = (await backend.get("employees", "e1")).data
        assert data["payRate"] == 22.5
        assert data["name"] == "Al"

    async def test_update_missing_document(self, backend):
        with pytest.raises(DocumentNotFound) as exc_info:
            await backend.update("employees", "ghost", {"name": "x"})
        assert exc_info.value.doc_id == "ghost"

    async def test_delete(self, backend):
        await backend.delete("employees", "e2")
        await backend.delete("employees", "e2")
        assert ids(await backend.query("employees", {})) == ["e1", "e3"]


class TestTransactions:
    async def test_reads_and_staged_writes(self, backend):
        async with backend.transaction() as tx:
            doc = await tx.get("employees", "e1")
            tx.update("employees", "e1", {"payRate": doc.data["payRate"] + 1})
            tx.set("companies", "A", {"nextCheckNumber": 2}, merge=True)
            new_id = tx.add("checks", {"employeeId": "e1"})
        assert (await backend.get("employees", "e1")).data["payRate"] == 21.0
        assert (await backend.get("companies", "A")).data == {"nextCheckNumber": 2}
        assert await backend.get("checks", new_id) is not None

    async def test_merge_keeps_other_fields(self, backend):
        async with backend.transaction() as tx:
            tx.set("employees", "e1", {"payRate": 30.0}, merge=True)
        data = (await backend.get("employees", "e1")).data
        assert data == {**SEED["employees"]["e1"], "payRate": 30.0}

    async def test_set_without_merge_replaces(self, backend):
        async with backend.transaction() as tx:
            tx.set("employees", "e1", {"name": "Alan"})
        assert (await backend.get("employees", "e1")).data == {"name": "Alan"}

    async def test_failed_write_aborts_everything(self, backend):
        with pytest.raises(TransactionError):
            async with backend.transaction() as tx:
                tx.update("employees", "e1", {"name": "Alan"})
                tx.update("employees", "ghost", {"name": "x"})
        assert (await backend.get("employees", "e1")).data["name"] == "Al"

    async def test_error_in_block_discards_writes(self, backend):
        with pytest.raises(RuntimeError):
            async with backend.transaction() as tx:
                tx.delete("employees", "e1")
                raise RuntimeError("boom")
        assert await backend.get("employees", "e1") is not None

    async def test_set_then_update_in_one_transaction(self, backend):
        async with backend.transaction() as tx:
            tx.set("clients", "c9", {"name": "New"})
            tx.update("clients", "c9", {"active": True})
        assert (await backend.get("clients", "c9")).data == {"name": "New", "active": True}


class TestSubscriptions:
    async def test_initial_snapshot_and_updates(self, backend):
        snapshots = []
        cancel = await backend.subscribe(
            "employees", {"companyId": "A"}, lambda docs: snapshots.append(ids(docs)), pytest.fail
        )
        assert snapshots == [["e1", "e2"]]

        await backend.update("employees", "e3", {"companyId": "A"})
        assert snapshots[-1] == ["e1", "e2", "e3"]

        cancel()
        await backend.delete("employees", "e1")
        assert snapshots[-1] == ["e1", "e2", "e3"]

    async def test_other_collections_do_not_notify(self, backend):
        snapshots = []
        await backend.subscribe("employees", {}, snapshots.append, pytest.fail)
        await backend.add("checks", {"amount": 1.0})
        assert len(snapshots) == 1

    async def test_transaction_publishes_once_committed(self, backend):
        snapshots = []
        await backend.subscribe("companies", {}, lambda docs: snapshots.append(ids(docs)), pytest.fail)
        async with backend.transaction() as tx:
            tx.set("companies", "A", {"name": "Acme"})
            assert len(snapshots) == 1
        assert snapshots[-1] == ["A"]

    async def test_failing_snapshot_callback_is_contained(self, backend):
        def broken(docs):
            raise RuntimeError("consumer bug")

        seen = []
        await backend.subscribe("employees", {}, broken, pytest.fail)
        await backend.subscribe("employees", {}, lambda docs: seen.append(ids(docs)), pytest.fail)
        await backend.delete("employees", "e3")
        assert seen[-1] == ["e1", "e2"]


async def test_memory_transactions_serialize():
    store = MemoryDocumentStore({"companies": {"A": {"nextCheckNumber": 1}}})

    async def bump():
        async with store.transaction() as tx:
            doc = await tx.get("companies", "A")
            await asyncio.sleep(0)
            tx.set("companies", "A", {"nextCheckNumber": doc.data["nextCheckNumber"] + 1})

    await asyncio.gather(*(bump() for _ in range(5)))
    assert (await store.get("companies", "A")).data["nextCheckNumber"] == 6


async def test_sqlite_rejects_unsafe_filter_field(tmp_path):
    store = SqliteDocumentStore(str(tmp_path / "docs.db"))
    try:
        with pytest.raises(ValueError):
            await store.query("employees", {'name") OR 1=1 --': "x"})
    finally:
        await store.close()


async def test_sqlite_persists_across_instances(tmp_path):
    path = str(tmp_path / "nested" / "docs.db")
    first = SqliteDocumentStore(path)
    await first.add("companies", {"name": "Acme"})
    await first.close()

    second = SqliteDocumentStore(path)
    try:
        docs = await second.query("companies", {"name": "Acme"})
        assert len(docs) == 1
    finally:
        await second.close()


def test_matches():
    assert matches({"a": 1, "b": 2}, {"a": 1})
    assert matches({"a": 1}, {"a": None})
    assert not matches({"a": 1}, {"a": 2})
    assert not matches({}, {"a": 1})


def test_new_document_id_unique():
    assert len({new_document_id() for _ in range(100)}) == 100


class TestFactory:
    def test_default_is_memory(self):
        assert get_storage_mode() == StorageMode.MEMORY
        assert isinstance(create_store(), MemoryDocumentStore)

    def test_unknown_mode_falls_back(self, monkeypatch):
        monkeypatch.setenv("PAYDESK_STORAGE", "mongo")
        config.reload()
        assert get_storage_mode() == StorageMode.MEMORY

    def test_sqlite_mode(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PAYDESK_STORAGE", "sqlite")
        monkeypatch.setenv("PAYDESK_DB", str(tmp_path / "x.db"))
        config.reload()
        store = create_store()
        assert isinstance(store, SqliteDocumentStore)
        assert store.db_path == str(tmp_path / "x.db")

    def test_backends_satisfy_protocol(self, tmp_path):
        assert isinstance(MemoryDocumentStore(), DocumentStore)
        assert isinstance(SqliteDocumentStore(str(tmp_path / "p.db")), DocumentStore)
