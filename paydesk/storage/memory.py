"""
PAYDESK — In-process Document Store.

Dictionary-backed store used for tests, demos and single-process
deployments. Pushes a fresh snapshot to live subscriptions after every
write that touches their collection.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from paydesk.exceptions import DocumentNotFound, TransactionError
from paydesk.storage import (
    Cancel,
    Document,
    ErrorCallback,
    LocalWatchers,
    SnapshotCallback,
    Transaction,
    Write,
    matches,
    new_document_id,
)

logger = logging.getLogger("paydesk.storage.memory")


class _MemoryTransaction(Transaction):
    def __init__(self, store: MemoryDocumentStore):
        super().__init__()
        self._store = store

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._store._read(collection, doc_id)


class MemoryDocumentStore:
    """Document store kept entirely in process memory.

    Returned documents are deep copies, so callers can never mutate the
    stored state behind the store's back.
    """

    def __init__(self, seed: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._watchers = LocalWatchers()
        self._lock = asyncio.Lock()
        for collection, docs in (seed or {}).items():
            for doc_id, data in docs.items():
                self._collections[collection][doc_id] = copy.deepcopy(dict(data))

    # ─── Reads ───────────────────────────────────────────────────────

    def _read(self, collection: str, doc_id: str) -> Optional[Document]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(doc_id, copy.deepcopy(data))

    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[Document]:
        docs = self._collections.get(collection, {})
        return [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in docs.items()
            if matches(data, filters)
        ]

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._read(collection, doc_id)

    # ─── Writes ──────────────────────────────────────────────────────

    def _apply(self, write: Write) -> None:
        docs = self._collections[write.collection]
        if write.op == "delete":
            docs.pop(write.doc_id, None)
        elif write.op == "update":
            if write.doc_id not in docs:
                raise DocumentNotFound(write.collection, write.doc_id)
            docs[write.doc_id].update(copy.deepcopy(write.data))
        elif write.merge and write.doc_id in docs:
            docs[write.doc_id].update(copy.deepcopy(write.data))
        else:
            docs[write.doc_id] = copy.deepcopy(write.data)

    async def _commit(self, writes: list[Write]) -> None:
        exists: dict[tuple[str, str], bool] = {}
        for write in writes:
            key = (write.collection, write.doc_id)
            present = exists.get(key, write.doc_id in self._collections[write.collection])
            if write.op == "update" and not present:
                raise DocumentNotFound(write.collection, write.doc_id)
            exists[key] = write.op != "delete"
        for write in writes:
            self._apply(write)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        async with self._lock:
            await self._commit([Write("set", collection, doc_id, dict(data))])
        await self._watchers.publish({collection}, self.query)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        async with self._lock:
            await self._commit([Write("update", collection, doc_id, dict(fields))])
        await self._watchers.publish({collection}, self.query)

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._lock:
            await self._commit([Write("delete", collection, doc_id)])
        await self._watchers.publish({collection}, self.query)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._lock:
            tx = _MemoryTransaction(self)
            yield tx
            try:
                await self._commit(tx.writes)
            except DocumentNotFound as e:
                raise TransactionError(f"Transaction aborted: {e}") from e
        if tx.writes:
            await self._watchers.publish(tx.collections, self.query)

    # ─── Push ────────────────────────────────────────────────────────

    async def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Cancel:
        watch_id = self._watchers.add(collection, filters, on_snapshot, on_error)
        logger.debug("Watching %s %s", collection, dict(filters))
        await self._watchers.deliver(watch_id, self.query)
        return self._watchers.canceller(watch_id)

    @property
    def watch_count(self) -> int:
        return len(self._watchers)

    async def close(self) -> None:
        self._watchers.clear()
