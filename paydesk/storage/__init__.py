"""
PAYDESK — Document Store Abstraction.

Pluggable remote store: switch between an in-process store, a local
SQLite file and a remote document service via environment variable.
The access layer never knows which backend is active — it just calls
the protocol methods.

Usage:
    PAYDESK_STORAGE=memory   → in-process dictionaries (default)
    PAYDESK_STORAGE=sqlite   → JSON documents in a SQLite file
    PAYDESK_STORAGE=http     → remote document REST service
"""

from __future__ import annotations

import itertools
import logging
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, runtime_checkable

from paydesk import config

logger = logging.getLogger("paydesk.storage")

SnapshotCallback = Callable[[list["Document"]], None]
ErrorCallback = Callable[[Exception], None]
Cancel = Callable[[], None]


class StorageMode(str, Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"
    HTTP = "http"


@dataclass(frozen=True)
class Document:
    """A stored document: opaque id plus its field mapping."""

    id: str
    data: dict[str, Any]


def new_document_id() -> str:
    """Generate a 20-character document id."""
    return uuid.uuid4().hex[:20]


def matches(data: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """True if every non-null filter equals the document field."""
    for key, value in filters.items():
        if value is None:
            continue
        if key not in data or data[key] != value:
            return False
    return True


# ─── Transactions ────────────────────────────────────────────────────


@dataclass
class Write:
    op: str  # set | update | delete
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class Transaction:
    """Reads go straight to the store, writes are staged until commit.

    Backends subclass this and implement ``get``; the store applies
    ``writes`` atomically when the ``transaction()`` block exits cleanly.
    """

    def __init__(self) -> None:
        self.writes: list[Write] = []

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        self.writes.append(Write("set", collection, doc_id, dict(data), merge))

    def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        self.writes.append(Write("update", collection, doc_id, dict(fields)))

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        self.set(collection, doc_id, data)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(Write("delete", collection, doc_id))

    @property
    def collections(self) -> set[str]:
        return {w.collection for w in self.writes}


# ─── Protocol ────────────────────────────────────────────────────────


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for all document store backends."""

    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[Document]:
        """One-shot read of every document matching all equality filters."""
        ...

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read one document, or None if it does not exist."""
        ...

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Create a document and return its new id."""
        ...

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Partially update an existing document."""
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is a no-op."""
        ...

    async def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Cancel:
        """Start a push subscription delivering full result snapshots."""
        ...

    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction whose staged writes commit atomically."""
        ...

    async def close(self) -> None:
        """Release connections and stop subscriptions."""
        ...


# ─── In-process push fan-out ─────────────────────────────────────────


@dataclass
class _Watch:
    collection: str
    filters: dict[str, Any]
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback


class LocalWatchers:
    """Push subscriptions for backends that observe their own writes."""

    def __init__(self) -> None:
        self._watches: dict[int, _Watch] = {}
        self._ids = itertools.count(1)

    def add(self, collection: str, filters: Mapping[str, Any],
            on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> int:
        watch_id = next(self._ids)
        self._watches[watch_id] = _Watch(collection, dict(filters), on_snapshot, on_error)
        return watch_id

    def canceller(self, watch_id: int) -> Cancel:
        def cancel() -> None:
            self._watches.pop(watch_id, None)
        return cancel

    def __len__(self) -> int:
        return len(self._watches)

    async def deliver(self, watch_id: int,
                      read: Callable[[str, Mapping[str, Any]], Awaitable[list[Document]]]) -> None:
        watch = self._watches.get(watch_id)
        if watch is None:
            return
        try:
            docs = await read(watch.collection, watch.filters)
        except Exception as e:
            logger.error("Snapshot read failed for %s: %s", watch.collection, e)
            self._watches.pop(watch_id, None)
            watch.on_error(e)
            return
        # Cancelled while the snapshot was being read
        if watch_id not in self._watches:
            return
        try:
            watch.on_snapshot(docs)
        except Exception:
            logger.exception("Snapshot callback failed for %s", watch.collection)

    async def publish(self, collections: set[str],
                      read: Callable[[str, Mapping[str, Any]], Awaitable[list[Document]]]) -> None:
        """Push a fresh snapshot to every watch on the changed collections."""
        for watch_id, watch in list(self._watches.items()):
            if watch.collection in collections:
                await self.deliver(watch_id, read)

    def clear(self) -> None:
        self._watches.clear()


# ─── Factory ─────────────────────────────────────────────────────────


def get_storage_mode() -> StorageMode:
    """Detect storage mode from configuration."""
    raw = config.STORAGE_MODE.lower()
    try:
        return StorageMode(raw)
    except ValueError:
        logger.warning("Unknown PAYDESK_STORAGE='%s', falling back to memory", raw)
        return StorageMode.MEMORY


def create_store(mode: StorageMode | None = None) -> DocumentStore:
    """Build the configured document store backend."""
    mode = mode or get_storage_mode()
    if mode == StorageMode.SQLITE:
        from paydesk.storage.sqlite import SqliteDocumentStore

        return SqliteDocumentStore(config.DB_PATH, max_connections=config.CONNECTION_POOL_SIZE)
    if mode == StorageMode.HTTP:
        from paydesk.storage.http import HttpDocumentStore

        return HttpDocumentStore(
            config.HTTP_BASE_URL,
            api_key=config.HTTP_API_KEY,
            poll_interval=config.POLL_INTERVAL,
        )

    from paydesk.storage.memory import MemoryDocumentStore

    return MemoryDocumentStore()
