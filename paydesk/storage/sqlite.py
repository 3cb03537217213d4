"""
PAYDESK — SQLite Document Store.

Stores every document as a JSON blob keyed by (collection, id) and
evaluates equality filters with ``json_extract``. Live subscriptions
are served in-process: writers publish fresh snapshots after commit.
"""

from __future__ import annotations

import json
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

import aiosqlite

from paydesk.canonical import canonical_json
from paydesk.connection_pool import ConnectionPool
from paydesk.exceptions import (
    DocumentNotFound,
    RemoteReadError,
    RemoteWriteError,
    TransactionError,
)
from paydesk.storage import (
    Cancel,
    Document,
    ErrorCallback,
    LocalWatchers,
    SnapshotCallback,
    Transaction,
    Write,
    new_document_id,
)

logger = logging.getLogger("paydesk.storage.sqlite")

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT NOT NULL,
    id          TEXT NOT NULL,
    data        TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (collection, id)
);
"""

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _json_path(name: str) -> str:
    if not _FIELD_RE.match(name):
        raise ValueError(f"Invalid filter field: {name!r}")
    return f'$."{name}"'


def _sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, str)):
        return value
    return canonical_json(value)


class _SqliteTransaction(Transaction):
    def __init__(self, conn: aiosqlite.Connection):
        super().__init__()
        self._conn = conn

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return await SqliteDocumentStore._fetch_one(self._conn, collection, doc_id)


class SqliteDocumentStore:
    """Document store persisted in a single SQLite file."""

    def __init__(self, db_path: str, *, max_connections: int = 5):
        self.db_path = db_path
        self._pool = ConnectionPool(db_path, max_connections=max_connections)
        self._watchers = LocalWatchers()
        self._schema_ready = False

    async def initialize(self) -> None:
        if self._schema_ready:
            return
        async with self._pool.acquire() as conn:
            await conn.executescript(SCHEMA)
            await conn.commit()
        self._schema_ready = True

    # ─── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def _fetch_one(conn: aiosqlite.Connection, collection: str, doc_id: str) -> Optional[Document]:
        async with conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return Document(doc_id, json.loads(row[0]))

    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[Document]:
        sql = "SELECT id, data FROM documents WHERE collection = ?"
        params: list[Any] = [collection]
        for name, value in filters.items():
            if value is None:
                continue
            sql += " AND json_extract(data, ?) = ?"
            params += [_json_path(name), _sql_value(value)]
        sql += " ORDER BY rowid"

        await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                async with conn.execute(sql, params) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RemoteReadError(f"Query on {collection} failed: {e}") from e
        return [Document(row[0], json.loads(row[1])) for row in rows]

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                return await self._fetch_one(conn, collection, doc_id)
        except aiosqlite.Error as e:
            raise RemoteReadError(f"Read of {collection}/{doc_id} failed: {e}") from e

    # ─── Writes ──────────────────────────────────────────────────────

    async def _apply(self, conn: aiosqlite.Connection, write: Write) -> None:
        if write.op == "delete":
            await conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (write.collection, write.doc_id),
            )
            return

        data = dict(write.data)
        if write.op == "update" or write.merge:
            current = await self._fetch_one(conn, write.collection, write.doc_id)
            if current is None and write.op == "update":
                raise DocumentNotFound(write.collection, write.doc_id)
            if current is not None:
                data = {**current.data, **data}

        await conn.execute(
            """
            INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)
            ON CONFLICT (collection, id)
            DO UPDATE SET data = excluded.data, updated_at = datetime('now')
            """,
            (write.collection, write.doc_id, json.dumps(data, default=str)),
        )

    async def _commit(self, writes: list[Write]) -> None:
        await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    for write in writes:
                        await self._apply(conn, write)
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise
        except aiosqlite.Error as e:
            raise RemoteWriteError(f"Write failed: {e}") from e
        await self._watchers.publish({w.collection for w in writes}, self.query)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = new_document_id()
        await self._commit([Write("set", collection, doc_id, dict(data))])
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        await self._commit([Write("update", collection, doc_id, dict(fields))])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._commit([Write("delete", collection, doc_id)])

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                tx = _SqliteTransaction(conn)
                try:
                    yield tx
                    for write in tx.writes:
                        await self._apply(conn, write)
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise
        except DocumentNotFound as e:
            raise TransactionError(f"Transaction aborted: {e}") from e
        except aiosqlite.Error as e:
            raise TransactionError(f"Transaction failed: {e}") from e
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
        await self._watchers.deliver(watch_id, self.query)
        return self._watchers.canceller(watch_id)

    async def close(self) -> None:
        self._watchers.clear()
        await self._pool.close()
