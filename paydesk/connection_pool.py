"""
PAYDESK — SQLite Connection Pool.

Bounded set of aiosqlite connections shared by the SQLite document
store. Connections run in WAL mode so readers never wait on the single
writer; a broken connection is replaced on checkout.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

logger = logging.getLogger("paydesk.pool")

PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=5000;",
)


class ConnectionPool:
    """At most ``max_connections`` connections to one database file."""

    def __init__(self, db_path: str, max_connections: int = 5):
        self.db_path = db_path
        self.max_connections = max_connections
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._slots = asyncio.Semaphore(max_connections)
        self._prepared = False

    async def _connect(self) -> aiosqlite.Connection:
        if not self._prepared and self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._prepared = True
        conn = await aiosqlite.connect(self.db_path)
        for pragma in PRAGMAS:
            await conn.execute(pragma)
        await conn.commit()
        logger.debug("Opened connection to %s", self.db_path)
        return conn

    @staticmethod
    async def _healthy(conn: aiosqlite.Connection) -> bool:
        try:
            async with conn.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except (aiosqlite.Error, ValueError):
            return False

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Check out a connection; it returns to the pool on a clean exit.

        A connection whose block raised is closed instead, so an aborted
        transaction never leaks into the next checkout.
        """
        async with self._slots:
            try:
                conn = self._idle.get_nowait()
            except asyncio.QueueEmpty:
                conn = await self._connect()
            else:
                if not await self._healthy(conn):
                    logger.warning("Replacing unhealthy connection to %s", self.db_path)
                    await self._discard(conn)
                    conn = await self._connect()

            try:
                yield conn
            except BaseException:
                await self._discard(conn)
                raise
            self._idle.put_nowait(conn)

    async def _discard(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.close()
        except aiosqlite.Error as e:
            logger.warning("Error closing connection: %s", e)

    @property
    def idle_count(self) -> int:
        return self._idle.qsize()

    async def close(self) -> None:
        """Close every idle connection."""
        while not self._idle.empty():
            await self._discard(self._idle.get_nowait())
        logger.info("Closed connection pool for %s", self.db_path)
