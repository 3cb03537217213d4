"""
PAYDESK — Fetch Orchestrator.

Serves fresh cache entries without touching the store; otherwise reads
the collection, decodes records and writes the result back to the
cache. Concurrent loads of the same stale key share one read.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from paydesk.cache import CacheEntry, QueryCache
from paydesk.canonical import fingerprint
from paydesk.exceptions import PaydeskError, RemoteReadError
from paydesk.models import Collection, get_collection
from paydesk.storage import DocumentStore

logger = logging.getLogger("paydesk.loader")


@dataclass(frozen=True)
class QuerySpec:
    """A collection query: conjunction of equality predicates."""

    collection: Collection
    filters: dict[str, Any]

    @classmethod
    def build(cls, collection: str | Collection, filters: Any = None) -> QuerySpec:
        coll = get_collection(collection)
        return cls(coll, coll.predicates(filters))

    @property
    def key(self) -> str:
        return fingerprint(self.collection.name, self.filters)

    @property
    def name(self) -> str:
        return self.collection.name


class QueryLoader:
    """Decides between cache hit and remote read for a query."""

    def __init__(self, store: DocumentStore, cache: QueryCache):
        self.store = store
        self.cache = cache
        self._inflight: dict[str, asyncio.Task] = {}

    async def load(
        self,
        query: QuerySpec,
        *,
        stale_time: float,
        cache_time: float,
        force_refresh: bool = False,
    ) -> CacheEntry:
        """Return the result set for ``query``.

        Raises:
            RemoteReadError: If the store read fails. The previous cache
                entry, if any, is left untouched.
        """
        key = query.key
        entry = self.cache.get(key)
        if entry is not None and not force_refresh and entry.is_fresh(self.cache.clock(), stale_time):
            logger.debug("Using cached %s (version %d)", query.name, entry.version)
            return entry

        pending = self._inflight.get(key)
        if pending is not None and not force_refresh:
            logger.debug("Joining in-flight read of %s", query.name)
            return await asyncio.shield(pending)

        # Sequence is taken at issue time, not at completion
        seq = self.cache.next_sequence()
        task = asyncio.create_task(self._read(query, seq, cache_time))
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Retrieve so an unawaited failure is not reported as never retrieved
        if not task.cancelled():
            task.exception()

    async def _read(self, query: QuerySpec, seq: int, cache_time: float) -> CacheEntry:
        logger.info("Fetching %s with filters %s", query.name, query.filters)
        started = time.perf_counter()
        try:
            docs = await self.store.query(query.name, query.filters)
        except PaydeskError:
            raise
        except Exception as e:
            raise RemoteReadError(f"Query on {query.name} failed: {e}") from e

        records = [query.collection.decode(doc) for doc in docs]
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("Fetched %d %s in %.2fms", len(records), query.name, elapsed)

        entry = self.cache.put(query.key, records, seq, cache_time)
        if entry is None:
            # A newer read or push landed first
            entry = self.cache.get(query.key)
        return entry

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)
