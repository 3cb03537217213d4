"""
PAYDESK — Live Queries.

Consumer entry point of the data-access layer. A ``LiveQuery`` exposes
the records of one collection query together with loading and error
state, keeps them current through a shared push subscription, and
offers forced refetch and optimistic updates.

Usage:
    async with DataAccess(create_store()) as access:
        employees = await access.open("employees", EmployeeFilter(company_id="A"))
        print(employees.data, employees.loading, employees.error)
        await employees.optimistic_update("e1", {"pay_rate": 22.5})
        await employees.close()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Mapping, Optional

from paydesk import config
from paydesk.cache import CacheEntry, Clock, QueryCache, patch_records
from paydesk.canonical import listener_key
from paydesk.exceptions import InvalidDocument, PaydeskError, SubscriptionError
from paydesk.loader import QueryLoader, QuerySpec
from paydesk.models import Collection
from paydesk.mutations import apply_optimistic
from paydesk.registry import Cancel, SubscriptionRegistry
from paydesk.storage import Document, DocumentStore
from paydesk.sweeper import ExpirySweeper

logger = logging.getLogger("paydesk.live")

ChangeCallback = Callable[["LiveQuery"], None]


@dataclass(frozen=True)
class QueryOptions:
    """Per-query caching behaviour. Durations are in seconds."""

    cache_time: float = field(default_factory=lambda: config.CACHE_TIME)
    stale_time: float = field(default_factory=lambda: config.STALE_TIME)
    background_update: bool = True
    optimistic_updates: bool = True


class DataAccess:
    """Owns the cache, subscription registry, loader and sweeper shared
    by every live query over one document store."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Clock = time.monotonic,
        sweep_interval: Optional[float] = None,
    ):
        self.store = store
        self.cache = QueryCache(clock)
        self.registry = SubscriptionRegistry()
        self.loader = QueryLoader(store, self.cache)
        self.sweeper = ExpirySweeper(
            self.cache,
            interval=sweep_interval if sweep_interval is not None else config.SWEEP_INTERVAL,
        )
        self._queries: set[LiveQuery] = set()

    async def __aenter__(self) -> DataAccess:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def start(self) -> None:
        await self.sweeper.start()

    async def close(self) -> None:
        """Close every open query and stop background work."""
        for query in list(self._queries):
            await query.close()
        self.registry.close_all()
        await self.sweeper.stop()

    def query(
        self,
        collection: str | Collection,
        filters: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> LiveQuery:
        """Create a query without loading it. See ``open``."""
        return LiveQuery(self, QuerySpec.build(collection, filters), options or QueryOptions())

    async def open(
        self,
        collection: str | Collection,
        filters: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> LiveQuery:
        """Create a query, run its initial load and start live updates."""
        query = self.query(collection, filters, options)
        await query.start()
        return query

    async def _open_remote(
        self,
        query: QuerySpec,
        cache_time: float,
        push: Callable[[CacheEntry], None],
        on_error: Callable[[Exception], None],
    ) -> Cancel:
        def on_documents(docs: list[Document]) -> None:
            seq = self.cache.next_sequence()
            try:
                records = [query.collection.decode(doc) for doc in docs]
            except InvalidDocument as e:
                logger.error("Discarding pushed snapshot of %s: %s", query.name, e)
                return
            entry = self.cache.put(query.key, records, seq, cache_time)
            if entry is not None:
                push(entry)

        return await self.store.subscribe(query.name, query.filters, on_documents, on_error)


class LiveQuery:
    """Records of one collection query plus their loading state."""

    def __init__(self, access: DataAccess, query: QuerySpec, options: QueryOptions):
        self.access = access
        self.spec = query
        self.options = options
        self.data: list[Any] = []
        self.loading = True
        self.error: Optional[str] = None
        self.version = 0
        self._lease = None
        self._callbacks: list[ChangeCallback] = []
        self._started = False
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"LiveQuery({self.spec.name}, filters={self.spec.filters}, "
            f"records={len(self.data)}, version={self.version})"
        )

    async def __aenter__(self) -> LiveQuery:
        if not self._started:
            await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def key(self) -> str:
        return self.spec.key

    @property
    def listener_key(self) -> str:
        return listener_key(self.spec.name, self.spec.filters, self.options.background_update)

    @property
    def live(self) -> bool:
        return self._lease is not None and not self._lease.released

    async def start(self) -> LiveQuery:
        """Initial load, then join the shared push subscription."""
        self._started = True
        self.access._queries.add(self)
        await self._fetch(force_refresh=False)

        if self.options.background_update and not self._closed:
            opener = partial(self.access._open_remote, self.spec, self.options.cache_time)
            try:
                self._lease = await self.access.registry.acquire(
                    self.listener_key, opener, self._on_push
                )
            except SubscriptionError as e:
                logger.error("Real-time listener error for %s: %s", self.spec.name, e)
        return self

    async def refetch(self) -> None:
        """Reload from the store, bypassing the cache."""
        await self._fetch(force_refresh=True)

    async def _fetch(self, force_refresh: bool) -> None:
        self.loading = True
        self.error = None
        try:
            entry = await self.access.loader.load(
                self.spec,
                stale_time=self.options.stale_time,
                cache_time=self.options.cache_time,
                force_refresh=force_refresh,
            )
        except PaydeskError as e:
            logger.error("Error fetching %s: %s", self.spec.name, e)
            self.error = str(e)
        else:
            self._apply(entry)
        finally:
            self.loading = False
            self._notify()

    def _apply(self, entry: CacheEntry) -> None:
        self.data = list(entry.payload)
        self.version = entry.version

    def _on_push(self, entry: CacheEntry) -> None:
        if self._closed:
            return
        logger.debug("Real-time update for %s: %d items", self.spec.name, len(entry.payload))
        self._apply(entry)
        self._notify()

    async def optimistic_update(
        self,
        record_id: str,
        updates: Mapping[str, Any],
        rollback: Optional[Callable[[], None]] = None,
    ) -> bool:
        """Patch one record locally, then write it to the store.

        On a failed write ``rollback`` runs (if given) and the query is
        refetched. Returns True when the store accepted the write.
        """
        if not self.options.optimistic_updates:
            logger.debug("Optimistic updates disabled for %s", self.spec.name)
            return False

        def apply_local() -> None:
            self.data = list(patch_records(self.data, record_id, updates))
            self.access.cache.patch(self.key, record_id, updates)
            self._notify()

        return await apply_optimistic(
            self.access.store,
            self.spec,
            record_id,
            updates,
            apply_local=apply_local,
            refetch=self.refetch,
            rollback=rollback,
        )

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call ``callback(query)`` whenever data, loading or error change."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self)
            except Exception:
                logger.exception("Change callback failed for %s", self.spec.name)

    async def close(self) -> None:
        """Release the push subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._lease is not None:
            self._lease.release()
        self._callbacks.clear()
        self.access._queries.discard(self)
