"""
PAYDESK — Query Cache.

In-memory map from query fingerprint to the last fetched result set.
Every write attempt carries a sequence number taken when it was issued;
a write older than the entry it would replace is discarded.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, Mapping, Optional, Sequence, TypeVar

T = TypeVar("T")

logger = logging.getLogger("paydesk.cache")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    payload: tuple[T, ...]
    fetched_at: float
    version: int
    seq: int
    cache_time: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float, stale_time: float) -> bool:
        return self.age(now) < stale_time

    def is_expired(self, now: float, cache_time: Optional[float] = None) -> bool:
        limit = self.cache_time if cache_time is None else cache_time
        return self.age(now) > limit


class QueryCache:
    """Process-wide result cache shared by every query consumer."""

    def __init__(self, clock: Clock = time.monotonic):
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._seq = itertools.count(1)

    def next_sequence(self) -> int:
        """Sequence number for a write attempt, taken at issue time."""
        return next(self._seq)

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(
        self,
        key: str,
        payload: Sequence[Any],
        seq: int,
        cache_time: float,
    ) -> Optional[CacheEntry]:
        """Store a fetched result set.

        Returns the new entry, or None when a newer write already landed.
        """
        current = self._entries.get(key)
        if current is not None and current.seq > seq:
            logger.debug(
                "Discarding superseded write for %r (seq %d < %d)", key, seq, current.seq
            )
            return None
        entry = CacheEntry(
            key=key,
            payload=tuple(payload),
            fetched_at=self.clock(),
            version=(current.version + 1) if current else 1,
            seq=seq,
            cache_time=cache_time,
        )
        self._entries[key] = entry
        return entry

    def patch(self, key: str, record_id: str, updates: Mapping[str, Any]) -> Optional[CacheEntry]:
        """Apply a local, unconfirmed change to one cached record.

        Freshness, version and sequence are left untouched.
        """
        current = self._entries.get(key)
        if current is None:
            return None
        entry = replace(current, payload=patch_records(current.payload, record_id, updates))
        self._entries[key] = entry
        return entry

    def evict(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self, cache_time: Optional[float] = None) -> list[str]:
        """Evict entries older than their retention window."""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now, cache_time)]
        for key in expired:
            del self._entries[key]
        return expired

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "records": sum(len(e.payload) for e in self._entries.values()),
        }


def patch_records(records: Sequence[T], record_id: str, updates: Mapping[str, Any]) -> tuple[T, ...]:
    """Return ``records`` with ``updates`` merged into the record ``record_id``."""
    return tuple(
        r.merged(updates) if getattr(r, "id", None) == record_id else r
        for r in records
    )
