"""
PAYDESK — Live Subscription Registry.

At most one remote subscription per listener key, shared by every
consumer holding a lease on that key. The remote subscription is torn
down when the last lease is released.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from paydesk.canonical import collection_of
from paydesk.exceptions import SubscriptionError

logger = logging.getLogger("paydesk.registry")

Listener = Callable[[Any], None]
Cancel = Callable[[], None]
# Opens the remote subscription: (push, on_error) -> cancel
Opener = Callable[[Callable[[Any], None], Callable[[Exception], None]], Awaitable[Cancel]]


@dataclass
class _Registration:
    key: str
    listeners: dict[int, Listener] = field(default_factory=dict)
    leases: dict[int, Lease] = field(default_factory=dict)
    cancel: Optional[Cancel] = None
    last_snapshot: Any = None

    def add(self, lease: Lease, listener: Listener) -> None:
        self.listeners[lease.lease_id] = listener
        self.leases[lease.lease_id] = lease

    def remove(self, lease: Lease) -> None:
        self.listeners.pop(lease.lease_id, None)
        self.leases.pop(lease.lease_id, None)

    def close(self) -> None:
        if self.cancel is not None:
            self.cancel()
            self.cancel = None
        # Outstanding leases are inert once the subscription is gone
        for lease in self.leases.values():
            lease.released = True
        self.leases.clear()
        self.listeners.clear()


class Lease:
    """One consumer's interest in a shared subscription."""

    def __init__(self, registry: SubscriptionRegistry, key: str, lease_id: int):
        self.registry = registry
        self.key = key
        self.lease_id = lease_id
        self.released = False

    def release(self) -> None:
        """Drop this consumer's interest. Safe to call more than once."""
        if self.released:
            return
        self.released = True
        self.registry._release(self)

    def __repr__(self) -> str:
        return f"Lease(key={self.key!r}, id={self.lease_id}, released={self.released})"


class SubscriptionRegistry:
    """Reference-counted registry of live remote subscriptions."""

    def __init__(self) -> None:
        self._registrations: dict[str, _Registration] = {}
        self._ids = itertools.count(1)

    async def acquire(self, key: str, opener: Opener, listener: Listener) -> Lease:
        """Register ``listener`` for pushes on ``key``.

        The first lease on a key opens the remote subscription; later
        leases share it and immediately receive the last pushed snapshot.

        Raises:
            SubscriptionError: If the remote subscription cannot be opened.
        """
        lease = Lease(self, key, next(self._ids))
        reg = self._registrations.get(key)
        if reg is not None:
            reg.add(lease, listener)
            logger.debug("Reusing subscription %r (%d consumers)", key, len(reg.listeners))
            if reg.last_snapshot is not None:
                self._call(reg, listener, reg.last_snapshot)
            return lease

        reg = _Registration(key)
        reg.add(lease, listener)
        # Registered before awaiting so concurrent acquires share this one
        self._registrations[key] = reg
        logger.info("Opening live subscription for %s", collection_of(key))
        try:
            cancel = await opener(
                lambda snapshot: self._push(reg, snapshot),
                lambda exc: self._fail(reg, exc),
            )
        except Exception as e:
            if self._registrations.get(key) is reg:
                del self._registrations[key]
            reg.close()
            raise SubscriptionError(f"Could not subscribe to {collection_of(key)}: {e}") from e

        if self._registrations.get(key) is not reg:
            # Failed or abandoned while opening
            cancel()
            lease.released = True
            return lease
        reg.cancel = cancel
        if not reg.listeners:
            # Every lease was released while the subscription was opening
            self._drop(reg)
        return lease

    def _push(self, reg: _Registration, snapshot: Any) -> None:
        if self._registrations.get(reg.key) is not reg:
            return
        reg.last_snapshot = snapshot
        for listener in list(reg.listeners.values()):
            self._call(reg, listener, snapshot)

    @staticmethod
    def _call(reg: _Registration, listener: Listener, snapshot: Any) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("Listener on %s failed", collection_of(reg.key))

    def _fail(self, reg: _Registration, exc: Exception) -> None:
        logger.error("Live subscription for %s failed: %s", collection_of(reg.key), exc)
        if self._registrations.get(reg.key) is reg:
            self._drop(reg)

    def _release(self, lease: Lease) -> None:
        reg = self._registrations.get(lease.key)
        if reg is None or lease.lease_id not in reg.listeners:
            return
        reg.remove(lease)
        if not reg.listeners and reg.cancel is not None:
            self._drop(reg)

    def _drop(self, reg: _Registration) -> None:
        self._registrations.pop(reg.key, None)
        reg.close()
        logger.info("Closed live subscription for %s", collection_of(reg.key))

    def is_active(self, key: str) -> bool:
        reg = self._registrations.get(key)
        return reg is not None and reg.cancel is not None

    def consumer_count(self, key: str) -> int:
        reg = self._registrations.get(key)
        return len(reg.listeners) if reg else 0

    def active_keys(self) -> list[str]:
        return [k for k, reg in self._registrations.items() if reg.cancel is not None]

    def close_all(self) -> None:
        """Tear down every subscription regardless of outstanding leases."""
        for reg in list(self._registrations.values()):
            self._drop(reg)
