"""
PAYDESK — Cache Expiry Sweeper.

Background loop that bounds cache growth by evicting entries older
than their retention window.
"""

import asyncio
import logging
from typing import Optional

from paydesk.cache import QueryCache

logger = logging.getLogger("paydesk.sweeper")


class ExpirySweeper:
    """Periodically evicts expired cache entries."""

    def __init__(self, cache: QueryCache, interval: float = 60.0, cache_time: Optional[float] = None):
        self.cache = cache
        self.interval = interval
        self.cache_time = cache_time
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def sweep_once(self) -> list[str]:
        """Evict expired entries now and return their keys."""
        evicted = self.cache.sweep(self.cache_time)
        if evicted:
            logger.info("Cleaned %d old cache entries", len(evicted))
        return evicted

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.debug("ExpirySweeper started (interval=%.1fs)", self.interval)

    async def stop(self):
        """Stop sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("ExpirySweeper stopped")

    async def _sweep_loop(self):
        while self._running:
            await asyncio.sleep(self.interval)
            self.sweep_once()
