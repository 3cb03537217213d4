"""Shared fixtures: config reset, a controllable clock and an
instrumented in-memory store."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import pytest

from paydesk import config
from paydesk.exceptions import RemoteReadError, RemoteWriteError
from paydesk.storage.memory import MemoryDocumentStore

PAYDESK_ENV = [
    "PAYDESK_HOME",
    "PAYDESK_DB",
    "PAYDESK_STORAGE",
    "PAYDESK_POOL_SIZE",
    "PAYDESK_HTTP_URL",
    "PAYDESK_API_KEY",
    "PAYDESK_POLL_INTERVAL",
    "PAYDESK_CACHE_TIME",
    "PAYDESK_STALE_TIME",
    "PAYDESK_SWEEP_INTERVAL",
]


@pytest.fixture(autouse=True)
def reset_paydesk_config(monkeypatch):
    """Reset config from a clean environment between every test."""
    for name in PAYDESK_ENV:
        monkeypatch.delenv(name, raising=False)
    config.reload()
    yield
    config.reload()


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStore(MemoryDocumentStore):
    """Memory store that counts reads and can fail or stall on demand."""

    def __init__(self, seed=None):
        super().__init__(seed)
        self.query_calls = 0
        self.update_calls = 0
        self.fail_reads = False
        self.fail_writes = False
        self.read_gate: Optional[asyncio.Event] = None
        self.write_gate: Optional[asyncio.Event] = None

    async def query(self, collection: str, filters: Mapping[str, Any]):
        self.query_calls += 1
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.fail_reads:
            raise RemoteReadError("store offline")
        return await super().query(collection, filters)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        self.update_calls += 1
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes:
            raise RemoteWriteError("write rejected")
        await super().update(collection, doc_id, fields)


SEED = {
    "companies": {
        "A": {"name": "Acme Staffing", "active": True},
        "B": {"name": "Globex Services", "active": True},
    },
    "employees": {
        "e1": {"name": "Al", "companyId": "A", "clientId": "c1", "payRate": 20.0,
               "payType": "hourly", "active": True},
        "e2": {"name": "Bea", "companyId": "A", "clientId": "c2", "payRate": 150.0,
               "payType": "per_diem", "active": True},
        "e3": {"name": "Cy", "companyId": "B", "clientId": "c3", "payRate": 18.0,
               "payType": "hourly", "active": False},
    },
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return CountingStore(SEED)
