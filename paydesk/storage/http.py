"""
PAYDESK — Remote Document Store Client.

Async client for a document REST service using httpx.AsyncClient.
Live subscriptions are served by polling: each poller re-runs its query
and pushes the snapshot only when it differs from the last one.

Usage:
    async with HttpDocumentStore("https://docs.example.com/v1", api_key="...") as store:
        docs = await store.query("employees", {"companyId": "A"})
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional
from urllib.parse import quote

import httpx

from paydesk.canonical import canonical_json
from paydesk.exceptions import (
    DocumentNotFound,
    RemoteReadError,
    RemoteWriteError,
    StoreError,
    SubscriptionError,
    TransactionError,
)
from paydesk.storage import (
    Cancel,
    Document,
    ErrorCallback,
    SnapshotCallback,
    Transaction,
    new_document_id,
)

logger = logging.getLogger("paydesk.storage.http")

DEFAULT_TIMEOUT = 30.0


class HttpStoreError(StoreError):
    """Document service returned an error response."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Document service error {status_code}: {detail}")


def _doc_path(collection: str, doc_id: str | None = None) -> str:
    path = f"/collections/{quote(collection, safe='')}/documents"
    if doc_id is not None:
        path += f"/{quote(doc_id, safe='')}"
    return path


def _to_document(payload: dict) -> Document:
    return Document(str(payload["id"]), dict(payload.get("data") or {}))


class _HttpTransaction(Transaction):
    def __init__(self, store: HttpDocumentStore, tx_id: str):
        super().__init__()
        self._store = store
        self.tx_id = tx_id

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return await self._store._get(collection, doc_id, params={"transaction": self.tx_id})


class HttpDocumentStore:
    """Document store backed by a remote REST service.

    Args:
        base_url: Service URL including the API version prefix.
        api_key: Bearer token sent with every request.
        poll_interval: Seconds between polls of a live subscription.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        poll_interval: float = 5.0,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._pollers: set[asyncio.Task] = set()

    async def __aenter__(self) -> HttpDocumentStore:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ─── Internal ────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise HttpStoreError(408, f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise HttpStoreError(0, f"Connection error: {e}") from e
        if resp.status_code >= 400 and resp.status_code != 404:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise HttpStoreError(resp.status_code, detail)
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            return resp.json()
        except ValueError as e:
            raise HttpStoreError(resp.status_code, f"Invalid JSON response: {e}") from e

    async def _get(self, collection: str, doc_id: str, params: dict | None = None) -> Optional[Document]:
        try:
            resp = await self._request("GET", _doc_path(collection, doc_id), params=params)
            if resp.status_code == 404:
                return None
            return _to_document(self._json(resp))
        except HttpStoreError as e:
            raise RemoteReadError(str(e)) from e

    # ─── Reads ───────────────────────────────────────────────────────

    async def query(self, collection: str, filters: Mapping[str, Any]) -> list[Document]:
        where = {k: v for k, v in filters.items() if v is not None}
        try:
            resp = await self._request(
                "GET", _doc_path(collection), params={"where": canonical_json(where)}
            )
            if resp.status_code == 404:
                return []
            payload = self._json(resp)
        except HttpStoreError as e:
            raise RemoteReadError(str(e)) from e
        return [_to_document(item) for item in payload.get("documents", [])]

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return await self._get(collection, doc_id)

    # ─── Writes ──────────────────────────────────────────────────────

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        try:
            resp = await self._request("POST", _doc_path(collection), json=dict(data))
            if resp.status_code == 404:
                raise HttpStoreError(404, f"Collection {collection} not found")
            return str(self._json(resp)["id"])
        except (HttpStoreError, KeyError) as e:
            raise RemoteWriteError(f"Add to {collection} failed: {e}") from e

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        try:
            resp = await self._request("PATCH", _doc_path(collection, doc_id), json=dict(fields))
        except HttpStoreError as e:
            raise RemoteWriteError(f"Update of {collection}/{doc_id} failed: {e}") from e
        if resp.status_code == 404:
            raise DocumentNotFound(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            await self._request("DELETE", _doc_path(collection, doc_id))
        except HttpStoreError as e:
            raise RemoteWriteError(f"Delete of {collection}/{doc_id} failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        try:
            resp = await self._request("POST", "/transactions")
            tx_id = str(self._json(resp)["transaction"])
        except (HttpStoreError, KeyError) as e:
            raise TransactionError(f"Could not begin transaction: {e}") from e

        tx = _HttpTransaction(self, tx_id)
        yield tx

        writes = [
            {
                "op": w.op,
                "collection": w.collection,
                "id": w.doc_id,
                "data": w.data,
                "merge": w.merge,
            }
            for w in tx.writes
        ]
        try:
            resp = await self._request(
                "POST", f"/transactions/{quote(tx_id, safe='')}/commit", json={"writes": writes}
            )
        except HttpStoreError as e:
            raise TransactionError(f"Commit of transaction {tx_id} failed: {e}") from e
        if resp.status_code == 404:
            raise TransactionError(f"Transaction {tx_id} expired")

    # ─── Push ────────────────────────────────────────────────────────

    async def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Cancel:
        try:
            docs = await self.query(collection, filters)
        except RemoteReadError as e:
            raise SubscriptionError(f"Subscribe to {collection} failed: {e}") from e
        on_snapshot(docs)

        task = asyncio.create_task(
            self._poll(collection, dict(filters), docs, on_snapshot, on_error),
            name=f"paydesk-poll-{collection}-{new_document_id()[:6]}",
        )
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

        def cancel() -> None:
            task.cancel()

        return cancel

    async def _poll(
        self,
        collection: str,
        filters: dict[str, Any],
        last: list[Document],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        last_key = canonical_json([[d.id, d.data] for d in last])
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                docs = await self.query(collection, filters)
            except RemoteReadError as e:
                logger.error("Polling %s stopped: %s", collection, e)
                on_error(e)
                return
            key = canonical_json([[d.id, d.data] for d in docs])
            if key != last_key:
                last_key = key
                on_snapshot(docs)

    async def close(self) -> None:
        for task in list(self._pollers):
            task.cancel()
        await self._client.aclose()
