"""PAYDESK — Optimistic mutations.

Apply a change locally, write it to the store, and on failure roll
back and resynchronize with a forced refetch.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from paydesk.exceptions import PaydeskError
from paydesk.loader import QuerySpec
from paydesk.storage import DocumentStore

logger = logging.getLogger("paydesk.mutations")


async def apply_optimistic(
    store: DocumentStore,
    query: QuerySpec,
    record_id: str,
    updates: Mapping[str, Any],
    *,
    apply_local: Callable[[], None],
    refetch: Callable[[], Awaitable[Any]],
    rollback: Optional[Callable[[], None]] = None,
) -> bool:
    """Run one optimistic partial update.

    ``apply_local`` runs before the first suspension point, so consumers
    observe the change before the write completes. Returns True when the
    store accepted the write. Failures are logged, never raised.

    Raises:
        ValueError: If ``updates`` names a field the record type lacks.
    """
    fields = query.collection.record_type.encode_fields(updates)
    apply_local()

    try:
        await store.update(query.name, record_id, fields)
    except PaydeskError as e:
        logger.error("Optimistic update failed for %s/%s: %s", query.name, record_id, e)
    except Exception as e:
        logger.exception("Unexpected error updating %s/%s: %s", query.name, record_id, e)
    else:
        logger.info("Optimistic update confirmed for %s/%s", query.name, record_id)
        return True

    if rollback is not None:
        rollback()
    await refetch()
    return False
