"""PAYDESK — Canonical query keys.

Deterministic JSON serialization and null-byte separated fingerprints
for cache entries and live subscriptions.

Key scheme:
    fingerprint    f"{collection}\\x00{canonical_predicates}"
    listener key   f"{fingerprint}\\x00{live|once}"
"""

from __future__ import annotations

import json
from typing import Any, Mapping

SEPARATOR = "\x00"

# ─── Canonical JSON ───────────────────────────────────────────────


def canonical_json(obj: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace, ASCII-safe.

    Guarantees identical output for semantically identical input
    regardless of Python dict insertion order. ASCII escaping also
    guarantees the output never contains a raw null byte.

    Args:
        obj: Any JSON-serializable object.

    Returns:
        Canonical JSON string.
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"),
        ensure_ascii=True, default=str,
    )


# ─── Query Fingerprints ──────────────────────────────────────────


def normalize_filters(filters: Any = None) -> dict[str, Any]:
    """Reduce a filter struct or mapping to its equality predicates.

    ``None`` values are dropped so that a missing value and an absent
    key produce the same predicates.
    """
    if filters is None:
        return {}
    if hasattr(filters, "predicates"):
        return filters.predicates()
    if not isinstance(filters, Mapping):
        raise TypeError(f"Unsupported filter type: {type(filters).__name__}")
    return {str(k): v for k, v in filters.items() if v is not None}


def fingerprint(collection: str, filters: Any = None) -> str:
    """Compute the cache key for a collection query.

    Args:
        collection: Collection name. Must not contain a null byte.
        filters: Filter struct, mapping or ``None``.

    Returns:
        Null-byte separated key of collection and canonical predicates.
    """
    if not collection or SEPARATOR in collection:
        raise ValueError(f"Invalid collection name: {collection!r}")
    return f"{collection}{SEPARATOR}{canonical_json(normalize_filters(filters))}"


def listener_key(collection: str, filters: Any = None, background: bool = True) -> str:
    """Subscription registry key: the fingerprint plus the update mode."""
    mode = "live" if background else "once"
    return f"{fingerprint(collection, filters)}{SEPARATOR}{mode}"


def collection_of(key: str) -> str:
    """Return the collection part of a fingerprint or listener key."""
    return key.split(SEPARATOR, 1)[0]
