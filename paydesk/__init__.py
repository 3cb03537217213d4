"""
PAYDESK — Payroll back-office data access.

Cached collection queries, shared live subscriptions and optimistic
writes over a document store.
"""

__version__ = "1.0.0"

from paydesk.live import DataAccess, LiveQuery, QueryOptions

__all__ = ["DataAccess", "LiveQuery", "QueryOptions", "__version__"]
