"""
PAYDESK — Custom Exceptions.

Typed error hierarchy so store driver details (SQLite, HTTP) never
leak past the data-access boundary.
"""


class PaydeskError(Exception):
    """Base exception for all PAYDESK errors."""


class UnknownCollection(PaydeskError):
    """Raised when a collection name has no registered record type."""


class StoreError(PaydeskError):
    """Base class for failures of the remote document store."""


class RemoteReadError(StoreError):
    """Raised when a query or document read fails."""


class RemoteWriteError(StoreError):
    """Raised when a write (add, update, delete, commit) fails."""


class DocumentNotFound(RemoteWriteError):
    """Raised when a partial update targets a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"No document {collection}/{doc_id}")


class SubscriptionError(StoreError):
    """Raised when a live subscription cannot be established."""


class TransactionError(RemoteWriteError):
    """Raised when a transaction fails and none of its writes were applied."""


class InvalidDocument(RemoteReadError):
    """Raised when a stored document does not match its record type."""

    def __init__(self, collection: str, doc_id: str, cause: Exception):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Invalid document {collection}/{doc_id}: {cause}")
