"""Room document store: rooms, ordered message collections, and snapshot subscriptions."""

from .documents import (
    SERVER_TIMESTAMP,
    InMemoryDocumentStore,
    MessageDocument,
    RoomDocument,
    ServerTimestamp,
    passkey_digest,
)
from .errors import DocumentNotFound, ImmutableFieldError, InvalidDocument, StoreError, WriteRejected
from .hub import Subscription, SubscriptionHub
from .service import DocumentService
from .sqlite_backend import SQLiteBackend
from .sqlite_documents import SQLiteDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentNotFound",
    "DocumentService",
    "ImmutableFieldError",
    "InMemoryDocumentStore",
    "InvalidDocument",
    "MessageDocument",
    "RoomDocument",
    "SQLiteBackend",
    "SQLiteDocumentStore",
    "ServerTimestamp",
    "StoreError",
    "Subscription",
    "SubscriptionHub",
    "WriteRejected",
    "passkey_digest",
]
