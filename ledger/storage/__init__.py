"""Storage collaborators: document store, object store, key mapping, pagination."""

from ledger.storage.document_store import (
    Condition,
    ConditionFailedError,
    DeleteRequest,
    DocumentStore,
    InMemoryDocumentStore,
    PutRequest,
    QueryResult,
    TransactionCanceledError,
    TransactionTooLargeError,
)
from ledger.storage.object_store import InMemoryObjectStore, ObjectChangedError, ObjectMetadata, ObjectStore
from ledger.storage.pagination import Page, decode_cursor, encode_cursor

__all__ = [
    "Condition",
    "ConditionFailedError",
    "DeleteRequest",
    "DocumentStore",
    "InMemoryDocumentStore",
    "PutRequest",
    "QueryResult",
    "TransactionCanceledError",
    "TransactionTooLargeError",
    "InMemoryObjectStore",
    "ObjectChangedError",
    "ObjectMetadata",
    "ObjectStore",
    "Page",
    "decode_cursor",
    "encode_cursor",
]
