"""
Document Store Module

Re-exports the Redis-backed document store and its sentinels.
"""
from .document_store import (
    RedisDocumentStore,
    DocumentSnapshot,
    Subscription,
    DocumentStoreError,
    DocumentNotFoundError,
    DELETE_FIELD,
    SERVER_TIMESTAMP,
)

__all__ = [
    "RedisDocumentStore",
    "DocumentSnapshot",
    "Subscription",
    "DocumentStoreError",
    "DocumentNotFoundError",
    "DELETE_FIELD",
    "SERVER_TIMESTAMP",
]
