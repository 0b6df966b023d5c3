"""
Document Store Integrations
"""

from .firestore_client import (
    FirestoreClient,
    FirestoreConfig,
    DocumentReference,
    DocumentSnapshot,
    FirestoreQuery,
    QueryFilter,
    QueryOrder,
    BatchWrite,
    DocumentStoreError,
)
from .memory_store import InMemoryFirestoreClient

__all__ = [
    "FirestoreClient",
    "FirestoreConfig",
    "DocumentReference",
    "DocumentSnapshot",
    "FirestoreQuery",
    "QueryFilter",
    "QueryOrder",
    "BatchWrite",
    "DocumentStoreError",
    "InMemoryFirestoreClient"
]
