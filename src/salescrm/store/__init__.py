"""Document store layer -- pluggable adapter pattern for the CRM mirrors.

Provides the abstract DocumentStore interface with concrete implementations:
- InMemoryDocumentStore: process-local store with change fan-out
- RedisDocumentStore: Redis hashes + pub/sub change notifications

and the collection/path layout shared by every backend.
"""

from src.salescrm.store.adapter import (
    DocumentNotFoundError,
    DocumentStore,
    StoreError,
    Subscription,
)
from src.salescrm.store.memory import InMemoryDocumentStore
from src.salescrm.store.paths import Collection, collection_path

__all__ = [
    "Collection",
    "DocumentNotFoundError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreError",
    "Subscription",
    "collection_path",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the Redis store so the redis client is only imported on use."""
    if name == "RedisDocumentStore":
        from src.salescrm.store.redis import RedisDocumentStore

        return RedisDocumentStore
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
