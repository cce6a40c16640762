"""Document store abstract base class -- the interface the CRM core syncs against.

Every backend (in-memory for tests, Redis, a hosted document database)
implements this ABC. Records travel as plain JSON-compatible dicts keyed by
document id; the store is the system of record and the CRM core keeps an
in-memory mirror of each collection it subscribes to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

Document = dict[str, Any]
ChangeHandler = Callable[[list[Document]], None]
ErrorHandler = Callable[[Exception], None]


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    """Raised when a partial update targets a document that does not exist."""

    def __init__(self, path: str, doc_id: str) -> None:
        self.path = path
        self.doc_id = doc_id
        super().__init__(f"Document '{doc_id}' not found in {path}")


class Subscription(ABC):
    """Handle for a live collection subscription."""

    @abstractmethod
    async def close(self) -> None:
        """Stop further delivery. Safe to call more than once."""
        ...


class DocumentStore(ABC):
    """Abstract interface for a remote document store.

    Methods:
        subscribe: Live subscription delivering the full record set on change.
        get_all: One-shot read of every document in a collection.
        put: Create or replace a document.
        patch: Merge fields into an existing document.
        remove: Delete a document.
    """

    @abstractmethod
    async def subscribe(
        self,
        path: str,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        """Subscribe to a collection.

        ``on_change`` receives the complete current document list once on
        subscription and again after every change. ``on_error`` receives
        failures of the change stream.
        """
        ...

    @abstractmethod
    async def get_all(self, path: str) -> list[Document]:
        """Return every document in the collection."""
        ...

    @abstractmethod
    async def put(self, path: str, doc_id: str, document: Document) -> None:
        """Create or fully replace a document."""
        ...

    @abstractmethod
    async def patch(self, path: str, doc_id: str, changes: Document) -> None:
        """Merge ``changes`` into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        ...

    @abstractmethod
    async def remove(self, path: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...
