"""In-memory document store.

Keeps every collection as a dict of deep-copied documents and fans out a
fresh snapshot to subscribers after each write, the way a hosted document
database's change stream does. Used by the test-suite and for local runs
without Redis.
"""

from __future__ import annotations

import copy

import structlog

from src.salescrm.store.adapter import (
    ChangeHandler,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    ErrorHandler,
    Subscription,
)

logger = structlog.get_logger(__name__)


class _MemorySubscription(Subscription):
    def __init__(self, store: InMemoryDocumentStore, path: str, handler: ChangeHandler) -> None:
        self._store = store
        self._path = path
        self._handler = handler
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._detach(self._path, self._handler)


class InMemoryDocumentStore(DocumentStore):
    """DocumentStore backed by process memory.

    Args:
        initial: Optional ``{path: {doc_id: document}}`` contents.
    """

    def __init__(self, initial: dict[str, dict[str, Document]] | None = None) -> None:
        self._collections: dict[str, dict[str, Document]] = copy.deepcopy(initial or {})
        self._subscribers: dict[str, list[ChangeHandler]] = {}
        self.write_count = 0

    # ── Subscriptions ───────────────────────────────────────────────────

    async def subscribe(
        self,
        path: str,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        self._subscribers.setdefault(path, []).append(on_change)
        logger.debug("memory_store.subscribed", path=path)
        on_change(self._snapshot(path))
        return _MemorySubscription(self, path, on_change)

    def subscriber_count(self, path: str) -> int:
        """Number of live subscriptions on a collection."""
        return len(self._subscribers.get(path, []))

    def _detach(self, path: str, handler: ChangeHandler) -> None:
        handlers = self._subscribers.get(path, [])
        if handler in handlers:
            handlers.remove(handler)
        logger.debug("memory_store.unsubscribed", path=path)

    def _snapshot(self, path: str) -> list[Document]:
        return [copy.deepcopy(doc) for doc in self._collections.get(path, {}).values()]

    def _notify(self, path: str) -> None:
        for handler in list(self._subscribers.get(path, [])):
            try:
                handler(self._snapshot(path))
            except Exception as exc:
                logger.error(
                    "memory_store.subscriber_failed",
                    path=path,
                    error=str(exc),
                )

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_all(self, path: str) -> list[Document]:
        return self._snapshot(path)

    def get(self, path: str, doc_id: str) -> Document | None:
        """Synchronous point read (for inspection in tests and tools)."""
        doc = self._collections.get(path, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    # ── Writes ──────────────────────────────────────────────────────────

    async def put(self, path: str, doc_id: str, document: Document) -> None:
        self._collections.setdefault(path, {})[doc_id] = copy.deepcopy(document)
        self.write_count += 1
        self._notify(path)

    async def patch(self, path: str, doc_id: str, changes: Document) -> None:
        docs = self._collections.get(path, {})
        if doc_id not in docs:
            raise DocumentNotFoundError(path, doc_id)
        docs[doc_id].update(copy.deepcopy(changes))
        self.write_count += 1
        self._notify(path)

    async def remove(self, path: str, doc_id: str) -> None:
        docs = self._collections.get(path, {})
        if docs.pop(doc_id, None) is not None:
            self.write_count += 1
            self._notify(path)
