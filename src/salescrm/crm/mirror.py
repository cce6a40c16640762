"""In-memory mirror of one store collection.

The mirror is the only state consumers read. It is updated two ways:
- synchronously by local mutations (optimistic upsert / discard / restore);
- by full snapshots delivered from the store subscription.

Snapshot reconciliation rules:
- a delivered record replaces the local copy only if its revision is not
  older than the local one;
- records with a local write in flight keep their local state (including
  local absence after a delete);
- records missing from the snapshot are dropped unless a local write for
  them is in flight;
- a locally deleted record leaves a tombstone holding its last revision;
  delivered copies at or below that revision are ignored until a snapshot
  no longer contains the id.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Generic, TypeVar

import structlog
from pydantic import ValidationError

from src.salescrm.crm.schemas import CRMRecord
from src.salescrm.store.adapter import Document

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=CRMRecord)


class Mirror(Generic[R]):
    """Ordered id -> record cache for a single collection.

    Args:
        name: Collection name (for logging).
        model: Record schema used to deserialize snapshot documents.
        predicate: Optional filter; snapshot records failing it are ignored.
        sort_key: Optional key applied when reading ``records``.
        descending: Reverse the ``sort_key`` order.
    """

    def __init__(
        self,
        name: str,
        model: type[R],
        *,
        predicate: Callable[[R], bool] | None = None,
        sort_key: Callable[[R], object] | None = None,
        descending: bool = False,
    ) -> None:
        self.name = name
        self._model = model
        self._predicate = predicate
        self._sort_key = sort_key
        self._descending = descending
        self._records: dict[str, R] = {}
        self._pending: dict[str, int] = {}
        self._tombstones: dict[str, int] = {}

    # ── Reads ───────────────────────────────────────────────────────────

    def get(self, record_id: str) -> R | None:
        return self._records.get(record_id)

    @property
    def records(self) -> tuple[R, ...]:
        values = list(self._records.values())
        if self._sort_key is not None:
            values.sort(key=self._sort_key, reverse=self._descending)
        return tuple(values)

    def find(self, match: Callable[[R], bool]) -> R | None:
        """Return the first record (in mirror order) satisfying ``match``."""
        return next((record for record in self._records.values() if match(record)), None)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[R]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self._records)

    # ── Local mutations ─────────────────────────────────────────────────

    def upsert(self, record: R) -> None:
        self._tombstones.pop(record.id, None)
        self._records[record.id] = record

    def discard(self, record_id: str) -> R | None:
        previous = self._records.pop(record_id, None)
        if previous is not None:
            self._tombstones[record_id] = previous.revision
        return previous

    def restore(self, record_id: str, previous: R | None) -> None:
        """Put back the state captured before a failed write."""
        if previous is None:
            self._records.pop(record_id, None)
        else:
            self._tombstones.pop(record_id, None)
            self._records[record_id] = previous

    def rollback(
        self,
        record_id: str,
        previous: R | None,
        applied: R | None,
        fields: set[str] | None = None,
    ) -> bool:
        """Undo a failed write whose optimistic result was ``applied``.

        If the record still sits at ``applied``'s revision, ``previous`` is put
        back. If a later local change has landed on top, only ``fields`` that
        still hold the failed values are reverted and the later change is kept.

        Returns:
            True when the mirror is back in step with the store; False when
            the record must be re-read from the store.
        """
        current = self._records.get(record_id)
        applied_revision = applied.revision if applied is not None else None
        current_revision = current.revision if current is not None else None
        if current_revision == applied_revision:
            self.restore(record_id, previous)
            return True

        if fields and current is not None and previous is not None and applied is not None:
            reverted = {
                name: getattr(previous, name)
                for name in fields
                if getattr(current, name) == getattr(applied, name)
            }
            if reverted:
                self._records[record_id] = current.model_copy(update=reverted)
        return False

    def begin_write(self, record_id: str) -> None:
        self._pending[record_id] = self._pending.get(record_id, 0) + 1

    def end_write(self, record_id: str) -> None:
        remaining = self._pending.get(record_id, 0) - 1
        if remaining > 0:
            self._pending[record_id] = remaining
        else:
            self._pending.pop(record_id, None)

    def has_pending(self, record_id: str) -> bool:
        return record_id in self._pending

    # ── Snapshots ───────────────────────────────────────────────────────

    def apply_snapshot(self, documents: Iterable[Document]) -> None:
        """Reconcile the mirror with a full collection snapshot."""
        incoming: dict[str, R] = {}
        for document in documents:
            try:
                record = self._model.from_document(document)
            except ValidationError as exc:
                logger.warning(
                    "mirror.invalid_document",
                    collection=self.name,
                    doc_id=document.get("id"),
                    error=str(exc),
                )
                continue
            if record.id is None:
                continue
            if self._predicate is not None and not self._predicate(record):
                continue
            incoming[record.id] = record

        merged: dict[str, R] = {}
        stale = 0
        for record_id, record in incoming.items():
            current = self._records.get(record_id)
            if record_id in self._pending:
                if current is not None:
                    merged[record_id] = current
                continue
            tombstone = self._tombstones.get(record_id)
            if tombstone is not None and record.revision <= tombstone:
                stale += 1
                continue
            if current is not None and record.revision < current.revision:
                merged[record_id] = current
                stale += 1
                continue
            merged[record_id] = record

        for record_id, current in self._records.items():
            if record_id not in merged and record_id in self._pending:
                merged[record_id] = current

        self._records = merged
        self._tombstones = {
            record_id: revision
            for record_id, revision in self._tombstones.items()
            if record_id in incoming or record_id in self._pending
        }
        if stale:
            logger.debug("mirror.stale_records_kept", collection=self.name, count=stale)
