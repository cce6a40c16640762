"""Unit tests for the DocumentStore interface, the in-memory store and path layout."""

from __future__ import annotations

import pytest

from src.salescrm.config import Settings
from src.salescrm.store.adapter import DocumentNotFoundError, DocumentStore, StoreError
from src.salescrm.store.memory import InMemoryDocumentStore
from src.salescrm.store.paths import (
    NESTED_COLLECTIONS,
    PRIMARY_COLLECTIONS,
    Collection,
    collection_path,
)

PATH = "crm/main/crm_leads"


class _Collector:
    """Change handler recording every delivered snapshot."""

    def __init__(self) -> None:
        self.snapshots: list[list[dict]] = []

    def __call__(self, documents: list[dict]) -> None:
        self.snapshots.append(documents)

    @property
    def last_ids(self) -> list[str]:
        return [doc["id"] for doc in self.snapshots[-1]]


# ── Interface ──────────────────────────────────────────────────────────────


class TestDocumentStoreABC:
    def test_abstract_methods(self):
        assert DocumentStore.__abstractmethods__ == {
            "subscribe",
            "get_all",
            "put",
            "patch",
            "remove",
        }

    def test_cannot_instantiate(self):
        with pytest.raises(TypeError, match="abstract"):
            DocumentStore()

    def test_not_found_is_store_error(self):
        err = DocumentNotFoundError(PATH, "l1")
        assert isinstance(err, StoreError)
        assert err.path == PATH
        assert err.doc_id == "l1"


# ── In-Memory Store ────────────────────────────────────────────────────────


class TestInMemoryDocumentStore:
    async def test_subscribe_delivers_initial_snapshot(self):
        store = InMemoryDocumentStore({PATH: {"l1": {"id": "l1"}}})
        collector = _Collector()
        await store.subscribe(PATH, collector)
        assert collector.last_ids == ["l1"]

    async def test_put_fans_out_snapshot(self):
        store = InMemoryDocumentStore()
        collector = _Collector()
        await store.subscribe(PATH, collector)
        await store.put(PATH, "l1", {"id": "l1", "title": "A"})
        assert len(collector.snapshots) == 2
        assert collector.snapshots[-1] == [{"id": "l1", "title": "A"}]
        assert store.write_count == 1

    async def test_patch_merges_fields(self):
        store = InMemoryDocumentStore({PATH: {"l1": {"id": "l1", "title": "A", "value": 1}}})
        await store.patch(PATH, "l1", {"value": 2})
        assert store.get(PATH, "l1") == {"id": "l1", "title": "A", "value": 2}

    async def test_patch_missing_document_raises(self):
        store = InMemoryDocumentStore()
        with pytest.raises(DocumentNotFoundError):
            await store.patch(PATH, "ghost", {"value": 2})
        assert store.write_count == 0

    async def test_remove_notifies_only_when_present(self):
        store = InMemoryDocumentStore({PATH: {"l1": {"id": "l1"}}})
        collector = _Collector()
        await store.subscribe(PATH, collector)
        await store.remove(PATH, "ghost")
        assert len(collector.snapshots) == 1
        await store.remove(PATH, "l1")
        assert collector.snapshots[-1] == []

    async def test_documents_are_copied(self):
        """Mutating a delivered or stored document never leaks back into the store."""
        store = InMemoryDocumentStore()
        doc = {"id": "l1", "tags": ["a"]}
        await store.put(PATH, "l1", doc)
        doc["tags"].append("b")
        snapshot = await store.get_all(PATH)
        snapshot[0]["tags"].append("c")
        assert store.get(PATH, "l1")["tags"] == ["a"]

    async def test_close_stops_delivery(self):
        store = InMemoryDocumentStore()
        collector = _Collector()
        subscription = await store.subscribe(PATH, collector)
        assert store.subscriber_count(PATH) == 1
        await subscription.close()
        await subscription.close()
        assert store.subscriber_count(PATH) == 0
        await store.put(PATH, "l1", {"id": "l1"})
        assert len(collector.snapshots) == 1

    async def test_failing_subscriber_does_not_break_writes(self):
        store = InMemoryDocumentStore()
        calls = []

        def broken(documents):
            calls.append(documents)
            if len(calls) > 1:
                raise RuntimeError("handler bug")

        await store.subscribe(PATH, broken)
        await store.put(PATH, "l1", {"id": "l1"})
        assert store.get(PATH, "l1") == {"id": "l1"}

    async def test_collections_are_isolated(self):
        store = InMemoryDocumentStore()
        await store.put(PATH, "l1", {"id": "l1"})
        assert await store.get_all("notifications") == []


# ── Paths ──────────────────────────────────────────────────────────────────


class TestCollectionPaths:
    def test_crm_collections_are_nested(self):
        settings = Settings()
        assert collection_path(Collection.LEADS, settings) == "crm/main/crm_leads"
        assert collection_path(Collection.CALENDAR_ENTRIES, settings) == "crm/main/crm_calendar"
        assert (
            collection_path(Collection.QUOTATION_REQUESTS, settings)
            == "crm/main/crm_quotation_requests"
        )

    @pytest.mark.parametrize(
        "collection,expected",
        [
            (Collection.CALENDARS, "calendars"),
            (Collection.CALENDAR_SHARES, "calendar_shares"),
            (Collection.BOOKING_PAGES, "public_booking_pages"),
            (Collection.BOOKINGS, "bookings"),
            (Collection.USER_SCHEDULES, "user_schedules"),
            (Collection.NOTIFICATIONS, "notifications"),
        ],
    )
    def test_scheduling_and_notifications_are_top_level(self, collection, expected):
        assert collection_path(collection, Settings()) == expected

    def test_root_is_configurable(self):
        settings = Settings(CRM_ROOT_COLLECTION="tenants", CRM_MAIN_DOC="acme")
        assert collection_path(Collection.TASKS, settings) == "tenants/acme/crm_tasks"

    def test_nested_set_covers_eight_collections(self):
        assert len(NESTED_COLLECTIONS) == 8
        assert set(PRIMARY_COLLECTIONS) <= NESTED_COLLECTIONS
