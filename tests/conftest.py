"""Shared fixtures for the CRM core tests.

Provides:
- A fixed clock and settings with seeding disabled
- RecordingStore: in-memory store that also keeps every change handler it
  was given, so tests can fire callbacks after teardown
- A roster of session users covering every role
- A started CRMService signed in as an admin
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from src.salescrm.config import Settings
from src.salescrm.core.session import DirectoryUser, SessionContext, SessionUser
from src.salescrm.crm.service import CRMService
from src.salescrm.store.adapter import ChangeHandler, ErrorHandler, Subscription
from src.salescrm.store.memory import InMemoryDocumentStore

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

ADMIN = SessionUser(id="u-admin", name="Alice Admin", role_id="admin", email="alice@example.com")
HEAD = SessionUser(
    id="u-head", name="Hana Head", role_id="sales_coordination_head", email="hana@example.com"
)
EXECUTIVE = SessionUser(
    id="u-exec", name="Ethan Exec", role_id="sales_executive", email="ethan@example.com"
)

ROSTER = [
    DirectoryUser(id="u-admin", name="Alice Admin", email="alice@example.com", role_id="admin"),
    DirectoryUser(
        id="u-head", name="Hana Head", email="hana@example.com", role_id="sales_coordination_head"
    ),
    DirectoryUser(id="u-mgr", name="Max Manager", email="max@example.com", role_id="sales_manager"),
    DirectoryUser(
        id="u-old-mgr",
        name="Olga Former",
        email="olga@example.com",
        role_id="sales_manager",
        is_active=False,
    ),
    DirectoryUser(id="u-exec", name="Ethan Exec", email="ethan@example.com", role_id="sales_executive"),
    DirectoryUser(
        id="u-coord-a", name="Cora Coord", email="cora@example.com", role_id="sales_coordinator"
    ),
    DirectoryUser(
        id="u-coord-b", name="Ben Coord", email="ben@example.com", role_id="sales_coordinator"
    ),
]


class RecordingStore(InMemoryDocumentStore):
    """In-memory store that remembers every subscription handler."""

    def __init__(self, initial=None) -> None:
        super().__init__(initial)
        self.handlers: dict[str, list[ChangeHandler]] = {}
        self.error_handlers: dict[str, list[ErrorHandler]] = {}

    async def subscribe(
        self,
        path: str,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        self.handlers.setdefault(path, []).append(on_change)
        if on_error is not None:
            self.error_handlers.setdefault(path, []).append(on_error)
        return await super().subscribe(path, on_change, on_error)


@pytest.fixture
def settings() -> Settings:
    return Settings(SEED_ON_START=False)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(users=ROSTER)


@pytest_asyncio.fixture
async def service(store, session, settings) -> CRMService:
    """CRMService bound to ``session`` and signed in as ADMIN."""
    crm = CRMService(store, session=session, settings=settings, clock=lambda: FIXED_NOW)
    await session.set_current_user(ADMIN)
    yield crm
    await crm.stop()
