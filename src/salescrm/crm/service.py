"""CRM synchronization core -- live mirrors plus optimistic write-through.

CRMService owns one Mirror per store collection for the lifetime of an
authenticated session and exposes typed mutation operations for every
entity. Each mutation:
1. updates the mirror synchronously (optimistic);
2. writes the same change through to the DocumentStore;
3. on store failure, undoes its own change in the mirror (re-reading the
   collection if a later local change has landed on the same record) and
   raises RemoteWriteError.

Lifecycle is explicit: ``start(identity)`` seeds an empty store and opens one
subscription per collection; ``stop()`` closes them and replaces every mirror
with an empty one. A generation counter discards snapshot callbacks that
belong to an earlier session, so nothing repopulates a mirror after stop.

Exports:
    CRMService: The synchronization core.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any, TypeVar

import structlog

from src.salescrm.config import Settings, get_settings
from src.salescrm.core.ids import new_id
from src.salescrm.core.session import DirectoryUser, SessionContext, SessionUser
from src.salescrm.crm.errors import (
    RecordNotFoundError,
    RecordValidationError,
    RemoteWriteError,
    SessionNotStartedError,
)
from src.salescrm.crm.mirror import Mirror
from src.salescrm.crm.pricing import (
    INVOICE_PREFIX,
    QUOTATION_PREFIX,
    apply_totals,
    next_document_number,
)
from src.salescrm.crm.schemas import (
    Booking,
    BookingUpdate,
    Calendar,
    CalendarEvent,
    CalendarEventUpdate,
    CalendarShare,
    CalendarShareUpdate,
    CalendarUpdate,
    CoordinatorRef,
    CRMRecord,
    CustomTaskTemplate,
    Customer,
    CustomerStatus,
    CustomerUpdate,
    Invoice,
    InvoiceStatus,
    InvoiceUpdate,
    Lead,
    LeadStatus,
    LeadTask,
    LeadUpdate,
    Notification,
    Project,
    ProjectUpdate,
    PublicBookingPage,
    PublicBookingPageUpdate,
    Quotation,
    QuotationRequest,
    QuotationRequestStatus,
    QuotationRequestUpdate,
    QuotationTags,
    QuotationUpdate,
    SharePermission,
    ShareStatus,
    Task,
    TaskStatus,
    TaskUpdate,
    TimelineEvent,
    TimelineEventType,
    UserSchedule,
)
from src.salescrm.crm.scoping import visible_tasks
from src.salescrm.crm.seed import seed_if_empty
from src.salescrm.crm.workflows import AssignmentResult, QuotationRequestWorkflow
from src.salescrm.store.adapter import Document, DocumentStore, Subscription
from src.salescrm.store.paths import Collection, collection_path

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=CRMRecord)

# Prefix marking a calendar entry whose linked task is done
COMPLETION_MARKER = "✓ "

_MODELS: dict[Collection, type[CRMRecord]] = {
    Collection.LEADS: Lead,
    Collection.CUSTOMERS: Customer,
    Collection.PROJECTS: Project,
    Collection.TASKS: Task,
    Collection.CALENDAR_ENTRIES: CalendarEvent,
    Collection.QUOTATIONS: Quotation,
    Collection.INVOICES: Invoice,
    Collection.QUOTATION_REQUESTS: QuotationRequest,
    Collection.CALENDARS: Calendar,
    Collection.CALENDAR_SHARES: CalendarShare,
    Collection.BOOKING_PAGES: PublicBookingPage,
    Collection.BOOKINGS: Booking,
    Collection.USER_SCHEDULES: UserSchedule,
    Collection.NOTIFICATIONS: Notification,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(notification: Notification) -> float:
    return notification.created_at.timestamp() if notification.created_at else 0.0


class CRMService:
    """Reactive mirror of the CRM store for one signed-in identity.

    Args:
        store: DocumentStore every collection is synced against.
        session: Optional SessionContext; when given, identity transitions
            start and stop the service automatically.
        settings: Settings (defaults to the process singleton).
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        store: DocumentStore,
        session: SessionContext | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock
        self._session: SessionContext | None = None
        self._user: SessionUser | None = None
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._mirrors: dict[Collection, Mirror] = self._build_mirrors(None)
        self._workflow = QuotationRequestWorkflow(self, self._settings)
        if session is not None:
            self.bind_session(session)

    # ── Lifecycle ───────────────────────────────────────────────────────

    def bind_session(self, session: SessionContext) -> None:
        """Follow the identity of ``session``: start on sign-in, stop on sign-out."""
        self._session = session
        session.add_listener(self._on_identity_changed)

    async def _on_identity_changed(self, user: SessionUser | None) -> None:
        if user is None:
            await self.stop()
        else:
            await self.start(user)

    async def start(self, user: SessionUser) -> None:
        """Open a session for ``user``.

        Tears down any session for a different identity first. Seeds the
        store when the primary collections are all empty, then subscribes
        to every collection.

        Raises:
            StoreError: A subscription could not be opened. The partial
                session has been stopped, so ``start`` can be retried.
        """
        if self._user == user:
            return
        if self._user is not None:
            await self.stop()

        self._generation += 1
        generation = self._generation
        self._user = user
        self._mirrors = self._build_mirrors(user)

        if self._settings.SEED_ON_START:
            try:
                await seed_if_empty(self._store, self._settings)
            except Exception as exc:
                logger.error("crm.seed_failed", user_id=user.id, error=str(exc))

        try:
            for collection, mirror in self._mirrors.items():
                if generation != self._generation:
                    return
                subscription = await self._store.subscribe(
                    self._path(collection),
                    self._snapshot_handler(generation, mirror),
                    self._error_handler(generation, collection),
                )
                if generation != self._generation:
                    await subscription.close()
                    return
                self._subscriptions.append(subscription)
        except Exception as exc:
            logger.error(
                "crm.session_start_failed",
                user_id=user.id,
                collection=collection.value,
                error=str(exc),
            )
            if generation == self._generation:
                await self.stop()
            raise

        logger.info(
            "crm.session_started",
            user_id=user.id,
            role_id=user.role_id,
            subscriptions=len(self._subscriptions),
        )

    async def stop(self) -> None:
        """Close every subscription and reset every mirror to empty."""
        if self._user is None and not self._subscriptions:
            return

        previous = self._user
        self._generation += 1
        self._user = None
        self._mirrors = self._build_mirrors(None)
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.close()

        logger.info(
            "crm.session_stopped",
            user_id=previous.id if previous else None,
            released=len(subscriptions),
        )

    @property
    def is_started(self) -> bool:
        return self._user is not None

    @property
    def current_user(self) -> SessionUser | None:
        return self._user

    @property
    def users(self) -> list[DirectoryUser]:
        """Roster of known users from the bound session (empty when unbound)."""
        return self._session.users if self._session is not None else []

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def _build_mirrors(self, user: SessionUser | None) -> dict[Collection, Mirror]:
        mirrors: dict[Collection, Mirror] = {}
        for collection, model in _MODELS.items():
            if collection is Collection.NOTIFICATIONS:
                recipient_id = user.id if user else None
                mirrors[collection] = Mirror(
                    collection.value,
                    Notification,
                    predicate=lambda n: n.recipient_id == recipient_id,
                    sort_key=_newest_first,
                    descending=True,
                )
            else:
                mirrors[collection] = Mirror(collection.value, model)
        return mirrors

    def _snapshot_handler(self, generation: int, mirror: Mirror) -> Callable[[list[Document]], None]:
        def on_change(documents: list[Document]) -> None:
            if generation != self._generation:
                logger.debug("crm.stale_snapshot_discarded", collection=mirror.name)
                return
            mirror.apply_snapshot(documents)

        return on_change

    def _error_handler(self, generation: int, collection: Collection) -> Callable[[Exception], None]:
        def on_error(exc: Exception) -> None:
            if generation != self._generation:
                return
            logger.error(
                "crm.subscription_error",
                collection=collection.value,
                error=str(exc),
            )

        return on_error

    # ── Read Views ──────────────────────────────────────────────────────

    @property
    def leads(self) -> tuple[Lead, ...]:
        return self._mirrors[Collection.LEADS].records

    @property
    def customers(self) -> tuple[Customer, ...]:
        return self._mirrors[Collection.CUSTOMERS].records

    @property
    def projects(self) -> tuple[Project, ...]:
        return self._mirrors[Collection.PROJECTS].records

    @property
    def tasks(self) -> tuple[Task, ...]:
        """Tasks visible to the current identity's role."""
        return visible_tasks(self._mirrors[Collection.TASKS].records, self._user)

    @property
    def calendar_entries(self) -> tuple[CalendarEvent, ...]:
        return self._mirrors[Collection.CALENDAR_ENTRIES].records

    @property
    def quotations(self) -> tuple[Quotation, ...]:
        return self._mirrors[Collection.QUOTATIONS].records

    @property
    def invoices(self) -> tuple[Invoice, ...]:
        return self._mirrors[Collection.INVOICES].records

    @property
    def quotation_requests(self) -> tuple[QuotationRequest, ...]:
        return self._mirrors[Collection.QUOTATION_REQUESTS].records

    @property
    def notifications(self) -> tuple[Notification, ...]:
        """Notifications addressed to the current identity, newest first."""
        return self._mirrors[Collection.NOTIFICATIONS].records

    @property
    def calendars(self) -> tuple[Calendar, ...]:
        return self._mirrors[Collection.CALENDARS].records

    @property
    def calendar_shares(self) -> tuple[CalendarShare, ...]:
        return self._mirrors[Collection.CALENDAR_SHARES].records

    @property
    def booking_pages(self) -> tuple[PublicBookingPage, ...]:
        return self._mirrors[Collection.BOOKING_PAGES].records

    @property
    def bookings(self) -> tuple[Booking, ...]:
        return self._mirrors[Collection.BOOKINGS].records

    @property
    def user_schedules(self) -> tuple[UserSchedule, ...]:
        return self._mirrors[Collection.USER_SCHEDULES].records

    def contains(self, collection: Collection, record_id: str) -> bool:
        """Whether the mirror of ``collection`` holds ``record_id``."""
        return record_id in self._mirrors[collection]

    # ── Write-Through Primitives ────────────────────────────────────────

    def _path(self, collection: Collection) -> str:
        return collection_path(collection, self._settings)

    def require_user(self, operation: str) -> SessionUser:
        """Return the signed-in identity or raise SessionNotStartedError."""
        if self._user is None:
            raise SessionNotStartedError(operation)
        return self._user

    def _record(self, collection: Collection, record_id: str) -> Any:
        self.require_user(f"modify {collection.value}")
        record = self._mirrors[collection].get(record_id)
        if record is None:
            raise RecordNotFoundError(collection.value, record_id)
        return record

    async def _write(
        self,
        collection: Collection,
        mirror: Mirror,
        record_id: str,
        previous: CRMRecord | None,
        applied: CRMRecord | None,
        action: str,
        payload: Document | None = None,
        fields: set[str] | None = None,
    ) -> None:
        """Issue one store write; undo the optimistic change on failure.

        ``applied`` is the record the mirror was given for this write (None
        for a delete). When a later local change to the same record has
        landed in the meantime, only the failed fields are reverted and the
        collection is re-read from the store.
        """
        path = self._path(collection)
        mirror.begin_write(record_id)
        try:
            if action == "put":
                await self._store.put(path, record_id, payload)
            elif action == "patch":
                await self._store.patch(path, record_id, payload)
            else:
                await self._store.remove(path, record_id)
        except Exception as exc:
            mirror.end_write(record_id)
            in_step = mirror.rollback(record_id, previous, applied, fields)
            logger.error(
                "crm.write_failed",
                collection=collection.value,
                record_id=record_id,
                action=action,
                error=str(exc),
            )
            if not in_step:
                await self._resync(collection, mirror)
            raise RemoteWriteError(collection.value, record_id, action) from exc
        mirror.end_write(record_id)

    async def _resync(self, collection: Collection, mirror: Mirror) -> None:
        """Re-read a collection after a failed write left its mirror ahead of the store."""
        try:
            documents = await self._store.get_all(self._path(collection))
        except Exception as exc:
            logger.error("crm.resync_failed", collection=collection.value, error=str(exc))
            return
        if mirror is self._mirrors[collection]:
            mirror.apply_snapshot(documents)
            logger.info("crm.resynced", collection=collection.value)

    async def _insert(self, collection: Collection, record: R, *, mirrored: bool = True) -> R:
        """Add or replace a full record (mirror first, then ``put``)."""
        self.require_user(f"modify {collection.value}")
        mirror = self._mirrors[collection]
        if record.id is None:
            record = record.model_copy(update={"id": new_id()})
        previous = mirror.get(record.id)
        base_revision = max(record.revision, previous.revision if previous else 0)
        record = record.model_copy(update={"revision": base_revision + 1})
        if mirrored:
            mirror.upsert(record)
        await self._write(
            collection,
            mirror,
            record.id,
            previous,
            record if mirrored else previous,
            "put",
            record.to_document(),
        )
        return record

    async def _update(self, collection: Collection, record_id: str, changes: dict[str, Any]) -> Any:
        """Merge ``changes`` into a mirrored record and ``patch`` the store."""
        mirror = self._mirrors[collection]
        current = self._record(collection, record_id)
        updated = current.model_copy(update={**changes, "revision": current.revision + 1})
        mirror.upsert(updated)
        await self._write(
            collection,
            mirror,
            record_id,
            current,
            updated,
            "patch",
            updated.to_patch(set(changes)),
            fields=set(changes),
        )
        return updated

    async def _delete(self, collection: Collection, record_id: str) -> None:
        self.require_user(f"modify {collection.value}")
        mirror = self._mirrors[collection]
        previous = mirror.discard(record_id)
        await self._write(collection, mirror, record_id, previous, None, "remove")

    def _timeline_event(
        self,
        text: str,
        event_type: TimelineEventType,
        occurred_at: datetime | None = None,
        user: str | None = None,
    ) -> TimelineEvent:
        return TimelineEvent(
            id=new_id(),
            text=text,
            date=occurred_at or self.now(),
            type=event_type,
            user=user or (self._user.name if self._user else "System"),
        )

    # ── Leads ───────────────────────────────────────────────────────────

    async def add_lead(self, lead: Lead) -> Lead:
        """Create a lead owned by the current identity.

        A "Lead created" event is prepended to any timeline the caller supplies.
        """
        user = self.require_user("add lead")
        now = self.now()
        record = lead.model_copy(
            update={
                "created_at": lead.created_at or now,
                "created_by_id": user.id,
                "assigned_to": lead.assigned_to or user.id,
                "timeline": [
                    self._timeline_event("Lead created", TimelineEventType.CREATED, now),
                    *lead.timeline,
                ],
            }
        )
        record = await self._insert(Collection.LEADS, record)
        logger.info("crm.lead_created", lead_id=record.id, created_by_id=user.id)
        return record

    async def update_lead(self, lead_id: str, update: LeadUpdate) -> Lead:
        return await self._update(Collection.LEADS, lead_id, update.changes())

    async def update_lead_status(self, lead_id: str, status: LeadStatus | str) -> Lead:
        """Change a lead's status and prepend one status_change event.

        Setting the current status again is a no-op: no event, no write.
        """
        status = LeadStatus(status)
        lead: Lead = self._record(Collection.LEADS, lead_id)
        if lead.status == status:
            return lead

        event = self._timeline_event(
            f"Status changed from {lead.status.value} to {status.value}",
            TimelineEventType.STATUS_CHANGE,
        )
        updated = await self._update(
            Collection.LEADS,
            lead_id,
            {"status": status, "timeline": [event, *lead.timeline]},
        )
        logger.info(
            "crm.lead_status_changed",
            lead_id=lead_id,
            old_status=lead.status.value,
            new_status=status.value,
        )
        return updated

    async def delete_lead(self, lead_id: str) -> None:
        await self._delete(Collection.LEADS, lead_id)

    async def add_lead_task(self, lead_id: str, text: str) -> LeadTask:
        """Append a checklist item and record it on the timeline."""
        lead: Lead = self._record(Collection.LEADS, lead_id)
        task = LeadTask(id=new_id(), text=text)
        event = self._timeline_event(f'Task "{text}" created', TimelineEventType.TASK)
        await self._update(
            Collection.LEADS,
            lead_id,
            {"tasks": [*lead.tasks, task], "timeline": [event, *lead.timeline]},
        )
        return task

    async def toggle_lead_task(self, lead_id: str, task_id: str) -> LeadTask:
        lead: Lead = self._record(Collection.LEADS, lead_id)
        if not any(task.id == task_id for task in lead.tasks):
            raise RecordNotFoundError("lead_tasks", task_id)
        tasks = [
            task.model_copy(update={"completed": not task.completed}) if task.id == task_id else task
            for task in lead.tasks
        ]
        await self._update(Collection.LEADS, lead_id, {"tasks": tasks})
        return next(task for task in tasks if task.id == task_id)

    async def delete_lead_task(self, lead_id: str, task_id: str) -> None:
        lead: Lead = self._record(Collection.LEADS, lead_id)
        if not any(task.id == task_id for task in lead.tasks):
            raise RecordNotFoundError("lead_tasks", task_id)
        tasks = [task for task in lead.tasks if task.id != task_id]
        await self._update(Collection.LEADS, lead_id, {"tasks": tasks})

    async def add_lead_timeline_event(
        self,
        lead_id: str,
        text: str,
        event_type: TimelineEventType | str,
        occurred_at: datetime | None = None,
        user: str | None = None,
    ) -> TimelineEvent:
        """Prepend a free-form event (note, call, meeting, ...) to a lead's timeline."""
        lead: Lead = self._record(Collection.LEADS, lead_id)
        event = self._timeline_event(text, TimelineEventType(event_type), occurred_at, user)
        await self._update(Collection.LEADS, lead_id, {"timeline": [event, *lead.timeline]})
        return event

    async def convert_lead_to_customer(
        self,
        lead_id: str,
        *,
        name: str | None = None,
        contact_person: str | None = None,
        email: str = "",
        phone: str = "",
        source: str | None = None,
    ) -> Customer:
        """Create a 'From Lead' customer and link it back to the lead.

        The lead records the new customer id and gains a conversion event.
        """
        lead: Lead = self._record(Collection.LEADS, lead_id)
        customer = await self.add_customer(
            Customer(
                name=name or lead.customer_name,
                contact_person=contact_person or "Pending",
                email=email,
                phone=phone,
                status=CustomerStatus.FROM_LEAD,
                source=source or lead.source or "Converted",
            )
        )

        lead = self._record(Collection.LEADS, lead_id)
        event = self._timeline_event(
            f"Converted to Customer: {customer.name}", TimelineEventType.CONVERSION
        )
        await self._update(
            Collection.LEADS,
            lead_id,
            {"converted_to_customer_id": customer.id, "timeline": [event, *lead.timeline]},
        )
        logger.info("crm.lead_converted", lead_id=lead_id, customer_id=customer.id)
        return customer

    # ── Customers ───────────────────────────────────────────────────────

    async def add_customer(self, customer: Customer) -> Customer:
        """Create a customer; the creator is always the acting identity."""
        user = self.require_user("add customer")
        record = customer.model_copy(
            update={
                "created_at": customer.created_at or self.now(),
                "created_by_id": user.id,
            }
        )
        return await self._insert(Collection.CUSTOMERS, record)

    async def update_customer(self, customer_id: str, update: CustomerUpdate) -> Customer:
        return await self._update(Collection.CUSTOMERS, customer_id, update.changes())

    async def delete_customer(self, customer_id: str) -> None:
        await self._delete(Collection.CUSTOMERS, customer_id)

    # ── Projects ────────────────────────────────────────────────────────

    async def add_project(self, project: Project) -> Project:
        return await self._insert(Collection.PROJECTS, project)

    async def update_project(self, project_id: str, update: ProjectUpdate) -> Project:
        return await self._update(Collection.PROJECTS, project_id, update.changes())

    async def delete_project(self, project_id: str) -> None:
        await self._delete(Collection.PROJECTS, project_id)

    # ── Tasks ───────────────────────────────────────────────────────────

    async def add_task(self, task: Task) -> Task:
        """Create a task after required-field validation.

        Raises:
            RecordValidationError: title or due_date is empty. Nothing is
                mutated and no store write is attempted.
            RemoteWriteError: The store rejected the write; the optimistic
                mirror entry has been removed again.
        """
        missing = [
            field
            for field, value in (("title", task.title.strip()), ("due_date", task.due_date))
            if not value
        ]
        if missing:
            logger.warning("crm.task_invalid", task_id=task.id, missing=missing)
            raise RecordValidationError(Collection.TASKS.value, missing)

        record = await self._insert(Collection.TASKS, task)
        logger.info("crm.task_created", task_id=record.id, assigned_to=record.assigned_to)
        return record

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Patch a task; a status change also retitles its linked calendar entry."""
        changes = update.changes()
        task = await self._update(Collection.TASKS, task_id, changes)
        if changes.get("status") is not None:
            await self._sync_linked_calendar_entry(task)
        return task

    async def delete_task(self, task_id: str) -> None:
        await self._delete(Collection.TASKS, task_id)

    async def _sync_linked_calendar_entry(self, task: Task) -> None:
        entry = self._mirrors[Collection.CALENDAR_ENTRIES].find(
            lambda e: e.linked_task_id == task.id
        )
        if entry is None:
            return

        base_title = entry.title.removeprefix(COMPLETION_MARKER)
        title = f"{COMPLETION_MARKER}{base_title}" if task.status == TaskStatus.DONE else base_title
        if title == entry.title:
            return
        await self.update_calendar_entry(entry.id, CalendarEventUpdate(title=title))
        logger.debug("crm.calendar_entry_synced", task_id=task.id, entry_id=entry.id)

    # ── Calendar Entries ────────────────────────────────────────────────

    async def add_calendar_entry(self, entry: CalendarEvent) -> CalendarEvent:
        user = self.require_user("add calendar entry")
        record = entry.model_copy(
            update={
                "owner": entry.owner or user.name,
                "owner_id": entry.owner_id or user.id,
                "created_at": self.now(),
            }
        )
        return await self._insert(Collection.CALENDAR_ENTRIES, record)

    async def update_calendar_entry(
        self, entry_id: str, update: CalendarEventUpdate
    ) -> CalendarEvent:
        changes = {**update.changes(), "updated_at": self.now()}
        return await self._update(Collection.CALENDAR_ENTRIES, entry_id, changes)

    async def delete_calendar_entry(self, entry_id: str) -> None:
        await self._delete(Collection.CALENDAR_ENTRIES, entry_id)

    # ── Quotations ──────────────────────────────────────────────────────

    async def add_quotation(self, quotation: Quotation) -> Quotation:
        """Create a quotation with its number, validity and totals derived."""
        user = self.require_user("add quotation")
        today = self.today()
        record = quotation.model_copy(
            update={
                "quotation_number": quotation.quotation_number
                or next_document_number(
                    QUOTATION_PREFIX, (q.quotation_number for q in self.quotations), today
                ),
                "valid_until": quotation.valid_until
                or today + timedelta(days=self._settings.QUOTATION_VALIDITY_DAYS),
                "created_at": quotation.created_at or self.now(),
                "created_by": quotation.created_by or user.id,
            }
        )
        record = apply_totals(record, self._settings.DEFAULT_TAX_RATE)
        return await self._insert(Collection.QUOTATIONS, record)

    async def update_quotation(self, quotation_id: str, update: QuotationUpdate) -> Quotation:
        changes = self._repriced(Collection.QUOTATIONS, quotation_id, update.changes())
        return await self._update(Collection.QUOTATIONS, quotation_id, changes)

    async def delete_quotation(self, quotation_id: str) -> None:
        await self._delete(Collection.QUOTATIONS, quotation_id)

    def _repriced(
        self, collection: Collection, record_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Extend ``changes`` with recomputed totals when items or tax rate change."""
        if "items" not in changes and "tax_rate" not in changes:
            return changes
        current = self._record(collection, record_id)
        priced = apply_totals(current.model_copy(update=changes), self._settings.DEFAULT_TAX_RATE)
        return {
            **changes,
            "items": priced.items,
            "tax_rate": priced.tax_rate,
            "subtotal": priced.subtotal,
            "tax": priced.tax,
            "total": priced.total,
        }

    # ── Invoices ────────────────────────────────────────────────────────

    async def add_invoice(self, invoice: Invoice) -> Invoice:
        user = self.require_user("add invoice")
        today = self.today()
        record = invoice.model_copy(
            update={
                "invoice_number": invoice.invoice_number
                or next_document_number(
                    INVOICE_PREFIX, (i.invoice_number for i in self.invoices), today
                ),
                "issue_date": invoice.issue_date or today,
                "due_date": invoice.due_date
                or today + timedelta(days=self._settings.INVOICE_DUE_DAYS),
                "created_at": invoice.created_at or self.now(),
                "created_by": invoice.created_by or user.id,
            }
        )
        record = apply_totals(record, self._settings.DEFAULT_TAX_RATE)
        return await self._insert(Collection.INVOICES, record)

    async def update_invoice(self, invoice_id: str, update: InvoiceUpdate) -> Invoice:
        changes = self._repriced(Collection.INVOICES, invoice_id, update.changes())
        return await self._update(Collection.INVOICES, invoice_id, changes)

    async def delete_invoice(self, invoice_id: str) -> None:
        await self._delete(Collection.INVOICES, invoice_id)

    async def create_invoice_from_quotation(self, quotation_id: str) -> Invoice:
        """Draft an invoice carrying a quotation's customer, items and tax rate."""
        quotation: Quotation = self._record(Collection.QUOTATIONS, quotation_id)
        invoice = await self.add_invoice(
            Invoice(
                customer_id=quotation.customer_id,
                customer_name=quotation.customer_name,
                quotation_id=quotation.id,
                project_id=quotation.project_id,
                items=[item.model_copy(update={"id": new_id()}) for item in quotation.items],
                tax_rate=quotation.tax_rate,
                status=InvoiceStatus.DRAFT,
                notes=quotation.notes,
            )
        )
        logger.info(
            "crm.invoice_from_quotation",
            quotation_id=quotation_id,
            invoice_id=invoice.id,
            total=invoice.total,
        )
        return invoice

    # ── Quotation Requests ──────────────────────────────────────────────

    async def add_quotation_request(self, request: QuotationRequest) -> QuotationRequest:
        """Create a request and notify every active reviewer."""
        user = self.require_user("add quotation request")
        now = self.now()
        record = request.model_copy(
            update={
                "requested_by_id": request.requested_by_id or user.id,
                "requested_by_name": request.requested_by_name or user.name,
                "created_at": now,
                "updated_at": now,
            }
        )
        record = await self._insert(Collection.QUOTATION_REQUESTS, record)
        logger.info(
            "crm.quotation_request_created",
            request_id=record.id,
            lead_id=record.lead_id,
            priority=record.priority.value,
        )
        await self._workflow.notify_reviewers(record)
        return record

    async def update_quotation_request(
        self, request_id: str, update: QuotationRequestUpdate
    ) -> QuotationRequest:
        changes = {**update.changes(), "updated_at": self.now()}
        return await self._update(Collection.QUOTATION_REQUESTS, request_id, changes)

    async def delete_quotation_request(self, request_id: str) -> None:
        await self._delete(Collection.QUOTATION_REQUESTS, request_id)

    async def assign_quotation_request_to_coordinator(
        self, request_id: str, coordinator_id: str, coordinator_name: str
    ) -> QuotationRequest:
        return await self.update_quotation_request(
            request_id,
            QuotationRequestUpdate(
                assigned_to_coordinator_id=coordinator_id,
                assigned_to_coordinator_name=coordinator_name,
                status=QuotationRequestStatus.ASSIGNED,
            ),
        )

    async def assign_quotation_request_to_multiple_coordinators(
        self,
        request_id: str,
        coordinators: list[CoordinatorRef],
        tags: QuotationTags,
        custom_tasks: list[CustomTaskTemplate],
    ) -> AssignmentResult:
        """Fan a request out to several coordinators (see QuotationRequestWorkflow)."""
        return await self._workflow.assign_to_multiple_coordinators(
            request_id, coordinators, tags, custom_tasks
        )

    # ── Calendars & Sharing ─────────────────────────────────────────────

    async def add_calendar(self, calendar: Calendar) -> Calendar:
        user = self.require_user("add calendar")
        record = calendar.model_copy(
            update={
                "owner_id": calendar.owner_id or user.id,
                "owner_name": calendar.owner_name or user.name,
                "created_at": self.now(),
            }
        )
        return await self._insert(Collection.CALENDARS, record)

    async def update_calendar(self, calendar_id: str, update: CalendarUpdate) -> Calendar:
        return await self._update(Collection.CALENDARS, calendar_id, update.changes())

    async def delete_calendar(self, calendar_id: str) -> None:
        await self._delete(Collection.CALENDARS, calendar_id)

    async def share_calendar(
        self,
        calendar_id: str,
        shared_with_id: str,
        shared_with_name: str,
        shared_with_email: str,
        permission: SharePermission | str,
    ) -> CalendarShare:
        """Offer one of the current identity's calendars to another user (pending)."""
        user = self.require_user("share calendar")
        calendar: Calendar = self._record(Collection.CALENDARS, calendar_id)
        share = CalendarShare(
            calendar_id=calendar_id,
            calendar_name=calendar.name,
            owner_id=user.id,
            owner_name=user.name,
            shared_with_id=shared_with_id,
            shared_with_name=shared_with_name,
            shared_with_email=shared_with_email,
            permission=SharePermission(permission),
            status=ShareStatus.PENDING,
            created_at=self.now(),
        )
        return await self._insert(Collection.CALENDAR_SHARES, share)

    async def update_calendar_share(
        self, share_id: str, update: CalendarShareUpdate
    ) -> CalendarShare:
        return await self._update(Collection.CALENDAR_SHARES, share_id, update.changes())

    async def delete_calendar_share(self, share_id: str) -> None:
        await self._delete(Collection.CALENDAR_SHARES, share_id)

    # ── Public Booking ──────────────────────────────────────────────────

    async def add_booking_page(self, page: PublicBookingPage) -> PublicBookingPage:
        user = self.require_user("add booking page")
        now = self.now()
        record = page.model_copy(
            update={
                "owner_id": page.owner_id or user.id,
                "owner_name": page.owner_name or user.name,
                "created_at": now,
                "updated_at": now,
            }
        )
        return await self._insert(Collection.BOOKING_PAGES, record)

    async def update_booking_page(
        self, page_id: str, update: PublicBookingPageUpdate
    ) -> PublicBookingPage:
        changes = {**update.changes(), "updated_at": self.now()}
        return await self._update(Collection.BOOKING_PAGES, page_id, changes)

    async def delete_booking_page(self, page_id: str) -> None:
        await self._delete(Collection.BOOKING_PAGES, page_id)

    async def add_booking(self, booking: Booking) -> Booking:
        record = booking.model_copy(update={"created_at": self.now()})
        return await self._insert(Collection.BOOKINGS, record)

    async def update_booking(self, booking_id: str, update: BookingUpdate) -> Booking:
        return await self._update(Collection.BOOKINGS, booking_id, update.changes())

    async def delete_booking(self, booking_id: str) -> None:
        await self._delete(Collection.BOOKINGS, booking_id)

    # ── User Schedules ──────────────────────────────────────────────────

    async def save_user_schedule(self, schedule: UserSchedule) -> UserSchedule:
        """Create or replace the schedule of ``schedule.user_id``.

        A new schedule is stored under the user's id; an existing one keeps
        its id.
        """
        existing = self.get_user_schedule(schedule.user_id)
        record = schedule.model_copy(
            update={
                "id": existing.id if existing else schedule.user_id,
                "updated_at": self.now(),
            }
        )
        return await self._insert(Collection.USER_SCHEDULES, record)

    def get_user_schedule(self, user_id: str) -> UserSchedule | None:
        return self._mirrors[Collection.USER_SCHEDULES].find(lambda s: s.user_id == user_id)

    # ── Notifications ───────────────────────────────────────────────────

    async def add_notification(self, notification: Notification) -> Notification:
        """Store a notification.

        Only notifications addressed to the current identity enter the
        local mirror; every notification is written to the store.
        """
        user = self.require_user("add notification")
        record = notification.model_copy(update={"created_at": self.now()})
        return await self._insert(
            Collection.NOTIFICATIONS,
            record,
            mirrored=record.recipient_id == user.id,
        )

    async def mark_notification_read(self, notification_id: str) -> Notification:
        return await self._update(Collection.NOTIFICATIONS, notification_id, {"is_read": True})

    async def mark_all_notifications_read(self) -> int:
        """Mark every unread notification of the current identity as read.

        Returns:
            Number of notifications updated.
        """
        self.require_user("mark notifications read")
        unread = [n.id for n in self.notifications if not n.is_read]
        for notification_id in unread:
            await self.mark_notification_read(notification_id)
        return len(unread)

    async def delete_notification(self, notification_id: str) -> None:
        await self._delete(Collection.NOTIFICATIONS, notification_id)

    def unread_notification_count(self) -> int:
        return sum(1 for n in self.notifications if not n.is_read)
