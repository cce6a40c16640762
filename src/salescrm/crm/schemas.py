"""Pydantic schemas for every CRM entity mirrored by the sync core.

Defines all structured types for the sales CRM:
- Base classes: CRMModel (camelCase wire aliases), CRMRecord (id + revision),
  CRMUpdate (partial patch payloads)
- Leads: LeadTask, TimelineEvent, Lead, LeadUpdate
- Customers / Projects / Tasks and their update payloads
- Billing: LineItem, Quotation, Invoice
- Quotation requests: CoordinatorRef, QuotationTags, CustomTaskTemplate,
  QuotationRequest
- Scheduling: CalendarEvent, Calendar, CalendarShare, PublicBookingPage,
  Booking, UserSchedule
- Notification

Attributes are snake_case in Python and camelCase in stored documents
(``created_by_id`` <-> ``createdById``), so documents written by other
clients of the same store deserialize unchanged.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Base Classes ────────────────────────────────────────────────────────────


class CRMModel(BaseModel):
    """Base for every CRM schema: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CRMRecord(CRMModel):
    """A document stored in one collection.

    ``id`` is assigned by the core when missing. ``revision`` increases with
    every local mutation and guards the mirror against stale snapshots.
    """

    id: str | None = None
    revision: int = 0

    def to_document(self) -> dict[str, Any]:
        """Serialize for the document store (camelCase, no null fields)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_patch(self, fields: set[str]) -> dict[str, Any]:
        """Serialize only ``fields`` (snake_case names) plus the revision."""
        return self.model_dump(mode="json", by_alias=True, include=fields | {"revision"})

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        """Deserialize a stored document."""
        return cls.model_validate(document)


class CRMUpdate(CRMModel):
    """Partial update payload: only explicitly set fields are applied."""

    def changes(self) -> dict[str, Any]:
        """Return the explicitly set fields as typed values keyed by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# ── Enums ───────────────────────────────────────────────────────────────────


class LeadStatus(str, Enum):
    NEW = "New"
    CONTACTED = "Contacted"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    WON = "Won"
    LOST = "Lost"


class TimelineEventType(str, Enum):
    CREATED = "created"
    STATUS_CHANGE = "status_change"
    TASK = "task"
    NOTE = "note"
    ESTIMATION = "estimation"
    CONVERSION = "conversion"
    ACTIVITY = "activity"
    MEETING = "meeting"
    EMAIL = "email"
    CALL = "call"


class CustomerStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    FROM_LEAD = "From Lead"


class ProjectStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TaskStatus(str, Enum):
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RecurrenceFrequency(str, Enum):
    NONE = "None"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


class TaskOrigin(str, Enum):
    """How a task came into existence (provenance tag)."""

    MANUAL = "manual"
    LEAD_CALENDAR = "lead_calendar"
    LEAD_SCHEDULE = "lead_schedule"
    QUOTATION_REQUEST = "quotation_request"
    OTHER = "other"


class QuotationStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


class InvoiceStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    PENDING = "Pending"
    PAID = "Paid"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


class QuotationRequestStatus(str, Enum):
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class RequestPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class CalendarEventType(str, Enum):
    MEETING = "meeting"
    TASK = "task"
    FOLLOW_UP = "follow_up"
    REMINDER = "reminder"
    BOOKING = "booking"


class SharePermission(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    FULL = "full"


class ShareStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ReminderMethod(str, Enum):
    EMAIL = "email"
    IN_APP = "in_app"
    BOTH = "both"


class RecurrencePattern(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class NotificationType(str, Enum):
    QUOTATION_REQUEST = "quotation_request"
    TASK_ASSIGNED = "task_assigned"


# ── Leads ───────────────────────────────────────────────────────────────────


class LeadTask(CRMModel):
    """Checklist item on a lead."""

    id: str
    text: str
    completed: bool = False


class TimelineEvent(CRMModel):
    """Entry in a lead's append-only, newest-first timeline."""

    id: str
    text: str
    date: datetime
    type: TimelineEventType
    user: str | None = None


class Lead(CRMRecord):
    title: str = ""
    customer_name: str = ""
    value: float = 0.0
    status: LeadStatus = LeadStatus.NEW
    source: str = ""
    created_at: datetime | None = None
    created_by_id: str | None = None
    assigned_to: str | None = None
    tasks: list[LeadTask] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    converted_to_customer_id: str | None = None


class LeadUpdate(CRMUpdate):
    """Patchable lead fields.

    Status and timeline are absent on purpose: status changes go through
    ``update_lead_status`` and timeline entries through
    ``add_lead_timeline_event``, both of which keep the timeline invariant.
    """

    title: str | None = None
    customer_name: str | None = None
    value: float | None = None
    source: str | None = None
    assigned_to: str | None = None
    tasks: list[LeadTask] | None = None
    converted_to_customer_id: str | None = None


# ── Customers ───────────────────────────────────────────────────────────────


class Customer(CRMRecord):
    name: str = ""
    contact_person: str = ""
    email: str = ""
    phone: str = ""
    status: CustomerStatus = CustomerStatus.ACTIVE
    source: str = ""
    created_at: datetime | None = None
    created_by_id: str | None = None


class CustomerUpdate(CRMUpdate):
    """Patchable customer fields (creator and creation time are immutable)."""

    name: str | None = None
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    status: CustomerStatus | None = None
    source: str | None = None


# ── Projects ────────────────────────────────────────────────────────────────


class Project(CRMRecord):
    title: str = ""
    customer_id: str = ""
    customer_name: str = ""
    status: ProjectStatus = ProjectStatus.NOT_STARTED
    start_date: date | None = None
    due_date: date | None = None
    value: float = 0.0
    description: str | None = None
    progress: int = Field(default=0, ge=0, le=100)


class ProjectUpdate(CRMUpdate):
    title: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
    status: ProjectStatus | None = None
    start_date: date | None = None
    due_date: date | None = None
    value: float | None = None
    description: str | None = None
    progress: int | None = Field(default=None, ge=0, le=100)


# ── Tasks ───────────────────────────────────────────────────────────────────


class Task(CRMRecord):
    title: str = ""
    description: str | None = None
    assigned_to: str = ""
    status: TaskStatus = TaskStatus.TO_DO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date | None = None
    project_id: str | None = None
    recurrence: RecurrenceFrequency | None = None
    completed_at: datetime | None = None
    start_date: date | None = None
    estimated_hours: float | None = None
    parent_task_id: str | None = None
    dependencies: list[str] | None = None
    order: int | None = None
    # Provenance
    created_from: TaskOrigin | None = None
    lead_id: str | None = None
    lead_title: str | None = None
    lead_customer_name: str | None = None
    quotation_request_id: str | None = None


class TaskUpdate(CRMUpdate):
    title: str | None = None
    description: str | None = None
    assigned_to: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    project_id: str | None = None
    recurrence: RecurrenceFrequency | None = None
    completed_at: datetime | None = None
    start_date: date | None = None
    estimated_hours: float | None = None
    parent_task_id: str | None = None
    dependencies: list[str] | None = None
    order: int | None = None


# ── Quotations & Invoices ───────────────────────────────────────────────────


class LineItem(CRMModel):
    """Billable line; ``total`` is always quantity x unit_price."""

    id: str | None = None
    description: str = ""
    quantity: float = 1
    unit_price: float = 0.0
    total: float = 0.0


class Quotation(CRMRecord):
    quotation_number: str = ""
    customer_id: str = ""
    customer_name: str = ""
    project_id: str | None = None
    items: list[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax_rate: float | None = None
    tax: float = 0.0
    total: float = 0.0
    status: QuotationStatus = QuotationStatus.DRAFT
    valid_until: date | None = None
    notes: str | None = None
    created_at: datetime | None = None
    created_by: str | None = None


class QuotationUpdate(CRMUpdate):
    """Patchable quotation fields; totals are derived, never patched directly."""

    quotation_number: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
    project_id: str | None = None
    items: list[LineItem] | None = None
    tax_rate: float | None = None
    status: QuotationStatus | None = None
    valid_until: date | None = None
    notes: str | None = None


class Invoice(CRMRecord):
    invoice_number: str = ""
    customer_id: str = ""
    customer_name: str = ""
    quotation_id: str | None = None
    project_id: str | None = None
    items: list[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax_rate: float | None = None
    tax: float = 0.0
    total: float = 0.0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    issue_date: date | None = None
    due_date: date | None = None
    paid_date: date | None = None
    notes: str | None = None
    created_at: datetime | None = None
    created_by: str | None = None


class InvoiceUpdate(CRMUpdate):
    invoice_number: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
    quotation_id: str | None = None
    project_id: str | None = None
    items: list[LineItem] | None = None
    tax_rate: float | None = None
    status: InvoiceStatus | None = None
    issue_date: date | None = None
    due_date: date | None = None
    paid_date: date | None = None
    notes: str | None = None


# ── Quotation Requests ──────────────────────────────────────────────────────


class CoordinatorRef(CRMModel):
    """A sales coordinator a request is assigned to."""

    id: str
    name: str
    email: str = ""


class QuotationTags(CRMModel):
    """Classification tags attached when a request is processed."""

    predefined_tags: list[str] = Field(default_factory=list)
    custom_tags: list[str] = Field(default_factory=list)

    def all_tags(self) -> list[str]:
        return [*self.predefined_tags, *self.custom_tags]


class CustomTaskTemplate(CRMModel):
    """Sub-task spawned for every coordinator of a processed request."""

    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date


class QuotationRequest(CRMRecord):
    lead_id: str = ""
    lead_title: str = ""
    customer_name: str = ""
    estimated_value: float = 0.0
    requested_by_id: str = ""
    requested_by_name: str = ""
    assigned_to_head_id: str | None = None
    assigned_to_head_name: str | None = None
    assigned_to_coordinator_id: str | None = None
    assigned_to_coordinator_name: str | None = None
    assigned_coordinators: list[CoordinatorRef] | None = None
    predefined_tags: list[str] | None = None
    custom_tags: list[str] | None = None
    status: QuotationRequestStatus = QuotationRequestStatus.PENDING
    notes: str | None = None
    priority: RequestPriority = RequestPriority.MEDIUM
    requirements: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class QuotationRequestUpdate(CRMUpdate):
    lead_title: str | None = None
    customer_name: str | None = None
    estimated_value: float | None = None
    assigned_to_head_id: str | None = None
    assigned_to_head_name: str | None = None
    assigned_to_coordinator_id: str | None = None
    assigned_to_coordinator_name: str | None = None
    assigned_coordinators: list[CoordinatorRef] | None = None
    predefined_tags: list[str] | None = None
    custom_tags: list[str] | None = None
    status: QuotationRequestStatus | None = None
    notes: str | None = None
    priority: RequestPriority | None = None
    requirements: str | None = None


# ── Calendar Entries ────────────────────────────────────────────────────────


class EventReminder(CRMModel):
    id: str
    timing: int  # minutes before the event
    method: ReminderMethod = ReminderMethod.IN_APP


class EventRecurrence(CRMModel):
    pattern: RecurrencePattern
    interval: int = 1
    end_date: datetime | None = None
    occurrences: int | None = None
    days_of_week: list[int] | None = None
    day_of_month: int | None = None


class CalendarEvent(CRMRecord):
    """Calendar entry; ``linked_task_id`` ties its title to a task's status."""

    title: str = ""
    date: datetime | None = None
    end_date: datetime | None = None
    type: CalendarEventType = CalendarEventType.MEETING
    lead_id: str | None = None
    description: str | None = None
    owner: str | None = None
    owner_id: str | None = None
    calendar_id: str | None = None
    reminders: list[EventReminder] | None = None
    linked_task_id: str | None = None
    attendees: list[str] | None = None
    is_all_day: bool | None = None
    recurrence: EventRecurrence | None = None
    location: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CalendarEventUpdate(CRMUpdate):
    title: str | None = None
    date: datetime | None = None
    end_date: datetime | None = None
    type: CalendarEventType | None = None
    lead_id: str | None = None
    description: str | None = None
    calendar_id: str | None = None
    reminders: list[EventReminder] | None = None
    linked_task_id: str | None = None
    attendees: list[str] | None = None
    is_all_day: bool | None = None
    recurrence: EventRecurrence | None = None
    location: str | None = None


# ── Calendars & Sharing ─────────────────────────────────────────────────────


class Calendar(CRMRecord):
    name: str = ""
    color: str = "#3b82f6"
    owner_id: str = ""
    owner_name: str = ""
    is_default: bool = False
    is_visible: bool = True
    created_at: datetime | None = None


class CalendarUpdate(CRMUpdate):
    name: str | None = None
    color: str | None = None
    is_default: bool | None = None
    is_visible: bool | None = None


class CalendarShare(CRMRecord):
    calendar_id: str = ""
    calendar_name: str = ""
    owner_id: str = ""
    owner_name: str = ""
    shared_with_id: str = ""
    shared_with_name: str = ""
    shared_with_email: str = ""
    permission: SharePermission = SharePermission.VIEW
    status: ShareStatus = ShareStatus.PENDING
    created_at: datetime | None = None


class CalendarShareUpdate(CRMUpdate):
    permission: SharePermission | None = None
    status: ShareStatus | None = None


# ── Public Booking ──────────────────────────────────────────────────────────


class TimeSlot(CRMModel):
    day: int = Field(ge=0, le=6)  # 0 = Sunday
    start_time: str  # HH:mm
    end_time: str


class BookingCustomField(CRMModel):
    id: str
    label: str
    type: str = "text"
    required: bool = False
    options: list[str] | None = None


class PublicBookingPage(CRMRecord):
    owner_id: str = ""
    owner_name: str = ""
    title: str = ""
    description: str | None = None
    slug: str = ""
    duration: int = 30  # minutes
    buffer_before: int = 0
    buffer_after: int = 0
    available_slots: list[TimeSlot] = Field(default_factory=list)
    calendar_id: str = ""
    is_active: bool = True
    custom_fields: list[BookingCustomField] | None = None
    confirmation_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PublicBookingPageUpdate(CRMUpdate):
    title: str | None = None
    description: str | None = None
    slug: str | None = None
    duration: int | None = None
    buffer_before: int | None = None
    buffer_after: int | None = None
    available_slots: list[TimeSlot] | None = None
    calendar_id: str | None = None
    is_active: bool | None = None
    custom_fields: list[BookingCustomField] | None = None
    confirmation_message: str | None = None


class Booking(CRMRecord):
    booking_page_id: str = ""
    event_id: str = ""
    booker_name: str = ""
    booker_email: str = ""
    booker_phone: str | None = None
    booking_date: date | None = Field(default=None, alias="date")
    start_time: str = ""
    end_time: str = ""
    status: BookingStatus = BookingStatus.CONFIRMED
    custom_field_values: dict[str, str] | None = None
    created_at: datetime | None = None


class BookingUpdate(CRMUpdate):
    booker_name: str | None = None
    booker_email: str | None = None
    booker_phone: str | None = None
    booking_date: date | None = Field(default=None, alias="date")
    start_time: str | None = None
    end_time: str | None = None
    status: BookingStatus | None = None
    custom_field_values: dict[str, str] | None = None


# ── User Schedules ──────────────────────────────────────────────────────────


class BreakWindow(CRMModel):
    start: str
    end: str


class WorkingHours(CRMModel):
    day: int = Field(ge=0, le=6)
    is_working_day: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"
    breaks: list[BreakWindow] | None = None


class UserSchedule(CRMRecord):
    """Working hours of one user; stored under the user's id."""

    user_id: str = ""
    user_name: str = ""
    timezone: str = "UTC"
    working_hours: list[WorkingHours] = Field(default_factory=list)
    buffer_between_meetings: int = 0
    minimum_notice: int = 0  # hours
    blocked_dates: list[date] = Field(default_factory=list)
    updated_at: datetime | None = None


# ── Notifications ───────────────────────────────────────────────────────────


class Notification(CRMRecord):
    type: str = ""
    title: str = ""
    message: str = ""
    recipient_id: str = ""
    recipient_name: str | None = None
    sender_id: str | None = None
    sender_name: str | None = None
    related_id: str | None = None
    related_type: str | None = None
    action_url: str | None = None
    is_read: bool = False
    created_at: datetime | None = None
