"""Bootstrap dataset written into an empty CRM store.

The seed runs only when the four primary collections (leads, customers,
projects, tasks) are all empty, so it never overwrites real data and is
idempotent across sessions.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import structlog

from src.salescrm.config import Settings, get_settings
from src.salescrm.crm.schemas import (
    CRMRecord,
    Customer,
    CustomerStatus,
    Lead,
    LeadStatus,
    LeadTask,
    Project,
    ProjectStatus,
    Task,
    TaskPriority,
    TaskStatus,
    TimelineEvent,
    TimelineEventType,
)
from src.salescrm.store.adapter import DocumentStore
from src.salescrm.store.paths import PRIMARY_COLLECTIONS, Collection, collection_path

logger = structlog.get_logger(__name__)

SYSTEM_USER = "system_user"


def _at(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _lead(
    lead_id: str,
    title: str,
    customer_name: str,
    value: float,
    status: LeadStatus,
    source: str,
    created_at: datetime,
    tasks: list[LeadTask] | None = None,
    timeline: list[TimelineEvent] | None = None,
) -> Lead:
    return Lead(
        id=lead_id,
        title=title,
        customer_name=customer_name,
        value=value,
        status=status,
        source=source,
        created_at=created_at,
        created_by_id=SYSTEM_USER,
        assigned_to=SYSTEM_USER,
        tasks=tasks or [],
        timeline=timeline or [],
    )


SEED_LEADS: list[Lead] = [
    _lead(
        "l1", "Office Expansion Project", "GreenScape Solutions", 15000,
        LeadStatus.NEW, "Referral", _at(2023, 10, 15),
        tasks=[
            LeadTask(id="t1", text="Initial consultation call", completed=True),
            LeadTask(id="t2", text="Send floor plan requirements"),
        ],
        timeline=[
            TimelineEvent(
                id="tl1", text="Lead created.", date=_at(2023, 10, 15, 9),
                type=TimelineEventType.CREATED, user="System",
            ),
            TimelineEvent(
                id="tl2", text='Task "Initial consultation call" created.',
                date=_at(2023, 10, 15, 10), type=TimelineEventType.TASK, user="Charlie Rep",
            ),
        ],
    ),
    _lead(
        "l2", "Q4 Supplies Contract", "EcoBuild Corp", 8500,
        LeadStatus.NEGOTIATION, "LinkedIn", _at(2023, 9, 28),
        tasks=[
            LeadTask(id="t3", text="Draft contract", completed=True),
            LeadTask(id="t4", text="Review legal terms"),
            LeadTask(id="t5", text="Finalize pricing"),
        ],
        timeline=[
            TimelineEvent(
                id="tl3", text="Lead created.", date=_at(2023, 9, 28, 14, 30),
                type=TimelineEventType.CREATED, user="System",
            ),
            TimelineEvent(
                id="tl4", text="Status changed to Negotiation.", date=_at(2023, 10, 1, 11, 20),
                type=TimelineEventType.STATUS_CHANGE, user="Alice Mgr",
            ),
        ],
    ),
    _lead("l3", "Consulting Service", "NatureFirst Inc.", 2000, LeadStatus.LOST, "Cold Call", _at(2023, 8, 10)),
    _lead("l4", "Fleet Maintenance Deal", "Sustainable Structures", 12000, LeadStatus.WON, "Website", _at(2023, 10, 1)),
    _lead("l5", "Annual Audit Software", "TechFlow Systems", 5000, LeadStatus.CONTACTED, "Email Campaign", _at(2023, 10, 20)),
    _lead("l6", "Employee Training Program", "GrowthWorks", 3500, LeadStatus.PROPOSAL, "Referral", _at(2023, 10, 5)),
    _lead("l7", "Security Systems Upgrade", "SafeGuard", 18000, LeadStatus.NEW, "Exhibition", _at(2023, 11, 1)),
    _lead("l8", "Logistics Partnership", "FastTrack", 25000, LeadStatus.PROPOSAL, "LinkedIn", _at(2023, 10, 12)),
]

_CUSTOMER_ROWS = [
    ("1", "GreenScape Solutions", "Alice Green", "alice@greenscape.com", CustomerStatus.ACTIVE, "Referral", _at(2023, 5, 12)),
    ("2", "EcoBuild Corp", "Bob Builder", "bob@ecobuild.com", CustomerStatus.ACTIVE, "LinkedIn", _at(2023, 2, 20)),
    ("3", "NatureFirst Inc.", "Carol Woods", "carol@naturefirst.com", CustomerStatus.FROM_LEAD, "Cold Call", _at(2023, 8, 1)),
    ("4", "Sustainable Structures", "David Stone", "david@sustain.com", CustomerStatus.INACTIVE, "Website", _at(2022, 11, 30)),
    ("5", "TechFlow Systems", "Sarah Jenkins", "sarah@techflow.com", CustomerStatus.ACTIVE, "Email Campaign", _at(2023, 9, 15)),
    ("6", "GrowthWorks", "Mike Ross", "mike@growthworks.com", CustomerStatus.FROM_LEAD, "Referral", _at(2023, 10, 5)),
    ("7", "SafeGuard", "Emily Blunt", "emily@safeguard.com", CustomerStatus.FROM_LEAD, "Exhibition", _at(2023, 11, 1)),
    ("8", "FastTrack Logistics", "Tom Speed", "tom@fasttrack.com", CustomerStatus.ACTIVE, "LinkedIn", _at(2023, 7, 22)),
    ("9", "BlueSky Innovations", "Jessica Sky", "jessica@bluesky.com", CustomerStatus.INACTIVE, "Other", _at(2023, 1, 10)),
    ("10", "Urban Developers", "Gary Steel", "gary@urban.com", CustomerStatus.ACTIVE, "Website", _at(2023, 6, 18)),
]

SEED_CUSTOMERS: list[Customer] = [
    Customer(
        id=customer_id,
        name=name,
        contact_person=contact,
        email=email,
        phone=f"555-01{int(customer_id):02d}",
        status=status,
        source=source,
        created_at=created_at,
        created_by_id=SYSTEM_USER,
    )
    for customer_id, name, contact, email, status, source, created_at in _CUSTOMER_ROWS
]

SEED_PROJECTS: list[Project] = [
    Project(
        id="p1", title="HQ Renovation", customer_id="1", customer_name="GreenScape Solutions",
        status=ProjectStatus.IN_PROGRESS, start_date=date(2023, 11, 1), due_date=date(2024, 2, 28),
        value=150000, progress=35, description="Full renovation of the main office block.",
    ),
    Project(
        id="p2", title="Material Supply Phase 1", customer_id="2", customer_name="EcoBuild Corp",
        status=ProjectStatus.NOT_STARTED, start_date=date(2023, 12, 1), due_date=date(2024, 1, 15),
        value=45000, progress=0, description="Supply of sustainable insulation materials.",
    ),
    Project(
        id="p3", title="Logistics Fleet Setup", customer_id="8", customer_name="FastTrack Logistics",
        status=ProjectStatus.COMPLETED, start_date=date(2023, 8, 1), due_date=date(2023, 10, 30),
        value=200000, progress=100, description="Acquisition and branding of 10 delivery trucks.",
    ),
]

SEED_TASKS: list[Task] = [
    Task(
        id="tsk1", title="Review Q3 Sales Report",
        description="Analyze the performance of the sales team for Q3.",
        assigned_to="Alice Mgr", status=TaskStatus.TO_DO, priority=TaskPriority.HIGH,
        due_date=date(2023, 11, 15),
    ),
    Task(
        id="tsk2", title="Update Client Contact List",
        description="Ensure all phone numbers and emails are current.",
        assigned_to="Charlie Rep", status=TaskStatus.IN_PROGRESS, priority=TaskPriority.MEDIUM,
        due_date=date(2023, 11, 10),
    ),
    Task(
        id="tsk3", title="Prepare Presentation for EcoBuild",
        description="Slide deck for the upcoming renovation pitch.",
        assigned_to="Charlie Rep", status=TaskStatus.DONE, priority=TaskPriority.HIGH,
        due_date=date(2023, 10, 30),
    ),
    Task(
        id="tsk4", title="Schedule Team Building Event",
        description="Look for venues for the December outing.",
        assigned_to="Alice Mgr", status=TaskStatus.TO_DO, priority=TaskPriority.LOW,
        due_date=date(2023, 11, 25),
    ),
]

SEED_DATA: dict[Collection, list[CRMRecord]] = {
    Collection.LEADS: SEED_LEADS,
    Collection.CUSTOMERS: SEED_CUSTOMERS,
    Collection.PROJECTS: SEED_PROJECTS,
    Collection.TASKS: SEED_TASKS,
}


async def seed_if_empty(store: DocumentStore, settings: Settings | None = None) -> int:
    """Write the bootstrap dataset if every primary collection is empty.

    Args:
        store: Store to check and populate.
        settings: Settings used to resolve collection paths.

    Returns:
        Number of documents written (0 when any primary collection has data).
    """
    settings = settings or get_settings()
    for collection in PRIMARY_COLLECTIONS:
        if await store.get_all(collection_path(collection, settings)):
            logger.debug("crm.seed_skipped", non_empty=collection.value)
            return 0

    written = 0
    for collection, records in SEED_DATA.items():
        path = collection_path(collection, settings)
        for record in records:
            await store.put(path, record.id, record.to_document())
            written += 1

    logger.info("crm.seeded", documents=written)
    return written
