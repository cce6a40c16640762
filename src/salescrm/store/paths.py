"""Collection names and their persisted paths.

Most CRM collections are nested under a single grouping document
(``crm/main/<name>``); the scheduling and notification collections are
top-level. The split decides the subscription path and must not change.
"""

from __future__ import annotations

from enum import Enum

from src.salescrm.config import Settings, get_settings


class Collection(str, Enum):
    """Every collection the CRM core mirrors."""

    LEADS = "crm_leads"
    CUSTOMERS = "crm_customers"
    PROJECTS = "crm_projects"
    TASKS = "crm_tasks"
    CALENDAR_ENTRIES = "crm_calendar"
    QUOTATIONS = "crm_quotations"
    INVOICES = "crm_invoices"
    QUOTATION_REQUESTS = "crm_quotation_requests"
    CALENDARS = "calendars"
    CALENDAR_SHARES = "calendar_shares"
    BOOKING_PAGES = "public_booking_pages"
    BOOKINGS = "bookings"
    USER_SCHEDULES = "user_schedules"
    NOTIFICATIONS = "notifications"


NESTED_COLLECTIONS: frozenset[Collection] = frozenset({
    Collection.LEADS,
    Collection.CUSTOMERS,
    Collection.PROJECTS,
    Collection.TASKS,
    Collection.CALENDAR_ENTRIES,
    Collection.QUOTATIONS,
    Collection.INVOICES,
    Collection.QUOTATION_REQUESTS,
})

# Checked together for the one-time bootstrap seed
PRIMARY_COLLECTIONS: tuple[Collection, ...] = (
    Collection.LEADS,
    Collection.CUSTOMERS,
    Collection.PROJECTS,
    Collection.TASKS,
)


def collection_path(collection: Collection, settings: Settings | None = None) -> str:
    """Return the store path for a collection.

    Args:
        collection: Collection to resolve.
        settings: Settings providing the root collection and main document.

    Returns:
        ``"crm/main/crm_leads"`` for nested collections, the bare name otherwise.
    """
    if collection in NESTED_COLLECTIONS:
        settings = settings or get_settings()
        return f"{settings.CRM_ROOT_COLLECTION}/{settings.CRM_MAIN_DOC}/{collection.value}"
    return collection.value
