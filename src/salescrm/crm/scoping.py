"""Role-scoped views over mirrored collections.

Pure functions of (records, identity). The CRM core applies
``visible_tasks`` to every read of the task mirror; ``visible_leads`` and
``visible_customers`` are offered to consumers that scope those lists the
same way.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.salescrm.core.session import SessionUser
from src.salescrm.crm.schemas import Customer, Lead, Task

ADMIN = "admin"
SALES_MANAGER = "sales_manager"
ASSISTANT_SALES_MANAGER = "assistant_sales_manager"
SALES_COORDINATION_HEAD = "sales_coordination_head"
SALES_EXECUTIVE = "sales_executive"

PRIVILEGED_TASK_ROLES: frozenset[str] = frozenset({
    ADMIN,
    SALES_MANAGER,
    ASSISTANT_SALES_MANAGER,
    SALES_COORDINATION_HEAD,
})

CUSTOMER_MANAGER_ROLES: frozenset[str] = frozenset({ADMIN, SALES_MANAGER})

# Roles notified when a quotation request is raised
QUOTATION_REVIEWER_ROLES: frozenset[str] = frozenset({
    SALES_COORDINATION_HEAD,
    SALES_MANAGER,
    ASSISTANT_SALES_MANAGER,
    ADMIN,
})


def visible_tasks(tasks: Iterable[Task], user: SessionUser | None) -> tuple[Task, ...]:
    """Privileged roles see every task; everyone else only their own."""
    if user is None:
        return ()
    if user.role_id in PRIVILEGED_TASK_ROLES:
        return tuple(tasks)
    return tuple(task for task in tasks if task.assigned_to == user.id)


def visible_leads(leads: Iterable[Lead], user: SessionUser | None) -> tuple[Lead, ...]:
    """Sales executives see leads they created or own; other roles see all."""
    if user is None:
        return ()
    if user.role_id != SALES_EXECUTIVE:
        return tuple(leads)
    return tuple(
        lead for lead in leads if user.id in (lead.created_by_id, lead.assigned_to)
    )


def visible_customers(
    customers: Iterable[Customer], user: SessionUser | None
) -> tuple[Customer, ...]:
    """Admins and sales managers see all customers; others only their own."""
    if user is None:
        return ()
    if user.role_id in CUSTOMER_MANAGER_ROLES:
        return tuple(customers)
    return tuple(customer for customer in customers if customer.created_by_id == user.id)
