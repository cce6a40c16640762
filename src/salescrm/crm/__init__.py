"""CRM synchronization core -- mirrors, mutations, scoping and workflows.

Provides:
- CRMService: Live per-collection mirrors with optimistic write-through
- QuotationRequestWorkflow: Cross-entity fan-out of tasks and notifications
- visible_tasks / visible_leads / visible_customers: Role-scoped views
- Domain errors rooted at CRMError

Architecture: the DocumentStore is the system of record. CRMService keeps a
Mirror per collection for the signed-in identity and writes every local
change through to the store, rolling the mirror back if the write fails.
"""

from src.salescrm.crm.errors import (
    CRMError,
    RecordNotFoundError,
    RecordValidationError,
    RemoteWriteError,
    SessionNotStartedError,
    WorkflowStepError,
)
from src.salescrm.crm.scoping import visible_customers, visible_leads, visible_tasks
from src.salescrm.crm.service import CRMService
from src.salescrm.crm.workflows import AssignmentResult, QuotationRequestWorkflow

__all__ = [
    "CRMService",
    "QuotationRequestWorkflow",
    "AssignmentResult",
    "CRMError",
    "RecordNotFoundError",
    "RecordValidationError",
    "RemoteWriteError",
    "SessionNotStartedError",
    "WorkflowStepError",
    "visible_tasks",
    "visible_leads",
    "visible_customers",
]
