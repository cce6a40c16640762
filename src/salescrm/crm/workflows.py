"""Quotation request workflows -- multi-collection fan-out of tasks and notifications.

Two workflows run on top of the CRMService write primitives:
- notify_reviewers: when a request is raised, every active user with a
  reviewer role receives one notification.
- assign_to_multiple_coordinators: attaches coordinators and tags to a
  request, creates a main task plus one subtask per template for each
  coordinator, notifies each coordinator and the requester, then moves the
  request to In Progress.

The assignment is not transactional. It runs at-least-once: task and
notification ids are derived from (request, coordinator, template) so a
re-run after a partial failure addresses the same documents. Tasks already
present in the mirror are skipped; notifications are rewritten in place.
A failing step raises WorkflowStepError naming the step and the steps
already completed, which are left in place.

Exports:
    QuotationRequestWorkflow: Workflow runner bound to a CRMService.
    AssignmentResult: Summary of one multi-coordinator assignment.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.salescrm.config import Settings
from src.salescrm.core.ids import derived_id, new_id
from src.salescrm.crm.errors import RecordNotFoundError, WorkflowStepError
from src.salescrm.crm.pricing import format_amount
from src.salescrm.crm.schemas import (
    CoordinatorRef,
    CustomTaskTemplate,
    Notification,
    NotificationType,
    QuotationRequest,
    QuotationRequestStatus,
    QuotationRequestUpdate,
    QuotationTags,
    RequestPriority,
    Task,
    TaskOrigin,
    TaskPriority,
    TaskStatus,
)
from src.salescrm.crm.scoping import QUOTATION_REVIEWER_ROLES
from src.salescrm.store.paths import Collection

if TYPE_CHECKING:
    from src.salescrm.crm.service import CRMService

logger = structlog.get_logger(__name__)

WORKFLOW_NAME = "assign_quotation_request_to_multiple_coordinators"

RELATED_TYPE = "quotation_request"
REQUESTS_VIEW = "sales_quotation_requests"
TASKS_VIEW = "sales_tasks"

_ESCALATED = {RequestPriority.HIGH, RequestPriority.URGENT}


class AssignmentResult(BaseModel):
    """Summary of one multi-coordinator assignment run."""

    request_id: str
    coordinator_ids: list[str] = Field(default_factory=list)
    main_task_ids: list[str] = Field(default_factory=list)
    subtask_ids: list[str] = Field(default_factory=list)
    notification_ids: list[str] = Field(default_factory=list)
    skipped_task_ids: list[str] = Field(default_factory=list)


class QuotationRequestWorkflow:
    """Runs the quotation request workflows against a CRMService.

    Args:
        service: CRMService whose mutations the workflow issues.
        settings: Settings providing due-day offset and currency.
    """

    def __init__(self, service: CRMService, settings: Settings) -> None:
        self._service = service
        self._settings = settings

    # ── Request Raised ──────────────────────────────────────────────────

    async def notify_reviewers(self, request: QuotationRequest) -> list[Notification]:
        """Notify every active reviewer about a newly raised request."""
        reviewers = [
            user
            for user in self._service.users
            if user.is_active and user.role_id in QUOTATION_REVIEWER_ROLES
        ]
        message = (
            f"New quotation request from {request.requested_by_name} for "
            f'"{request.lead_title}" ({request.customer_name}) - '
            f"{self._settings.CURRENCY} {format_amount(request.estimated_value)} - "
            f"{request.priority.value} Priority"
        )

        sent: list[Notification] = []
        for reviewer in reviewers:
            notification = await self._service.add_notification(
                Notification(
                    id=new_id(),
                    type=NotificationType.QUOTATION_REQUEST.value,
                    title="New Quotation Request Received",
                    message=message,
                    recipient_id=reviewer.id,
                    recipient_name=reviewer.name,
                    sender_id=request.requested_by_id,
                    sender_name=request.requested_by_name,
                    related_id=request.lead_id,
                    related_type=RELATED_TYPE,
                    action_url=REQUESTS_VIEW,
                )
            )
            sent.append(notification)

        logger.info(
            "workflow.reviewers_notified",
            request_id=request.id,
            recipients=len(sent),
        )
        return sent

    # ── Multi-Coordinator Assignment ────────────────────────────────────

    async def assign_to_multiple_coordinators(
        self,
        request_id: str,
        coordinators: list[CoordinatorRef],
        tags: QuotationTags,
        custom_tasks: list[CustomTaskTemplate],
    ) -> AssignmentResult:
        """Assign a request to several coordinators and fan out their work.

        Steps:
        1. Resolve the request (RecordNotFoundError before any side effect).
        2. Attach coordinators and tags, status Assigned.
        3. Per coordinator: main task, one subtask per template, notification.
        4. Notify the requester.
        5. Status In Progress.

        Raises:
            SessionNotStartedError: No identity is signed in.
            RecordNotFoundError: The request is not in the mirror.
            WorkflowStepError: A step failed; earlier steps stay applied.
        """
        self._service.require_user("assign quotation request")
        request = next(
            (r for r in self._service.quotation_requests if r.id == request_id), None
        )
        if request is None:
            raise RecordNotFoundError(Collection.QUOTATION_REQUESTS.value, request_id)

        result = AssignmentResult(
            request_id=request_id,
            coordinator_ids=[coordinator.id for coordinator in coordinators],
        )
        completed: list[str] = []

        async def run(step: str, operation: Awaitable[object]) -> None:
            try:
                await operation
            except Exception as exc:
                logger.error(
                    "workflow.step_failed",
                    workflow=WORKFLOW_NAME,
                    request_id=request_id,
                    step=step,
                    completed_steps=len(completed),
                    error=str(exc),
                )
                raise WorkflowStepError(WORKFLOW_NAME, step, completed, exc) from exc
            completed.append(step)

        await run(
            "assign_request",
            self._service.update_quotation_request(
                request_id,
                QuotationRequestUpdate(
                    assigned_coordinators=coordinators,
                    predefined_tags=tags.predefined_tags,
                    custom_tags=tags.custom_tags,
                    status=QuotationRequestStatus.ASSIGNED,
                ),
            ),
        )

        for coordinator in coordinators:
            main_task = self._main_task(request, coordinator, tags)
            await self._add_task_once(run, f"main_task:{coordinator.id}", main_task, result)
            result.main_task_ids.append(main_task.id)

            for index, template in enumerate(custom_tasks):
                subtask = self._subtask(request, coordinator, template, index, main_task.id)
                await self._add_task_once(
                    run, f"subtask:{coordinator.id}:{index}", subtask, result
                )
                result.subtask_ids.append(subtask.id)

            notification = self._coordinator_notification(request, coordinator, len(custom_tasks))
            await run(
                f"notify_coordinator:{coordinator.id}",
                self._service.add_notification(notification),
            )
            result.notification_ids.append(notification.id)

        notification = self._requester_notification(request, len(coordinators))
        await run("notify_requester", self._service.add_notification(notification))
        result.notification_ids.append(notification.id)

        await run(
            "mark_in_progress",
            self._service.update_quotation_request(
                request_id,
                QuotationRequestUpdate(status=QuotationRequestStatus.IN_PROGRESS),
            ),
        )

        logger.info(
            "workflow.quotation_request_assigned",
            request_id=request_id,
            coordinators=len(coordinators),
            main_tasks=len(result.main_task_ids),
            subtasks=len(result.subtask_ids),
            notifications=len(result.notification_ids),
            skipped_tasks=len(result.skipped_task_ids),
        )
        return result

    async def _add_task_once(
        self,
        run: Callable[[str, Awaitable[object]], Awaitable[None]],
        step: str,
        task: Task,
        result: AssignmentResult,
    ) -> None:
        if self._service.contains(Collection.TASKS, task.id):
            logger.debug("workflow.task_exists", step=step, task_id=task.id)
            result.skipped_task_ids.append(task.id)
            return
        await run(step, self._service.add_task(task))

    # ── Record Builders ─────────────────────────────────────────────────

    def _main_task(
        self, request: QuotationRequest, coordinator: CoordinatorRef, tags: QuotationTags
    ) -> Task:
        description = (
            f"Process quotation request for {request.customer_name}.\n\n"
            f"Estimated Value: {self._settings.CURRENCY} "
            f"{format_amount(request.estimated_value)}\n\n"
            f"Requirements: {request.requirements or 'N/A'}\n\n"
            f"Notes: {request.notes or 'N/A'}\n\n"
            f"Tags: {', '.join(tags.all_tags())}"
        )
        return Task(
            id=derived_id(request.id, coordinator.id, "main"),
            title=f"Quotation Request: {request.lead_title}",
            description=description,
            assigned_to=coordinator.id,
            status=TaskStatus.TO_DO,
            priority=TaskPriority.HIGH if request.priority in _ESCALATED else TaskPriority.MEDIUM,
            due_date=self._service.today()
            + timedelta(days=self._settings.QUOTATION_TASK_DUE_DAYS),
            **self._provenance(request),
        )

    def _subtask(
        self,
        request: QuotationRequest,
        coordinator: CoordinatorRef,
        template: CustomTaskTemplate,
        index: int,
        parent_task_id: str,
    ) -> Task:
        return Task(
            id=derived_id(request.id, coordinator.id, "subtask", str(index)),
            title=template.title,
            description=template.description,
            assigned_to=coordinator.id,
            status=TaskStatus.TO_DO,
            priority=template.priority,
            due_date=template.due_date,
            parent_task_id=parent_task_id,
            **self._provenance(request),
        )

    @staticmethod
    def _provenance(request: QuotationRequest) -> dict[str, object]:
        return {
            "created_from": TaskOrigin.QUOTATION_REQUEST,
            "lead_id": request.lead_id,
            "lead_title": request.lead_title,
            "lead_customer_name": request.customer_name,
            "quotation_request_id": request.id,
        }

    def _coordinator_notification(
        self, request: QuotationRequest, coordinator: CoordinatorRef, subtask_count: int
    ) -> Notification:
        message = (
            f'You have been assigned to process a quotation request for "{request.lead_title}" '
            f"({request.customer_name}) - {request.priority.value} Priority"
        )
        if subtask_count:
            message += f" with {subtask_count} subtask(s)"
        return self._notification(
            derived_id(request.id, coordinator.id, "notification"),
            NotificationType.TASK_ASSIGNED,
            "New Quotation Task Assigned",
            message,
            coordinator.id,
            coordinator.name,
            request,
            TASKS_VIEW,
        )

    def _requester_notification(
        self, request: QuotationRequest, coordinator_count: int
    ) -> Notification:
        message = (
            f'Your quotation request for "{request.lead_title}" has been received and '
            f"assigned to {coordinator_count} coordinator(s) by Sales Coordination Head."
        )
        return self._notification(
            derived_id(request.id, "requester", "notification"),
            NotificationType.QUOTATION_REQUEST,
            "Quotation Request Received",
            message,
            request.requested_by_id,
            request.requested_by_name,
            request,
            REQUESTS_VIEW,
        )

    def _notification(
        self,
        notification_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        recipient_id: str,
        recipient_name: str,
        request: QuotationRequest,
        action_url: str,
    ) -> Notification:
        sender = self._service.current_user
        return Notification(
            id=notification_id,
            type=notification_type.value,
            title=title,
            message=message,
            recipient_id=recipient_id,
            recipient_name=recipient_name,
            sender_id=sender.id if sender else None,
            sender_name=sender.name if sender else None,
            related_id=request.lead_id,
            related_type=RELATED_TYPE,
            action_url=action_url,
        )
