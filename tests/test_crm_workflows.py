"""Unit tests for the quotation request workflows.

Covers reviewer notification on request creation and the multi-coordinator
assignment fan-out: task/subtask/notification shape, partial failure and
resumption without duplicates.
"""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from src.salescrm.core.ids import derived_id
from src.salescrm.crm.errors import (
    RecordNotFoundError,
    RemoteWriteError,
    SessionNotStartedError,
    WorkflowStepError,
)
from src.salescrm.crm.schemas import (
    CoordinatorRef,
    CustomTaskTemplate,
    QuotationRequest,
    QuotationRequestStatus,
    QuotationTags,
    RequestPriority,
    TaskOrigin,
    TaskPriority,
)
from src.salescrm.crm.service import CRMService
from src.salescrm.store.adapter import StoreError
from tests.conftest import FIXED_NOW

TASKS = "crm/main/crm_tasks"
NOTIFICATIONS = "notifications"

CORA = CoordinatorRef(id="u-coord-a", name="Cora Coord", email="cora@example.com")
BEN = CoordinatorRef(id="u-coord-b", name="Ben Coord", email="ben@example.com")
TAGS = QuotationTags(predefined_tags=["fit-out"], custom_tags=["rush"])
TEMPLATE = CustomTaskTemplate(
    title="Collect site measurements",
    description="Visit and measure",
    priority=TaskPriority.LOW,
    due_date=date(2026, 3, 14),
)


# ── Helpers ────────────────────────────────────────────────────────────────


async def _raise_request(service, **overrides) -> QuotationRequest:
    defaults = {
        "lead_id": "l1",
        "lead_title": "Office Expansion",
        "customer_name": "GreenScape",
        "estimated_value": 15000,
        "requested_by_id": "u-exec",
        "requested_by_name": "Ethan Exec",
        "priority": RequestPriority.HIGH,
        "requirements": "Open-plan layout",
    }
    defaults.update(overrides)
    return await service.add_quotation_request(QuotationRequest(**defaults))


async def _notification_ids(store) -> set[str]:
    return {doc["id"] for doc in await store.get_all(NOTIFICATIONS)}


async def _assign(service, request_id, coordinators=(CORA, BEN), custom_tasks=(TEMPLATE,)):
    return await service.assign_quotation_request_to_multiple_coordinators(
        request_id, list(coordinators), TAGS, list(custom_tasks)
    )


# ── Reviewer Notification ──────────────────────────────────────────────────


class TestNotifyReviewers:
    async def test_inactive_and_non_reviewer_users_skipped(self, service, store):
        await _raise_request(service)
        recipients = {doc["recipientId"] for doc in await store.get_all(NOTIFICATIONS)}
        assert recipients == {"u-admin", "u-head", "u-mgr"}

    async def test_fractional_amount_keeps_decimals(self, service, store):
        await _raise_request(service, estimated_value=1234.5, priority=RequestPriority.LOW)
        message = (await store.get_all(NOTIFICATIONS))[0]["message"]
        assert "AED 1,234.50 - Low Priority" in message


# ── Multi-Coordinator Assignment ───────────────────────────────────────────


class TestAssignToMultipleCoordinators:
    async def test_creates_main_task_and_subtasks_per_coordinator(self, service):
        request = await _raise_request(service)
        result = await _assign(service, request.id)

        tasks = {task.id: task for task in service.tasks}
        assert len(tasks) == 4
        assert result.coordinator_ids == ["u-coord-a", "u-coord-b"]
        assert len(result.main_task_ids) == 2
        assert len(result.subtask_ids) == 2
        assert result.skipped_task_ids == []

        for main_id, sub_id, coordinator in zip(
            result.main_task_ids, result.subtask_ids, (CORA, BEN)
        ):
            main, sub = tasks[main_id], tasks[sub_id]
            assert main.assigned_to == sub.assigned_to == coordinator.id
            assert main.parent_task_id is None
            assert sub.parent_task_id == main_id
            assert sub.title == "Collect site measurements"
            assert sub.priority == TaskPriority.LOW
            assert sub.due_date == date(2026, 3, 14)

    async def test_main_task_fields(self, service):
        request = await _raise_request(service)
        result = await _assign(service, request.id, coordinators=[CORA], custom_tasks=[])

        main = next(t for t in service.tasks if t.id == result.main_task_ids[0])
        assert main.id == derived_id(request.id, "u-coord-a", "main")
        assert main.title == "Quotation Request: Office Expansion"
        assert main.priority == TaskPriority.HIGH
        assert main.due_date == date(2026, 3, 17)
        assert main.created_from == TaskOrigin.QUOTATION_REQUEST
        assert main.quotation_request_id == request.id
        assert main.lead_id == "l1"
        assert main.lead_customer_name == "GreenScape"
        assert "Estimated Value: AED 15,000" in main.description
        assert "Requirements: Open-plan layout" in main.description
        assert "Notes: N/A" in main.description
        assert main.description.endswith("Tags: fit-out, rush")

    @pytest.mark.parametrize(
        "request_priority,task_priority",
        [
            (RequestPriority.URGENT, TaskPriority.HIGH),
            (RequestPriority.HIGH, TaskPriority.HIGH),
            (RequestPriority.MEDIUM, TaskPriority.MEDIUM),
            (RequestPriority.LOW, TaskPriority.MEDIUM),
        ],
    )
    async def test_main_task_priority_escalation(self, service, request_priority, task_priority):
        request = await _raise_request(service, priority=request_priority)
        result = await _assign(service, request.id, coordinators=[CORA], custom_tasks=[])
        main = next(t for t in service.tasks if t.id == result.main_task_ids[0])
        assert main.priority == task_priority

    async def test_notifies_each_coordinator_and_requester(self, service, store):
        """Exactly one notification per coordinator plus one for the requester."""
        request = await _raise_request(service)
        before = await _notification_ids(store)

        result = await _assign(service, request.id)

        new_ids = await _notification_ids(store) - before
        assert new_ids == set(result.notification_ids)
        assert len(new_ids) == 3

        docs = {doc["id"]: doc for doc in await store.get_all(NOTIFICATIONS)}
        coordinator_doc = docs[derived_id(request.id, "u-coord-a", "notification")]
        assert coordinator_doc["type"] == "task_assigned"
        assert coordinator_doc["recipientId"] == "u-coord-a"
        assert coordinator_doc["senderId"] == "u-admin"
        assert coordinator_doc["actionUrl"] == "sales_tasks"
        assert coordinator_doc["message"] == (
            'You have been assigned to process a quotation request for "Office Expansion" '
            "(GreenScape) - High Priority with 1 subtask(s)"
        )

        requester_doc = docs[derived_id(request.id, "requester", "notification")]
        assert requester_doc["type"] == "quotation_request"
        assert requester_doc["recipientId"] == "u-exec"
        assert requester_doc["message"] == (
            'Your quotation request for "Office Expansion" has been received and '
            "assigned to 2 coordinator(s) by Sales Coordination Head."
        )

    async def test_no_subtask_suffix_without_templates(self, service, store):
        request = await _raise_request(service)
        await _assign(service, request.id, coordinators=[CORA], custom_tasks=[])
        docs = {doc["id"]: doc for doc in await store.get_all(NOTIFICATIONS)}
        message = docs[derived_id(request.id, "u-coord-a", "notification")]["message"]
        assert message.endswith("- High Priority")

    async def test_request_ends_in_progress_with_coordinators_and_tags(self, service):
        request = await _raise_request(service)
        await _assign(service, request.id)

        updated = next(r for r in service.quotation_requests if r.id == request.id)
        assert updated.status == QuotationRequestStatus.IN_PROGRESS
        assert [c.id for c in updated.assigned_coordinators] == ["u-coord-a", "u-coord-b"]
        assert updated.predefined_tags == ["fit-out"]
        assert updated.custom_tags == ["rush"]
        assert updated.updated_at is not None

    async def test_unknown_request_has_no_side_effects(self, service, store):
        writes = store.write_count
        with pytest.raises(RecordNotFoundError):
            await _assign(service, "ghost")
        assert store.write_count == writes
        assert service.tasks == ()

    async def test_assign_without_session_raises_session_error(self, store, settings):
        crm = CRMService(store, settings=settings, clock=lambda: FIXED_NOW)
        with pytest.raises(SessionNotStartedError):
            await _assign(crm, "qr-1", coordinators=[CORA], custom_tasks=[])
        assert store.write_count == 0


# ── Partial Failure & Resume ───────────────────────────────────────────────


class TestAssignmentFailure:
    async def _fail_first_subtask(self, service, store, request_id):
        original_put = store.put

        async def flaky_put(path, doc_id, document):
            if "parentTaskId" in document:
                raise StoreError("write rejected")
            await original_put(path, doc_id, document)

        with patch.object(store, "put", AsyncMock(side_effect=flaky_put)):
            with pytest.raises(WorkflowStepError) as exc_info:
                await _assign(service, request_id)
        return exc_info.value

    async def test_failure_names_step_and_completed_steps(self, service, store):
        request = await _raise_request(service)
        error = await self._fail_first_subtask(service, store, request.id)

        assert error.step == "subtask:u-coord-a:0"
        assert error.completed_steps == ["assign_request", "main_task:u-coord-a"]
        assert isinstance(error.__cause__, RemoteWriteError)
        assert isinstance(error.__cause__.__cause__, StoreError)

    async def test_completed_steps_stay_applied(self, service, store):
        request = await _raise_request(service)
        await self._fail_first_subtask(service, store, request.id)

        assert [t.id for t in service.tasks] == [derived_id(request.id, "u-coord-a", "main")]
        current = next(r for r in service.quotation_requests if r.id == request.id)
        assert current.status == QuotationRequestStatus.ASSIGNED

    async def test_rerun_resumes_without_duplicates(self, service, store):
        """A second run skips tasks that already exist and finishes the fan-out."""
        request = await _raise_request(service)
        await self._fail_first_subtask(service, store, request.id)

        result = await _assign(service, request.id)

        assert result.skipped_task_ids == [derived_id(request.id, "u-coord-a", "main")]
        stored_tasks = await store.get_all(TASKS)
        assert len(stored_tasks) == 4
        assert len({doc["id"] for doc in stored_tasks}) == 4

        assigned = [
            doc for doc in await store.get_all(NOTIFICATIONS) if doc["type"] == "task_assigned"
        ]
        assert len(assigned) == 2

        current = next(r for r in service.quotation_requests if r.id == request.id)
        assert current.status == QuotationRequestStatus.IN_PROGRESS
