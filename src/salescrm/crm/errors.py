"""Domain exceptions raised by the CRM core.

Every mutation either completes or raises one of these; store failures are
chained as ``__cause__`` so callers can inspect the underlying error.
"""

from __future__ import annotations

from collections.abc import Sequence


class CRMError(Exception):
    """Base class for all CRM core errors."""


class SessionNotStartedError(CRMError):
    """Raised when a mutation is attempted without an authenticated session."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation}: no active CRM session")


class RecordValidationError(CRMError):
    """Raised when a record fails required-field validation.

    Nothing has been mutated when this is raised.

    Attributes:
        collection: Collection the record was destined for.
        missing_fields: Names of the required fields that were empty.
    """

    def __init__(self, collection: str, missing_fields: Sequence[str]) -> None:
        self.collection = collection
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Invalid {collection} record: missing required field(s) "
            f"{', '.join(self.missing_fields)}"
        )


class RecordNotFoundError(CRMError):
    """Raised when an operation references an id absent from the mirror.

    Attributes:
        collection: Collection that was searched.
        record_id: The id that could not be resolved.
    """

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record {record_id!r} not found")


class RemoteWriteError(CRMError):
    """Raised when the write-through to the store fails.

    The optimistic mirror change has been rolled back by the time this is
    raised; the store error is available as ``__cause__``.

    Attributes:
        collection: Collection being written.
        record_id: Id of the record whose write failed.
        action: One of ``"put"``, ``"patch"``, ``"remove"``.
    """

    def __init__(self, collection: str, record_id: str, action: str) -> None:
        self.collection = collection
        self.record_id = record_id
        self.action = action
        super().__init__(f"Store {action} failed for {collection} record {record_id!r}")


class WorkflowStepError(CRMError):
    """Raised when a multi-step workflow fails part-way.

    Completed steps are not rolled back. Re-running the workflow with the
    same inputs resumes: steps whose records already exist are skipped.

    Attributes:
        workflow: Name of the workflow.
        step: Step that failed.
        completed_steps: Steps that finished before the failure, in order.
        cause: The underlying exception.
    """

    def __init__(
        self,
        workflow: str,
        step: str,
        completed_steps: Sequence[str],
        cause: BaseException,
    ) -> None:
        self.workflow = workflow
        self.step = step
        self.completed_steps = list(completed_steps)
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"{self.workflow} failed at step {self.step!r} after "
            f"{len(self.completed_steps)} completed step(s): {self.cause}"
        )
