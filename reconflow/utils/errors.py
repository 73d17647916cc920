"""
Error types raised by the reconciliation service.

Each error carries the HTTP status the API layer should answer with.
"""
from typing import List, Optional


class ReconflowError(Exception):
    """Base error for all service failures."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ReconflowError):
    """Requested record does not exist in the organization."""

    status_code = 404


class ValidationError(ReconflowError):
    """Extracted or submitted data failed validation."""

    status_code = 400

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class PreconditionError(ReconflowError):
    """Operation is not allowed in the record's current state."""

    status_code = 400


class ProcessorError(ReconflowError):
    """A document processor is missing or could not produce a result."""


class StorageError(ReconflowError):
    """Object storage read or write failed."""


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowCycleError(ReconflowError):
    """Step graph exceeded its transition budget."""

    def __init__(self, workflow_id: str, transitions: int):
        super().__init__(
            f"Workflow cycle detected: {workflow_id} exceeded {transitions} step transitions"
        )
        self.workflow_id = workflow_id
        self.transitions = transitions


class VersionConflictError(ReconflowError):
    """Record changed since it was read."""

    status_code = 409
