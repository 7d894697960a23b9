"""Exception taxonomy for the coordination engine."""

from __future__ import annotations


class CoordinatorError(RuntimeError):
    """Base class for structural coordinator failures."""


class ConfigurationError(CoordinatorError):
    """Invalid dispatch/monitor configuration; nothing was persisted."""


class StoreError(CoordinatorError):
    """Underlying store could not complete a read or write."""


class SubtaskNotFoundError(CoordinatorError):
    def __init__(self, subtask_id: str) -> None:
        super().__init__(f"Subtask not found: {subtask_id}")
        self.subtask_id = subtask_id


class ParentTaskNotFoundError(CoordinatorError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Parent task not found: {task_id}")
        self.task_id = task_id


class InvalidTransitionError(CoordinatorError):
    """Requested status change is not allowed by the subtask state machine."""

    def __init__(self, subtask_id: str, status_from: str, status_to: str) -> None:
        super().__init__(
            f"Invalid transition for subtask {subtask_id}: {status_from} -> {status_to}",
        )
        self.subtask_id = subtask_id
        self.status_from = status_from
        self.status_to = status_to


class ClaimConflictError(CoordinatorError):
    """Subtask is no longer pending or already has an owner."""

    def __init__(self, subtask_id: str, worker_id: str) -> None:
        super().__init__(
            f"Worker {worker_id} cannot claim subtask {subtask_id}: "
            "it is not pending or is owned by another worker.",
        )
        self.subtask_id = subtask_id
        self.worker_id = worker_id


class AggregationError(CoordinatorError):
    """Subtasks are not ready to be merged into the output artifact."""
