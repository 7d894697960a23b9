"""Domain models for parent tasks, subtasks and monitoring snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SubtaskStatus(str, Enum):
    """Subtask lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ParentTaskStatus(str, Enum):
    NEW = "new"
    DISPATCHED = "dispatched"


class MonitorOutcome(str, Enum):
    """Terminal outcome of one monitoring session."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class SubtaskSpec:
    """One item produced by a decomposition policy."""

    title: str
    description: str


@dataclass(slots=True)
class ParentTaskView:
    """Parent task record; only ``status`` and ``subtask_ids`` change after creation."""

    task_id: str
    kind: str
    policy_ref: str
    output_target: str
    description: str | None = None
    status: ParentTaskStatus = ParentTaskStatus.NEW
    subtask_ids: tuple[str, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class SubtaskView:
    """Full subtask record as persisted in the store."""

    subtask_id: str
    parent_id: str
    title: str
    description: str
    status: SubtaskStatus
    created_at: datetime
    assigned_worker: str | None = None
    result: str | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass(slots=True)
class SubtaskEventView:
    """Audit trail entry for one subtask transition."""

    event_id: int
    subtask_id: str
    event_type: str
    status_from: SubtaskStatus | None
    status_to: SubtaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Assignment:
    """Static worker-to-subtask mapping decided by the dispatcher."""

    subtask_id: str
    worker_id: str


@dataclass(slots=True)
class SubtaskContext:
    """Inputs handed to the unit-of-work executor for one attempt."""

    subtask_id: str
    parent_id: str
    title: str
    description: str
    worker_id: str


@dataclass(slots=True)
class ProgressSnapshot:
    """Immutable per-tick view of aggregate subtask progress."""

    total: int
    completed: int
    failed: int
    in_progress: int
    pending: int
    active_workers: tuple[str, ...] = ()
    elapsed_seconds: float = 0.0

    @property
    def finished(self) -> int:
        return self.completed + self.failed

    @property
    def is_finished(self) -> bool:
        return self.finished == self.total

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return min(round(self.finished * 100 / self.total), 100)


@dataclass(slots=True)
class MonitorResult:
    """Outcome of :meth:`CompletionMonitor.watch`."""

    outcome: MonitorOutcome
    snapshot: ProgressSnapshot
    subtasks: list[SubtaskView]
    unfinished_ids: tuple[str, ...] = ()
    ticks: int = 0

    @property
    def timed_out(self) -> bool:
        return self.outcome == MonitorOutcome.TIMED_OUT
