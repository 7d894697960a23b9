"""Dispatcher: decompose a parent task into pending subtasks and assign workers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from swarm_dispatch.coordinator.errors import ConfigurationError, ParentTaskNotFoundError
from swarm_dispatch.coordinator.models import (
    Assignment,
    ParentTaskStatus,
    ParentTaskView,
    SubtaskStatus,
    SubtaskView,
)
from swarm_dispatch.coordinator.policies import (
    DecompositionPolicy,
    PolicyRegistry,
    default_registry,
)
from swarm_dispatch.coordinator.store import SubtaskStore
from swarm_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchResult:
    """Committed dispatch: the updated parent, its subtasks and worker assignments."""

    parent: ParentTaskView
    subtasks: list[SubtaskView]
    assignments: list[Assignment]


def subtask_id_for(kind: str, index: int) -> str:
    return f"{kind}-{index}"


def assign_workers(
    subtasks: Sequence[SubtaskView],
    worker_ids: Sequence[str] | None = None,
    *,
    worker_prefix: str = "worker",
) -> list[Assignment]:
    """Map exactly one worker to each pending, unowned subtask.

    Assignment happens before any worker starts, so workers never race to
    claim the same subtask.
    """

    owned = [
        subtask.subtask_id
        for subtask in subtasks
        if subtask.status != SubtaskStatus.PENDING or subtask.assigned_worker is not None
    ]
    if owned:
        raise ConfigurationError(
            f"Cannot assign workers to subtasks that already started: {', '.join(owned)}",
        )

    if worker_ids is None:
        worker_ids = [f"{worker_prefix}-{index}" for index in range(1, len(subtasks) + 1)]
    if len(worker_ids) != len(subtasks):
        raise ConfigurationError(
            f"Expected {len(subtasks)} worker ids, got {len(worker_ids)}.",
        )
    if len(set(worker_ids)) != len(worker_ids):
        raise ConfigurationError("Worker ids must be unique within one dispatch.")
    if any(not worker_id.strip() for worker_id in worker_ids):
        raise ConfigurationError("Worker ids must be non-empty.")

    return [
        Assignment(subtask_id=subtask.subtask_id, worker_id=worker_id)
        for subtask, worker_id in zip(subtasks, worker_ids, strict=True)
    ]


class Dispatcher:
    """Creates and persists the fixed subtask set of one parent task."""

    def __init__(
        self,
        store: SubtaskStore,
        *,
        registry: PolicyRegistry | None = None,
        worker_prefix: str = "worker",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry or default_registry()
        self.worker_prefix = worker_prefix
        self._clock = clock

    def dispatch(
        self,
        parent: ParentTaskView,
        policy: DecompositionPolicy | None = None,
        worker_ids: Sequence[str] | None = None,
    ) -> DispatchResult:
        """Dispatch ``parent``; nothing is committed unless every write succeeds."""

        if not parent.kind.strip():
            raise ConfigurationError(f"Task {parent.task_id} has an empty kind.")
        self._ensure_not_dispatched(parent)
        resolved = policy if policy is not None else self.registry.resolve(parent.policy_ref)
        specs = list(resolved())
        if not specs:
            raise ConfigurationError(
                f"Decomposition policy {parent.policy_ref!r} produced no subtasks "
                f"for task {parent.task_id}.",
            )
        for position, spec in enumerate(specs, start=1):
            if not spec.title.strip():
                raise ConfigurationError(f"Subtask #{position} of {parent.task_id} has no title.")

        now = self._clock()
        subtasks = [
            SubtaskView(
                subtask_id=subtask_id_for(parent.kind, index),
                parent_id=parent.task_id,
                title=spec.title,
                description=spec.description,
                status=SubtaskStatus.PENDING,
                created_at=now,
            )
            for index, spec in enumerate(specs, start=1)
        ]
        assignments = assign_workers(subtasks, worker_ids, worker_prefix=self.worker_prefix)
        dispatched = replace(
            parent,
            status=ParentTaskStatus.DISPATCHED,
            subtask_ids=tuple(subtask.subtask_id for subtask in subtasks),
            created_at=parent.created_at or now,
            updated_at=now,
        )

        self.store.stage_dispatch(dispatched, subtasks)
        logger.info(
            "Task %s dispatched: subtasks=%d output_target=%s",
            parent.task_id,
            len(subtasks),
            parent.output_target,
        )
        return DispatchResult(parent=dispatched, subtasks=subtasks, assignments=assignments)

    def _ensure_not_dispatched(self, parent: ParentTaskView) -> None:
        if parent.status == ParentTaskStatus.DISPATCHED or parent.subtask_ids:
            raise ConfigurationError(f"Task {parent.task_id} is already dispatched.")
        try:
            stored = self.store.get_parent(parent.task_id)
        except ParentTaskNotFoundError:
            return
        if stored.status == ParentTaskStatus.DISPATCHED:
            raise ConfigurationError(f"Task {parent.task_id} is already dispatched.")
