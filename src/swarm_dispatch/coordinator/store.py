"""Subtask store contract and the in-memory implementation."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from swarm_dispatch.coordinator import state_machine
from swarm_dispatch.coordinator.errors import (
    ConfigurationError,
    ParentTaskNotFoundError,
    SubtaskNotFoundError,
)
from swarm_dispatch.coordinator.models import (
    ParentTaskView,
    SubtaskStatus,
    SubtaskView,
)


class SubtaskStore(Protocol):
    """Key-value store of subtask and parent task records.

    Writes are whole-record overwrites and must be visible to any read issued
    after the write call returns.
    """

    def put(self, subtask: SubtaskView) -> None:
        """Persist the full record, replacing any prior record with the same id."""

    def get(self, subtask_id: str) -> SubtaskView:
        """Return the current record or raise ``SubtaskNotFoundError``."""

    def list(self, subtask_ids: Iterable[str] | None = None) -> list[SubtaskView]:
        """Return records in creation order, optionally restricted to ``subtask_ids``."""

    def claim(self, subtask_id: str, *, worker_id: str, now: datetime) -> SubtaskView | None:
        """Atomically move a pending, unowned subtask to ``in_progress``."""

    def put_parent(self, parent: ParentTaskView) -> None:
        """Persist the parent task record."""

    def get_parent(self, task_id: str) -> ParentTaskView:
        """Return the parent task or raise ``ParentTaskNotFoundError``."""

    def list_parents(self) -> list[ParentTaskView]:
        """Return all parent tasks."""

    def stage_dispatch(self, parent: ParentTaskView, subtasks: Sequence[SubtaskView]) -> None:
        """Commit all subtask records and the parent update, or nothing."""


class InMemorySubtaskStore:
    """Thread-safe dict-backed store.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subtasks: dict[str, SubtaskView] = {}
        self._parents: dict[str, ParentTaskView] = {}

    def put(self, subtask: SubtaskView) -> None:
        with self._lock:
            # dict keeps first-insertion order, which is creation order.
            self._subtasks[subtask.subtask_id] = replace(subtask)

    def get(self, subtask_id: str) -> SubtaskView:
        with self._lock:
            record = self._subtasks.get(subtask_id)
        if record is None:
            raise SubtaskNotFoundError(subtask_id)
        return replace(record)

    def list(self, subtask_ids: Iterable[str] | None = None) -> list[SubtaskView]:
        with self._lock:
            records = list(self._subtasks.values())
        if subtask_ids is not None:
            wanted = set(subtask_ids)
            missing = wanted.difference(record.subtask_id for record in records)
            if missing:
                raise SubtaskNotFoundError(sorted(missing)[0])
            records = [record for record in records if record.subtask_id in wanted]
        return [replace(record) for record in records]

    def claim(self, subtask_id: str, *, worker_id: str, now: datetime) -> SubtaskView | None:
        with self._lock:
            record = self._subtasks.get(subtask_id)
            if record is None:
                raise SubtaskNotFoundError(subtask_id)
            if record.status != SubtaskStatus.PENDING or record.assigned_worker is not None:
                return None
            claimed = state_machine.start(record, worker_id=worker_id, now=now)
            self._subtasks[subtask_id] = claimed
        return replace(claimed)

    def put_parent(self, parent: ParentTaskView) -> None:
        with self._lock:
            self._parents[parent.task_id] = replace(parent)

    def get_parent(self, task_id: str) -> ParentTaskView:
        with self._lock:
            parent = self._parents.get(task_id)
        if parent is None:
            raise ParentTaskNotFoundError(task_id)
        return replace(parent)

    def list_parents(self) -> list[ParentTaskView]:
        with self._lock:
            return [replace(parent) for parent in self._parents.values()]

    def stage_dispatch(self, parent: ParentTaskView, subtasks: Sequence[SubtaskView]) -> None:
        staged = {subtask.subtask_id: replace(subtask) for subtask in subtasks}
        with self._lock:
            duplicates = sorted(staged.keys() & self._subtasks.keys())
            if duplicates:
                raise ConfigurationError(f"Subtask id already exists: {duplicates[0]}")
            self._subtasks.update(staged)
            self._parents[parent.task_id] = replace(parent)
