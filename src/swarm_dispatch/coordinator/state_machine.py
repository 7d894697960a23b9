"""Subtask state machine: pending -> in_progress -> completed | failed."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from swarm_dispatch.coordinator.errors import InvalidTransitionError
from swarm_dispatch.coordinator.models import SubtaskStatus, SubtaskView

ALLOWED_TRANSITIONS: dict[SubtaskStatus, frozenset[SubtaskStatus]] = {
    SubtaskStatus.PENDING: frozenset({SubtaskStatus.IN_PROGRESS}),
    SubtaskStatus.IN_PROGRESS: frozenset({SubtaskStatus.COMPLETED, SubtaskStatus.FAILED}),
    SubtaskStatus.COMPLETED: frozenset(),
    SubtaskStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({SubtaskStatus.COMPLETED, SubtaskStatus.FAILED})


def is_terminal(status: SubtaskStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(status_from: SubtaskStatus, status_to: SubtaskStatus) -> bool:
    return status_to in ALLOWED_TRANSITIONS[status_from]


def start(subtask: SubtaskView, *, worker_id: str, now: datetime) -> SubtaskView:
    """Move a pending subtask to ``in_progress`` under ``worker_id``."""

    _check(subtask, SubtaskStatus.IN_PROGRESS)
    if not worker_id:
        raise ValueError("worker_id must be a non-empty string.")
    return replace(
        subtask,
        status=SubtaskStatus.IN_PROGRESS,
        assigned_worker=worker_id,
        started_at=now,
    )


def complete(subtask: SubtaskView, *, result: str, now: datetime) -> SubtaskView:
    """Record a successful attempt."""

    _check(subtask, SubtaskStatus.COMPLETED)
    if not result:
        raise ValueError(f"Completed subtask {subtask.subtask_id} requires a non-empty result.")
    return replace(
        subtask,
        status=SubtaskStatus.COMPLETED,
        result=result,
        error=None,
        completed_at=_not_before(now, subtask.started_at),
    )


def fail(subtask: SubtaskView, *, error: str, now: datetime) -> SubtaskView:
    """Record a failed attempt."""

    _check(subtask, SubtaskStatus.FAILED)
    return replace(
        subtask,
        status=SubtaskStatus.FAILED,
        result=None,
        error=error or "unknown error",
        completed_at=_not_before(now, subtask.started_at),
    )


def validate_invariants(subtask: SubtaskView) -> list[str]:
    """Return human-readable violations of the subtask record invariants."""

    problems: list[str] = []
    status = subtask.status
    if (status != SubtaskStatus.PENDING) != (subtask.started_at is not None):
        problems.append("started_at must be set iff status is not pending")
    if is_terminal(status) != (subtask.completed_at is not None):
        problems.append("completed_at must be set iff status is terminal")
    if (status == SubtaskStatus.COMPLETED) != bool(subtask.result):
        problems.append("result must be present iff status is completed")
    if (status == SubtaskStatus.FAILED) != bool(subtask.error):
        problems.append("error must be present iff status is failed")
    if status != SubtaskStatus.PENDING and not subtask.assigned_worker:
        problems.append("assigned_worker must be set once the subtask has started")
    if (
        subtask.started_at is not None
        and subtask.completed_at is not None
        and subtask.completed_at < subtask.started_at
    ):
        problems.append("completed_at must not precede started_at")
    return problems


def _check(subtask: SubtaskView, status_to: SubtaskStatus) -> None:
    if not can_transition(subtask.status, status_to):
        raise InvalidTransitionError(subtask.subtask_id, subtask.status.value, status_to.value)


def _not_before(now: datetime, started_at: datetime | None) -> datetime:
    # Wall clock can step backwards between two calls.
    if started_at is not None and now < started_at:
        return started_at
    return now
