"""Record builders and clocks shared by the test modules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from swarm_dispatch.coordinator.models import ParentTaskView, SubtaskStatus, SubtaskView

BASE_TIME = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class StepClock:
    """Wall clock that advances by ``step`` on every call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


def make_parent(task_id: str = "research", **overrides) -> ParentTaskView:
    fields = {
        "task_id": task_id,
        "kind": task_id,
        "policy_ref": "research-orleans",
        "output_target": f"{task_id}.md",
        "description": "Orleans research",
    }
    fields.update(overrides)
    return ParentTaskView(**fields)


def make_subtask(subtask_id: str = "research-1", **overrides) -> SubtaskView:
    fields = {
        "subtask_id": subtask_id,
        "parent_id": "research",
        "title": f"Title of {subtask_id}",
        "description": f"Description of {subtask_id}",
        "status": SubtaskStatus.PENDING,
        "created_at": BASE_TIME,
    }
    fields.update(overrides)
    return SubtaskView(**fields)
