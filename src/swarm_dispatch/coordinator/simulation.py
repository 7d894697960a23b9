"""Simulated unit of work used by the CLI demo and tests."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

from swarm_dispatch.coordinator.models import SubtaskContext


class SimulatedFailure(RuntimeError):
    """Raised by :class:`SimulatedExecutor` for subtasks configured to fail."""


class SimulatedExecutor:
    """Sleeps for a per-subtask duration, then returns a generated result or fails."""

    def __init__(
        self,
        *,
        durations: Mapping[str, float] | None = None,
        default_duration: float = 0.5,
        failures: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.durations = dict(durations or {})
        self.default_duration = default_duration
        self.failures = dict(failures or {})
        self._sleep = sleep

    def __call__(self, context: SubtaskContext) -> str:
        duration = self.durations.get(context.subtask_id, self.default_duration)
        if duration > 0:
            self._sleep(duration)
        if context.subtask_id in self.failures:
            raise SimulatedFailure(self.failures[context.subtask_id])
        return (
            f"{context.description}\n\n"
            f"Research completed for {context.title} by {context.worker_id}."
        )
