"""Completion monitor: poll the store until every subtask is terminal or time runs out."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from swarm_dispatch.coordinator.errors import ConfigurationError
from swarm_dispatch.coordinator.models import (
    MonitorOutcome,
    MonitorResult,
    ProgressSnapshot,
    SubtaskStatus,
    SubtaskView,
)
from swarm_dispatch.coordinator.reporting import NullProgressReporter, ProgressReporter
from swarm_dispatch.coordinator.state_machine import is_terminal
from swarm_dispatch.coordinator.store import SubtaskStore

logger = logging.getLogger(__name__)


class WaitStrategy(Protocol):
    """Suspends the monitor between ticks; never longer than ``timeout`` seconds."""

    def wait(self, timeout: float) -> None:
        """Return after at most ``timeout`` seconds."""


class PollingWait:
    """Plain sleep between ticks."""

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def wait(self, timeout: float) -> None:
        if timeout > 0:
            self._sleep(timeout)


class NotifyingWait:
    """Sleep that ends early when a worker reports a transition.

    Pass :meth:`notify` as the worker pool ``on_transition`` listener.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._version = 0
        self._seen = 0

    def notify(self, _subtask: SubtaskView | None = None) -> None:
        with self._condition:
            self._version += 1
            self._condition.notify_all()

    def wait(self, timeout: float) -> None:
        if timeout <= 0:
            return
        with self._condition:
            self._condition.wait_for(lambda: self._version != self._seen, timeout=timeout)
            self._seen = self._version


def build_snapshot(
    subtasks: Sequence[SubtaskView],
    *,
    elapsed_seconds: float = 0.0,
) -> ProgressSnapshot:
    counts = dict.fromkeys(SubtaskStatus, 0)
    active: list[str] = []
    for subtask in subtasks:
        counts[subtask.status] += 1
        if subtask.status == SubtaskStatus.IN_PROGRESS:
            active.append(subtask.assigned_worker or subtask.subtask_id)
    return ProgressSnapshot(
        total=len(subtasks),
        completed=counts[SubtaskStatus.COMPLETED],
        failed=counts[SubtaskStatus.FAILED],
        in_progress=counts[SubtaskStatus.IN_PROGRESS],
        pending=counts[SubtaskStatus.PENDING],
        active_workers=tuple(active),
        elapsed_seconds=elapsed_seconds,
    )


class CompletionMonitor:
    """Read-only observer of one dispatch.

    Every tick re-reads the subtasks from the store, reports a snapshot and
    decides whether to stop.  The wait between ticks is clipped to the time
    left before the deadline, so :meth:`watch` returns no later than
    ``max_wait`` plus the duration of one store read.
    """

    def __init__(
        self,
        store: SubtaskStore,
        *,
        reporter: ProgressReporter | None = None,
        wait_strategy: WaitStrategy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.reporter = reporter or NullProgressReporter()
        self.wait_strategy = wait_strategy or PollingWait()
        self._clock = clock

    def watch(
        self,
        subtask_ids: Iterable[str],
        *,
        poll_interval: float,
        max_wait: float,
    ) -> MonitorResult:
        ids = tuple(subtask_ids)
        if not ids:
            raise ConfigurationError("Monitor requires at least one subtask id.")
        if poll_interval <= 0:
            raise ConfigurationError(f"Poll interval must be > 0, got {poll_interval}.")
        if max_wait < 0:
            raise ConfigurationError(f"Max wait must be >= 0, got {max_wait}.")

        started = self._clock()
        deadline = started + max_wait
        ticks = 0
        while True:
            subtasks = self.store.list(ids)
            snapshot = build_snapshot(subtasks, elapsed_seconds=self._clock() - started)
            ticks += 1
            self.reporter.report(snapshot)

            if snapshot.is_finished:
                logger.info(
                    "All %d subtasks terminal after %.1fs: completed=%d failed=%d",
                    snapshot.total,
                    snapshot.elapsed_seconds,
                    snapshot.completed,
                    snapshot.failed,
                )
                return MonitorResult(
                    outcome=MonitorOutcome.COMPLETED,
                    snapshot=snapshot,
                    subtasks=subtasks,
                    ticks=ticks,
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                unfinished = tuple(
                    subtask.subtask_id for subtask in subtasks if not is_terminal(subtask.status)
                )
                logger.warning(
                    "Monitoring timed out after %.1fs; unfinished subtasks: %s",
                    max_wait,
                    ", ".join(unfinished),
                )
                return MonitorResult(
                    outcome=MonitorOutcome.TIMED_OUT,
                    snapshot=snapshot,
                    subtasks=subtasks,
                    unfinished_ids=unfinished,
                    ticks=ticks,
                )

            self.wait_strategy.wait(min(poll_interval, remaining))
