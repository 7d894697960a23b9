"""Application service: dispatch, fan out, monitor, aggregate."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from swarm_dispatch.coordinator.aggregator import (
    AggregatorSink,
    MarkdownAggregator,
    collect_terminal_subtasks,
)
from swarm_dispatch.coordinator.dispatcher import DispatchResult, Dispatcher, assign_workers
from swarm_dispatch.coordinator.errors import ConfigurationError
from swarm_dispatch.coordinator.models import (
    Assignment,
    MonitorOutcome,
    MonitorResult,
    ParentTaskStatus,
    ParentTaskView,
)
from swarm_dispatch.coordinator.monitor import CompletionMonitor, NotifyingWait, PollingWait
from swarm_dispatch.coordinator.policies import DecompositionPolicy, PolicyRegistry
from swarm_dispatch.coordinator.reporting import ProgressReporter
from swarm_dispatch.coordinator.store import SubtaskStore
from swarm_dispatch.coordinator.worker import UnitOfWork, WorkerPool, WorkerRunSummary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CoordinatorRunResult:
    """Everything one coordinated run produced."""

    parent: ParentTaskView
    monitor: MonitorResult
    workers: WorkerRunSummary
    output_path: Path | None = None

    @property
    def timed_out(self) -> bool:
        return self.monitor.outcome == MonitorOutcome.TIMED_OUT


class CoordinatorService:
    """Runs the flat fan-out/fan-in flow for one parent task."""

    def __init__(  # noqa: PLR0913
        self,
        store: SubtaskStore,
        *,
        registry: PolicyRegistry | None = None,
        reporter: ProgressReporter | None = None,
        poll_interval_seconds: float = 1.0,
        max_wait_seconds: float = 120.0,
        wait_strategy: str = "polling",
        max_workers: int | None = None,
        worker_prefix: str = "worker",
    ) -> None:
        if wait_strategy not in {"polling", "notify"}:
            raise ConfigurationError(f"Unsupported wait strategy: {wait_strategy!r}")
        self.store = store
        self.dispatcher = Dispatcher(store, registry=registry, worker_prefix=worker_prefix)
        self.reporter = reporter
        self.poll_interval_seconds = poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self.wait_strategy = wait_strategy
        self.max_workers = max_workers
        self.worker_prefix = worker_prefix

    def dispatch(
        self,
        parent: ParentTaskView,
        *,
        policy: DecompositionPolicy | None = None,
        worker_ids: Sequence[str] | None = None,
    ) -> DispatchResult:
        return self.dispatcher.dispatch(parent, policy=policy, worker_ids=worker_ids)

    def run(
        self,
        parent: ParentTaskView,
        unit_of_work: UnitOfWork,
        *,
        policy: DecompositionPolicy | None = None,
        worker_ids: Sequence[str] | None = None,
        aggregator: AggregatorSink | None = None,
    ) -> CoordinatorRunResult:
        """Dispatch ``parent`` and drive it to completion or timeout."""

        dispatched = self.dispatch(parent, policy=policy, worker_ids=worker_ids)
        return self.execute(
            dispatched.parent,
            dispatched.assignments,
            unit_of_work,
            aggregator=aggregator,
        )

    def resume(
        self,
        task_id: str,
        unit_of_work: UnitOfWork,
        *,
        aggregator: AggregatorSink | None = None,
    ) -> CoordinatorRunResult:
        """Run the still-pending subtasks of an already dispatched task."""

        parent = self.store.get_parent(task_id)
        if parent.status != ParentTaskStatus.DISPATCHED:
            raise ConfigurationError(f"Task {task_id} has not been dispatched yet.")
        subtasks = self.store.list(parent.subtask_ids)
        pending = [subtask for subtask in subtasks if subtask.assigned_worker is None]
        if not pending:
            raise ConfigurationError(f"Task {task_id} has no pending subtasks to run.")
        assignments = assign_workers(pending, worker_prefix=self.worker_prefix)
        return self.execute(parent, assignments, unit_of_work, aggregator=aggregator)

    def execute(
        self,
        parent: ParentTaskView,
        assignments: Sequence[Assignment],
        unit_of_work: UnitOfWork,
        *,
        aggregator: AggregatorSink | None = None,
    ) -> CoordinatorRunResult:
        notifier = NotifyingWait() if self.wait_strategy == "notify" else None
        pool = WorkerPool(
            self.store,
            unit_of_work,
            max_workers=self.max_workers,
            on_transition=notifier.notify if notifier is not None else None,
        )
        monitor = CompletionMonitor(
            self.store,
            reporter=self.reporter,
            wait_strategy=notifier or PollingWait(),
        )

        run = pool.start(assignments)
        result = monitor.watch(
            parent.subtask_ids,
            poll_interval=self.poll_interval_seconds,
            max_wait=self.max_wait_seconds,
        )
        if result.outcome == MonitorOutcome.COMPLETED:
            # Every record is terminal; attempts only have logging and listeners left.
            run.wait()
        run.raise_errors()

        output_path = None
        if result.outcome == MonitorOutcome.COMPLETED:
            sink = aggregator or MarkdownAggregator(
                title=parent.description or parent.task_id,
                task_id=parent.task_id,
            )
            subtasks = collect_terminal_subtasks(self.store, parent.subtask_ids)
            output_path = sink.write(subtasks, parent.output_target)
        else:
            logger.warning(
                "Task %s not aggregated: %d subtasks unfinished",
                parent.task_id,
                len(result.unfinished_ids),
            )

        return CoordinatorRunResult(
            parent=parent,
            monitor=result,
            workers=run.summary(),
            output_path=output_path,
        )
