"""Controllers for coordinator CLI commands."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from swarm_dispatch.config import Settings
from swarm_dispatch.coordinator.aggregator import MarkdownAggregator, collect_terminal_subtasks
from swarm_dispatch.coordinator.errors import ConfigurationError
from swarm_dispatch.coordinator.models import (
    MonitorOutcome,
    MonitorResult,
    ParentTaskView,
    SubtaskView,
)
from swarm_dispatch.coordinator.monitor import CompletionMonitor, build_snapshot
from swarm_dispatch.coordinator.policies import default_registry
from swarm_dispatch.coordinator.reporting import LineProgressReporter, render_progress_line
from swarm_dispatch.coordinator.repository import SqliteSubtaskStore
from swarm_dispatch.coordinator.services import CoordinatorService
from swarm_dispatch.coordinator.simulation import SimulatedExecutor
from swarm_dispatch.task_source import load_parent_task

Emit = Callable[[str], None]

_STATUS_ICONS = {
    "completed": "✅",
    "failed": "❌",
    "in_progress": "⏳",
    "pending": "⏸️",
}


@dataclass(slots=True)
class DispatchCommand:
    db_path: Path | None
    task_file: Path | None = None
    task_id: str | None = None
    kind: str | None = None
    policy: str | None = None
    output_target: str | None = None
    description: str | None = None
    worker_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class SimulateCommand:
    db_path: Path | None
    task_id: str
    duration_seconds: float = 0.5
    durations: tuple[tuple[str, float], ...] = ()
    fail_ids: tuple[str, ...] = ()
    poll_interval_seconds: float | None = None
    max_wait_seconds: float | None = None


@dataclass(slots=True)
class MonitorCommand:
    db_path: Path | None
    task_id: str
    poll_interval_seconds: float | None = None
    max_wait_seconds: float | None = None


@dataclass(slots=True)
class ListSubtasksCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class InspectSubtaskCommand:
    db_path: Path | None
    subtask_id: str


@dataclass(slots=True)
class AggregateCommand:
    db_path: Path | None
    task_id: str
    output_path: Path | None = None


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool = True


class CoordinatorCliController:
    """Coordinates dispatch, worker simulation, monitoring and inspection commands."""

    def list_policies(self) -> list[str]:
        registry = default_registry()
        lines = ["Decomposition policies:"]
        for name in registry.names():
            items = registry.resolve(name)()
            lines.append(f"  {name}: {len(items)} subtasks")
        return lines

    def dispatch(self, command: DispatchCommand) -> list[str]:
        parent = _parent_from_command(command)
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            service = CoordinatorService(store, worker_prefix=settings.coordinator.worker_prefix)
            result = service.dispatch(parent, worker_ids=command.worker_ids or None)

        lines = [
            "Task dispatched: "
            f"task_id={result.parent.task_id} status={result.parent.status.value} "
            f"subtasks={len(result.subtasks)}",
            f"Output target: {result.parent.output_target}",
        ]
        for index, (subtask, assignment) in enumerate(
            zip(result.subtasks, result.assignments, strict=True),
            start=1,
        ):
            lines.append(f"{index}. {subtask.subtask_id} [{assignment.worker_id}] {subtask.title}")
        return lines

    def simulate(self, command: SimulateCommand, emit: Emit) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        executor = SimulatedExecutor(
            durations=dict(command.durations),
            default_duration=command.duration_seconds,
            failures={subtask_id: "Simulated worker failure." for subtask_id in command.fail_ids},
        )
        with _store(settings) as store:
            service = CoordinatorService(
                store,
                reporter=LineProgressReporter(emit),
                poll_interval_seconds=_or(
                    command.poll_interval_seconds,
                    settings.monitor.poll_interval_seconds,
                ),
                max_wait_seconds=_or(command.max_wait_seconds, settings.monitor.max_wait_seconds),
                wait_strategy=settings.monitor.wait_strategy,
                max_workers=settings.coordinator.max_workers or None,
                worker_prefix=settings.coordinator.worker_prefix,
            )
            result = service.resume(command.task_id, executor)

        lines = [
            "Worker summary: "
            f"processed={result.workers.processed} succeeded={result.workers.succeeded} "
            f"failed={result.workers.failed} running={result.workers.running}",
        ]
        lines.extend(_final_status_lines(result.monitor.outcome, result.monitor.subtasks))
        lines.extend(_timing_lines(result.monitor))
        if result.output_path is not None:
            lines.append(f"Combined document: {result.output_path}")
        return CommandResult(lines=lines, success=not result.timed_out)

    def monitor(self, command: MonitorCommand, emit: Emit) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            parent = store.get_parent(command.task_id)
            _ensure_dispatched(parent)
            monitor = CompletionMonitor(store, reporter=LineProgressReporter(emit))
            result = monitor.watch(
                parent.subtask_ids,
                poll_interval=_or(
                    command.poll_interval_seconds,
                    settings.monitor.poll_interval_seconds,
                ),
                max_wait=_or(command.max_wait_seconds, settings.monitor.max_wait_seconds),
            )
        return CommandResult(
            lines=_final_status_lines(result.outcome, result.subtasks),
            success=result.outcome == MonitorOutcome.COMPLETED,
        )

    def list_subtasks(self, command: ListSubtasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            parent = store.get_parent(command.task_id)
            subtasks = store.list(parent.subtask_ids) if parent.subtask_ids else []

        lines = [
            f"Task {parent.task_id}: status={parent.status.value} "
            f"policy={parent.policy_ref} output_target={parent.output_target}",
        ]
        if subtasks:
            lines.append(render_progress_line(build_snapshot(subtasks)))
        for subtask in subtasks:
            lines.append(
                f"{subtask.subtask_id} status={subtask.status.value} "
                f"worker={subtask.assigned_worker or '-'} title={subtask.title}",
            )
        return lines

    def inspect(self, command: InspectSubtaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            subtask = store.get(command.subtask_id)
            events = store.list_events(subtask_id=command.subtask_id)

        lines = [
            f"Subtask: {subtask.subtask_id}",
            f"Parent: {subtask.parent_id}",
            f"Title: {subtask.title}",
            f"Status: {subtask.status.value}",
            f"Assigned worker: {subtask.assigned_worker or '-'}",
            f"Created: {subtask.created_at.isoformat()}",
            f"Started: {_iso(subtask.started_at)}",
            f"Completed: {_iso(subtask.completed_at)}",
        ]
        if subtask.duration_seconds is not None:
            lines.append(f"Duration: {subtask.duration_seconds * 1000:.0f}ms")
        if subtask.error:
            lines.append(f"Error: {subtask.error}")
        if subtask.result:
            lines.append(f"Result chars: {len(subtask.result)}")
        lines.append("Events:")
        for event in events:
            status_from = event.status_from.value if event.status_from else "-"
            status_to = event.status_to.value if event.status_to else "-"
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{status_from} -> {status_to} {event.details or ''}".rstrip(),
            )
        return lines

    def aggregate(self, command: AggregateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            parent = store.get_parent(command.task_id)
            _ensure_dispatched(parent)
            subtasks = collect_terminal_subtasks(store, parent.subtask_ids)

        target = str(command.output_path) if command.output_path else parent.output_target
        aggregator = MarkdownAggregator(
            title=parent.description or parent.task_id,
            task_id=parent.task_id,
        )
        path = aggregator.write(subtasks, target)
        return [f"Combined {len(subtasks)} subtasks into {path}"]


def _parent_from_command(command: DispatchCommand) -> ParentTaskView:
    if command.task_file is not None:
        parent = load_parent_task(command.task_file)
        if command.policy:
            parent.policy_ref = command.policy
        if command.output_target:
            parent.output_target = command.output_target
        return parent

    if not command.task_id:
        raise ConfigurationError("Either --task-file or --task-id is required.")
    if not command.policy:
        raise ConfigurationError("--policy is required when --task-file is not given.")
    return ParentTaskView(
        task_id=command.task_id,
        kind=command.kind or command.task_id,
        policy_ref=command.policy,
        output_target=command.output_target or f"{command.task_id}.md",
        description=command.description,
    )


def _ensure_dispatched(parent: ParentTaskView) -> None:
    if not parent.subtask_ids:
        raise ConfigurationError(f"Task {parent.task_id} has not been dispatched yet.")


def _final_status_lines(outcome: MonitorOutcome, subtasks: list[SubtaskView]) -> list[str]:
    if outcome == MonitorOutcome.COMPLETED:
        lines = ["All subtasks completed"]
    else:
        lines = ["Monitoring timeout - some subtasks may still be running"]
    lines.append("Final status:")
    for subtask in subtasks:
        icon = _STATUS_ICONS[subtask.status.value]
        line = f"{icon} {subtask.subtask_id}: {subtask.title} status={subtask.status.value}"
        if subtask.assigned_worker:
            line += f" worker={subtask.assigned_worker}"
        if subtask.duration_seconds is not None:
            line += f" duration={subtask.duration_seconds:.2f}s"
        if subtask.error:
            line += f" error={subtask.error[:100]}"
        lines.append(line)
    return lines


def _timing_lines(result: MonitorResult) -> list[str]:
    """Wall time of the run against the time the subtasks would take back to back."""

    elapsed = result.snapshot.elapsed_seconds
    sequential = sum(subtask.duration_seconds or 0.0 for subtask in result.subtasks)
    lines = [
        f"Total time: {elapsed:.2f}s",
        f"Sequential time: {sequential:.2f}s",
    ]
    if elapsed > 0:
        lines.append(f"Speedup: {sequential / elapsed:.2f}x")
    return lines


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"


def _or(value: float | None, default: float) -> float:
    return default if value is None else value


@contextmanager
def _store(settings: Settings) -> Iterator[SqliteSubtaskStore]:
    store = SqliteSubtaskStore(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
