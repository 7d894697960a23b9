from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

import allure
import pytest
from helpers import make_parent

from swarm_dispatch.coordinator import state_machine
from swarm_dispatch.coordinator.errors import ConfigurationError
from swarm_dispatch.coordinator.models import MonitorOutcome, SubtaskContext, SubtaskStatus
from swarm_dispatch.coordinator.policies import fixed_policy
from swarm_dispatch.coordinator.services import CoordinatorService
from swarm_dispatch.coordinator.simulation import SimulatedExecutor
from swarm_dispatch.coordinator.store import InMemorySubtaskStore
from swarm_dispatch.coordinator.worker import WorkerRunSummary

pytestmark = [
    allure.epic("Coordination Engine"),
    allure.feature("End-to-End Coordination"),
]

FIVE_ITEMS = fixed_policy([(letter, f"Investigate {letter}") for letter in "ABCDE"])
DURATIONS = {
    "research-1": 0.10,
    "research-2": 0.02,
    "research-3": 0.08,
    "research-4": 0.04,
    "research-5": 0.06,
}


def _parent(tmp_path: Path):
    return make_parent(output_target=str(tmp_path / "out" / "research.md"))


@pytest.mark.parametrize("wait_strategy", ["polling", "notify"])
def test_run_completes_all_subtasks_and_aggregates(
    store,
    tmp_path: Path,
    wait_strategy: str,
) -> None:
    service = CoordinatorService(
        store,
        poll_interval_seconds=0.05,
        max_wait_seconds=10.0,
        wait_strategy=wait_strategy,
    )

    result = service.run(
        _parent(tmp_path),
        SimulatedExecutor(durations=DURATIONS),
        policy=FIVE_ITEMS,
    )

    assert result.monitor.outcome == MonitorOutcome.COMPLETED
    assert not result.timed_out
    assert result.monitor.snapshot.completed == 5
    assert result.workers.succeeded == 5
    subtasks = store.list(result.parent.subtask_ids)
    assert [subtask.title for subtask in subtasks] == list("ABCDE")
    assert all(state_machine.validate_invariants(subtask) == [] for subtask in subtasks)
    assert len({subtask.assigned_worker for subtask in subtasks}) == 5

    assert result.output_path == tmp_path / "out" / "research.md"
    content = result.output_path.read_text(encoding="utf-8")
    positions = [content.index(f"## {letter}") for letter in "ABCDE"]
    assert positions == sorted(positions)


def test_run_with_one_failure_still_finishes(store, tmp_path: Path) -> None:
    service = CoordinatorService(store, poll_interval_seconds=0.05, max_wait_seconds=10.0)
    executor = SimulatedExecutor(
        durations=DURATIONS,
        failures={"research-3": "source unavailable"},
    )

    result = service.run(_parent(tmp_path), executor, policy=FIVE_ITEMS)

    assert result.monitor.outcome == MonitorOutcome.COMPLETED
    assert (result.monitor.snapshot.completed, result.monitor.snapshot.failed) == (4, 1)
    assert store.get("research-3").status == SubtaskStatus.FAILED
    assert store.get("research-3").error == "source unavailable"
    assert "> **Failed** (worker-3): source unavailable" in result.output_path.read_text(
        encoding="utf-8",
    )


def test_run_times_out_and_skips_aggregation(tmp_path: Path) -> None:
    store = InMemorySubtaskStore()
    release = threading.Event()

    def _work(context: SubtaskContext) -> str:
        if context.subtask_id == "research-2":
            release.wait(timeout=10)
        return f"done {context.subtask_id}"

    service = CoordinatorService(store, poll_interval_seconds=0.05, max_wait_seconds=0.3)
    try:
        result = service.run(
            _parent(tmp_path),
            _work,
            policy=fixed_policy([("A", "a"), ("B", "b")]),
        )
    finally:
        release.set()

    assert result.timed_out
    assert result.monitor.unfinished_ids == ("research-2",)
    assert result.output_path is None
    assert not (tmp_path / "out" / "research.md").exists()


def test_resume_runs_pending_subtasks_of_dispatched_task(tmp_path: Path) -> None:
    store = InMemorySubtaskStore()
    service = CoordinatorService(store, poll_interval_seconds=0.05, max_wait_seconds=10.0)
    service.dispatch(_parent(tmp_path), policy=FIVE_ITEMS)

    result = service.resume("research", SimulatedExecutor(default_duration=0.0))

    assert result.monitor.snapshot.completed == 5
    assert result.output_path is not None
    with pytest.raises(ConfigurationError, match="no pending subtasks"):
        service.resume("research", SimulatedExecutor(default_duration=0.0))


def test_resume_requires_dispatched_task() -> None:
    store = InMemorySubtaskStore()
    store.put_parent(make_parent())
    service = CoordinatorService(store)

    with pytest.raises(ConfigurationError, match="has not been dispatched"):
        service.resume("research", SimulatedExecutor(default_duration=0.0))


def test_service_rejects_unknown_wait_strategy() -> None:
    with pytest.raises(ConfigurationError, match="Unsupported wait strategy"):
        CoordinatorService(InMemorySubtaskStore(), wait_strategy="busy-loop")


class _SlowCompletionLogHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        if "completed" in record.getMessage():
            time.sleep(0.3)


def test_worker_summary_counts_attempts_still_logging_after_completion(tmp_path: Path) -> None:
    store = InMemorySubtaskStore()
    worker_logger = logging.getLogger("swarm_dispatch.coordinator.worker")
    handler = _SlowCompletionLogHandler()
    previous_level = worker_logger.level
    worker_logger.addHandler(handler)
    worker_logger.setLevel(logging.INFO)
    service = CoordinatorService(store, poll_interval_seconds=0.02, max_wait_seconds=10.0)
    try:
        result = service.run(
            _parent(tmp_path),
            SimulatedExecutor(default_duration=0.0),
            policy=FIVE_ITEMS,
        )
    finally:
        worker_logger.removeHandler(handler)
        worker_logger.setLevel(previous_level)

    assert result.monitor.outcome == MonitorOutcome.COMPLETED
    assert result.workers == WorkerRunSummary(processed=5, succeeded=5)
