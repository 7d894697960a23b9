from __future__ import annotations

import threading

import allure
import pytest
from helpers import StepClock, make_parent

from swarm_dispatch.coordinator import state_machine
from swarm_dispatch.coordinator.dispatcher import Dispatcher
from swarm_dispatch.coordinator.errors import (
    ClaimConflictError,
    ConfigurationError,
    StoreError,
)
from swarm_dispatch.coordinator.models import Assignment, SubtaskContext, SubtaskStatus
from swarm_dispatch.coordinator.policies import fixed_policy
from swarm_dispatch.coordinator.store import InMemorySubtaskStore
from swarm_dispatch.coordinator.worker import SubtaskWorker, WorkerPool

pytestmark = [
    allure.epic("Coordination Engine"),
    allure.feature("Worker Execution"),
]


class _BrokenPutStore(InMemorySubtaskStore):
    def put(self, subtask) -> None:
        if subtask.status != SubtaskStatus.PENDING:
            raise StoreError("write rejected")
        super().put(subtask)


def _dispatch(store, count: int = 3):
    policy = fixed_policy([(f"Topic {index}", f"Study {index}") for index in range(1, count + 1)])
    return Dispatcher(store).dispatch(make_parent(), policy=policy)


def test_run_attempt_completes_subtask(store) -> None:
    dispatched = _dispatch(store, count=1)
    seen: list[SubtaskContext] = []

    def _work(context: SubtaskContext) -> str:
        seen.append(context)
        return f"notes for {context.title}"

    worker = SubtaskWorker(store, _work, clock=StepClock())
    finished = worker.run_attempt(dispatched.assignments[0])

    assert finished.status == SubtaskStatus.COMPLETED
    assert finished.result == "notes for Topic 1"
    assert seen[0].worker_id == "worker-1"
    assert seen[0].parent_id == "research"
    stored = store.get(finished.subtask_id)
    assert stored == finished
    assert state_machine.validate_invariants(stored) == []
    assert stored.completed_at > stored.started_at


def test_run_attempt_records_executor_failure(store) -> None:
    dispatched = _dispatch(store, count=1)

    def _work(_context: SubtaskContext) -> str:
        raise RuntimeError("agent crashed")

    finished = SubtaskWorker(store, _work).run_attempt(dispatched.assignments[0])

    assert finished.status == SubtaskStatus.FAILED
    assert finished.error == "agent crashed"
    assert finished.assigned_worker == "worker-1"
    assert store.get(finished.subtask_id).status == SubtaskStatus.FAILED


def test_run_attempt_uses_exception_type_for_blank_message(store) -> None:
    dispatched = _dispatch(store, count=1)

    def _work(_context: SubtaskContext) -> str:
        raise KeyError()

    finished = SubtaskWorker(store, _work).run_attempt(dispatched.assignments[0])

    assert finished.error == "KeyError"


def test_run_attempt_fails_on_empty_result(store) -> None:
    dispatched = _dispatch(store, count=1)

    finished = SubtaskWorker(store, lambda _context: "   ").run_attempt(
        dispatched.assignments[0],
    )

    assert finished.status == SubtaskStatus.FAILED
    assert finished.error == "Unit of work returned an empty result."


def test_run_attempt_reports_type_of_non_string_result(store) -> None:
    dispatched = _dispatch(store, count=1)

    finished = SubtaskWorker(store, lambda _context: 42).run_attempt(
        dispatched.assignments[0],
    )

    assert finished.status == SubtaskStatus.FAILED
    assert finished.error == "Unit of work returned int, expected non-empty str."


def test_second_attempt_on_same_subtask_is_rejected(store) -> None:
    dispatched = _dispatch(store, count=1)
    worker = SubtaskWorker(store, lambda _context: "done")
    worker.run_attempt(dispatched.assignments[0])

    other = Assignment(subtask_id=dispatched.subtasks[0].subtask_id, worker_id="worker-9")
    with pytest.raises(ClaimConflictError, match="worker-9"):
        worker.run_attempt(other)
    assert store.get(other.subtask_id).assigned_worker == "worker-1"


def test_transition_listener_sees_start_and_finish_and_errors_are_contained(store) -> None:
    dispatched = _dispatch(store, count=1)
    statuses: list[SubtaskStatus] = []

    def _listener(subtask) -> None:
        statuses.append(subtask.status)
        raise RuntimeError("listener bug")

    finished = SubtaskWorker(
        store,
        lambda _context: "done",
        on_transition=_listener,
    ).run_attempt(dispatched.assignments[0])

    assert finished.status == SubtaskStatus.COMPLETED
    assert statuses == [SubtaskStatus.IN_PROGRESS, SubtaskStatus.COMPLETED]


def test_worker_pool_runs_attempts_concurrently(store) -> None:
    dispatched = _dispatch(store, count=4)
    barrier = threading.Barrier(4)

    def _work(context: SubtaskContext) -> str:
        # Every attempt must be in flight at once for the barrier to release.
        barrier.wait(timeout=5)
        return f"done {context.subtask_id}"

    summary = WorkerPool(store, _work).run(dispatched.assignments)

    assert summary.processed == 4
    assert summary.succeeded == 4
    assert summary.running == 0
    workers = {subtask.assigned_worker for subtask in store.list(dispatched.parent.subtask_ids)}
    assert workers == {"worker-1", "worker-2", "worker-3", "worker-4"}


def test_worker_pool_isolates_failures() -> None:
    store = InMemorySubtaskStore()
    dispatched = _dispatch(store, count=3)
    failing_id = dispatched.subtasks[1].subtask_id

    def _work(context: SubtaskContext) -> str:
        if context.subtask_id == failing_id:
            raise RuntimeError("boom")
        return "ok"

    summary = WorkerPool(store, _work).run(dispatched.assignments)

    assert (summary.succeeded, summary.failed) == (2, 1)
    statuses = [subtask.status for subtask in store.list(dispatched.parent.subtask_ids)]
    assert statuses == [SubtaskStatus.COMPLETED, SubtaskStatus.FAILED, SubtaskStatus.COMPLETED]


def test_worker_pool_reraises_store_errors() -> None:
    store = _BrokenPutStore()
    dispatched = _dispatch(store, count=2)

    run = WorkerPool(store, lambda _context: "ok").start(dispatched.assignments)

    assert run.wait(timeout=5)
    assert run.done()
    assert run.summary().errored == 2
    assert len(run.errors()) == 2
    with pytest.raises(StoreError, match="write rejected"):
        run.raise_errors()


def test_worker_pool_rejects_duplicate_and_empty_assignments() -> None:
    pool = WorkerPool(InMemorySubtaskStore(), lambda _context: "ok")
    duplicate = [
        Assignment(subtask_id="research-1", worker_id="worker-1"),
        Assignment(subtask_id="research-1", worker_id="worker-2"),
    ]

    with pytest.raises(ConfigurationError, match="at most one worker"):
        pool.start(duplicate)
    with pytest.raises(ConfigurationError, match="No assignments"):
        pool.start([])


def test_worker_pool_threads_are_daemons_and_respect_max_workers(store) -> None:
    dispatched = _dispatch(store, count=3)
    release = threading.Event()
    lock = threading.Lock()
    active = 0
    peak = 0

    def _work(context: SubtaskContext) -> str:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        release.wait(timeout=5)
        with lock:
            active -= 1
        return f"done {context.subtask_id}"

    run = WorkerPool(store, _work, max_workers=1).start(dispatched.assignments)
    try:
        threads = [
            thread
            for thread in threading.enumerate()
            if thread.name.startswith("swarm-worker-")
        ]
        assert len(threads) >= 3
        assert all(thread.daemon for thread in threads)
        assert not run.wait(timeout=0.1)
    finally:
        release.set()

    assert run.wait(timeout=5)
    assert run.summary().succeeded == 3
    assert peak == 1
