"""Worker execution model: one concurrent attempt per assigned subtask."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, wait
from dataclasses import dataclass
from datetime import datetime

from swarm_dispatch.coordinator import state_machine
from swarm_dispatch.coordinator.errors import ClaimConflictError, ConfigurationError
from swarm_dispatch.coordinator.models import (
    Assignment,
    SubtaskContext,
    SubtaskStatus,
    SubtaskView,
)
from swarm_dispatch.coordinator.store import SubtaskStore
from swarm_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[SubtaskContext], str]
TransitionListener = Callable[[SubtaskView], None]


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    running: int = 0
    errored: int = 0


class SubtaskWorker:
    """Runs one execution attempt for an assigned subtask.

    Failures raised by the unit of work are recorded on the subtask and do not
    escape. Store failures and claim conflicts propagate to the caller.
    """

    def __init__(
        self,
        store: SubtaskStore,
        unit_of_work: UnitOfWork,
        *,
        clock: Callable[[], datetime] = utc_now,
        on_transition: TransitionListener | None = None,
    ) -> None:
        self.store = store
        self.unit_of_work = unit_of_work
        self._clock = clock
        self._on_transition = on_transition

    def run_attempt(self, assignment: Assignment) -> SubtaskView:
        claimed = self.store.claim(
            assignment.subtask_id,
            worker_id=assignment.worker_id,
            now=self._clock(),
        )
        if claimed is None:
            raise ClaimConflictError(assignment.subtask_id, assignment.worker_id)
        logger.info("%s started %s", assignment.worker_id, assignment.subtask_id)
        self._notify(claimed)

        context = SubtaskContext(
            subtask_id=claimed.subtask_id,
            parent_id=claimed.parent_id,
            title=claimed.title,
            description=claimed.description,
            worker_id=assignment.worker_id,
        )
        try:
            result = self.unit_of_work(context)
        except Exception as error:  # noqa: BLE001
            finished = state_machine.fail(
                claimed,
                error=str(error).strip() or type(error).__name__,
                now=self._clock(),
            )
        else:
            if isinstance(result, str) and result.strip():
                finished = state_machine.complete(claimed, result=result, now=self._clock())
            else:
                finished = state_machine.fail(
                    claimed,
                    error=_bad_result_message(result),
                    now=self._clock(),
                )

        self.store.put(finished)
        if finished.status == SubtaskStatus.COMPLETED:
            logger.info("%s completed %s", assignment.worker_id, assignment.subtask_id)
        else:
            logger.warning(
                "%s failed %s: %s",
                assignment.worker_id,
                assignment.subtask_id,
                finished.error,
            )
        self._notify(finished)
        return finished

    def _notify(self, subtask: SubtaskView) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(subtask)
        except Exception:  # noqa: BLE001
            logger.exception("Transition listener failed for %s", subtask.subtask_id)


class WorkerRun:
    """Handle over the concurrently running attempts of one dispatch."""

    def __init__(self, futures: dict[Future[SubtaskView], Assignment]) -> None:
        self.futures = futures

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every attempt ended or ``timeout`` elapsed; True when all ended."""

        _, not_done = wait(self.futures, timeout=timeout)
        return not not_done

    def done(self) -> bool:
        return all(future.done() for future in self.futures)

    def summary(self) -> WorkerRunSummary:
        summary = WorkerRunSummary()
        for future in self.futures:
            if not future.done():
                summary.running += 1
                continue
            if future.exception() is not None:
                summary.errored += 1
                continue
            summary.processed += 1
            if future.result().status == SubtaskStatus.COMPLETED:
                summary.succeeded += 1
            else:
                summary.failed += 1
        return summary

    def errors(self) -> list[tuple[Assignment, BaseException]]:
        found: list[tuple[Assignment, BaseException]] = []
        for future, assignment in self.futures.items():
            if future.done() and future.exception() is not None:
                found.append((assignment, future.exception()))
        return found

    def raise_errors(self) -> None:
        """Re-raise the first structural failure (store error, claim conflict)."""

        for _, error in self.errors():
            raise error


class WorkerPool:
    """Fans assignments out onto daemon threads, one per subtask.

    ``max_workers`` caps how many attempts execute at once. Threads are daemons,
    so a process that gave up waiting after a monitor timeout can exit without
    joining attempts that are still running.
    """

    def __init__(
        self,
        store: SubtaskStore,
        unit_of_work: UnitOfWork,
        *,
        max_workers: int | None = None,
        clock: Callable[[], datetime] = utc_now,
        on_transition: TransitionListener | None = None,
    ) -> None:
        self.max_workers = max_workers
        self._worker = SubtaskWorker(
            store,
            unit_of_work,
            clock=clock,
            on_transition=on_transition,
        )

    def start(self, assignments: Sequence[Assignment]) -> WorkerRun:
        if not assignments:
            raise ConfigurationError("No assignments to run.")
        subtask_ids = [assignment.subtask_id for assignment in assignments]
        if len(set(subtask_ids)) != len(subtask_ids):
            raise ConfigurationError("Each subtask may be assigned to at most one worker.")

        slots = threading.BoundedSemaphore(self.max_workers or len(assignments))
        futures: dict[Future[SubtaskView], Assignment] = {}
        for assignment in assignments:
            future: Future[SubtaskView] = Future()
            futures[future] = assignment
            threading.Thread(
                target=self._run_in_slot,
                args=(assignment, future, slots),
                name=f"swarm-worker-{assignment.worker_id}",
                daemon=True,
            ).start()
        logger.info("Started %d worker attempts", len(futures))
        return WorkerRun(futures)

    def _run_in_slot(
        self,
        assignment: Assignment,
        future: Future[SubtaskView],
        slots: threading.BoundedSemaphore,
    ) -> None:
        with slots:
            if not future.set_running_or_notify_cancel():
                return
            try:
                finished = self._worker.run_attempt(assignment)
            except BaseException as error:  # noqa: BLE001
                future.set_exception(error)
            else:
                future.set_result(finished)

    def run(self, assignments: Sequence[Assignment]) -> WorkerRunSummary:
        """Start all attempts and block until every one of them ended."""

        run = self.start(assignments)
        run.wait()
        run.raise_errors()
        return run.summary()


def _bad_result_message(result: object) -> str:
    if isinstance(result, str):
        return "Unit of work returned an empty result."
    return f"Unit of work returned {type(result).__name__}, expected non-empty str."
