"""CLI entrypoint for swarm-dispatch."""

import logging
from pathlib import Path

import rich_click as click

from swarm_dispatch import __version__
from swarm_dispatch.coordinator.controllers import (
    AggregateCommand,
    CommandResult,
    CoordinatorCliController,
    DispatchCommand,
    InspectSubtaskCommand,
    ListSubtasksCommand,
    MonitorCommand,
    SimulateCommand,
)
from swarm_dispatch.coordinator.errors import CoordinatorError

click.rich_click.USE_MARKDOWN = True
COORDINATOR_CONTROLLER = CoordinatorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="swarm-dispatch")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable INFO logging.")
def swarm_dispatch(verbose: bool) -> None:
    """Decompose a task, run subtasks concurrently, monitor and merge results."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@swarm_dispatch.command("policies")
def policies() -> None:
    """List registered decomposition policies."""

    _emit_lines(COORDINATOR_CONTROLLER.list_policies())


@swarm_dispatch.command("dispatch")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--task-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="JSON task definition. Overrides --task-id/--kind/--description.",
)
@click.option("--task-id", default=None, help="Parent task id when no task file is given.")
@click.option("--kind", default=None, help="Prefix for subtask ids; defaults to the task id.")
@click.option("--policy", default=None, help="Decomposition policy name.")
@click.option("--output-target", default=None, help="Where the combined document goes.")
@click.option("--description", default=None, help="Title of the combined document.")
@click.option(
    "--worker-id",
    "worker_ids",
    multiple=True,
    help="Worker id per subtask, in order. Can be repeated.",
)
def dispatch(  # noqa: PLR0913
    db_path: Path | None,
    task_file: Path | None,
    task_id: str | None,
    kind: str | None,
    policy: str | None,
    output_target: str | None,
    description: str | None,
    worker_ids: tuple[str, ...],
) -> None:
    """Create and persist the subtasks of one parent task."""

    _emit_lines(
        _guarded(
            COORDINATOR_CONTROLLER.dispatch,
            DispatchCommand(
                db_path=db_path,
                task_file=task_file,
                task_id=task_id,
                kind=kind,
                policy=policy,
                output_target=output_target,
                description=description,
                worker_ids=worker_ids,
            ),
        ),
    )


@swarm_dispatch.command("simulate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Dispatched parent task id.")
@click.option(
    "--duration",
    type=click.FloatRange(min=0),
    default=0.5,
    show_default=True,
    help="Simulated seconds of work per subtask.",
)
@click.option(
    "--subtask-duration",
    "subtask_durations",
    multiple=True,
    help="Per-subtask override as '<subtask_id>=<seconds>'. Can be repeated.",
)
@click.option("--fail", "fail_ids", multiple=True, help="Subtask id whose work fails.")
@click.option("--poll-interval", type=click.FloatRange(min=0, min_open=True), default=None)
@click.option("--max-wait", type=click.FloatRange(min=0), default=None)
def simulate(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    duration: float,
    subtask_durations: tuple[str, ...],
    fail_ids: tuple[str, ...],
    poll_interval: float | None,
    max_wait: float | None,
) -> None:
    """Run pending subtasks with simulated concurrent workers."""

    result = _guarded(
        COORDINATOR_CONTROLLER.simulate,
        SimulateCommand(
            db_path=db_path,
            task_id=task_id,
            duration_seconds=duration,
            durations=tuple(_parse_duration(value) for value in subtask_durations),
            fail_ids=fail_ids,
            poll_interval_seconds=poll_interval,
            max_wait_seconds=max_wait,
        ),
        click.echo,
    )
    _emit_result(result, failure_message="Simulation timed out before all subtasks finished.")


@swarm_dispatch.command("monitor")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Dispatched parent task id.")
@click.option("--poll-interval", type=click.FloatRange(min=0, min_open=True), default=None)
@click.option("--max-wait", type=click.FloatRange(min=0), default=None)
def monitor(
    db_path: Path | None,
    task_id: str,
    poll_interval: float | None,
    max_wait: float | None,
) -> None:
    """Poll subtask state until all are terminal or the deadline passes."""

    result = _guarded(
        COORDINATOR_CONTROLLER.monitor,
        MonitorCommand(
            db_path=db_path,
            task_id=task_id,
            poll_interval_seconds=poll_interval,
            max_wait_seconds=max_wait,
        ),
        click.echo,
    )
    _emit_result(result, failure_message="Monitoring timed out.")


@swarm_dispatch.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Parent task id.")
def list_subtasks(db_path: Path | None, task_id: str) -> None:
    """Show the subtasks of one parent task in creation order."""

    _emit_lines(
        _guarded(
            COORDINATOR_CONTROLLER.list_subtasks,
            ListSubtasksCommand(db_path=db_path, task_id=task_id),
        ),
    )


@swarm_dispatch.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--subtask-id", required=True, help="Subtask id.")
def inspect(db_path: Path | None, subtask_id: str) -> None:
    """Show one subtask with its transition history."""

    _emit_lines(
        _guarded(
            COORDINATOR_CONTROLLER.inspect,
            InspectSubtaskCommand(db_path=db_path, subtask_id=subtask_id),
        ),
    )


@swarm_dispatch.command("aggregate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Parent task id.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Override the task output target.",
)
def aggregate(db_path: Path | None, task_id: str, output_path: Path | None) -> None:
    """Merge terminal subtask results into one Markdown document."""

    _emit_lines(
        _guarded(
            COORDINATOR_CONTROLLER.aggregate,
            AggregateCommand(db_path=db_path, task_id=task_id, output_path=output_path),
        ),
    )


def _guarded(handler, *args):  # noqa: ANN001, ANN002, ANN202
    try:
        return handler(*args)
    except (CoordinatorError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _parse_duration(value: str) -> tuple[str, float]:
    subtask_id, separator, seconds = value.rpartition("=")
    if not separator or not subtask_id:
        raise click.BadParameter(
            f"Expected '<subtask_id>=<seconds>', got {value!r}.",
            param_hint="--subtask-duration",
        )
    try:
        return subtask_id, float(seconds)
    except ValueError as error:
        raise click.BadParameter(
            f"Invalid seconds in {value!r}.",
            param_hint="--subtask-duration",
        ) from error


def _emit_result(result: CommandResult, *, failure_message: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    swarm_dispatch()
