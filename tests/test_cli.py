from __future__ import annotations

import json
from pathlib import Path

import allure
from click.testing import CliRunner

from swarm_dispatch.main import swarm_dispatch

pytestmark = [
    allure.epic("Coordination Engine"),
    allure.feature("CLI"),
]


def _dispatch(runner: CliRunner, db_path: Path, output: Path, task_id: str = "research"):
    return runner.invoke(
        swarm_dispatch,
        [
            "dispatch",
            "--db-path",
            str(db_path),
            "--task-id",
            task_id,
            "--policy",
            "research-orleans",
            "--output-target",
            str(output),
            "--description",
            "Orleans research",
        ],
    )


def test_policies_lists_builtin_policy() -> None:
    result = CliRunner().invoke(swarm_dispatch, ["policies"])

    assert result.exit_code == 0, result.output
    assert "research-orleans: 5 subtasks" in result.output


def test_dispatch_simulate_inspect_and_aggregate(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    output = tmp_path / "docs" / "orleans.md"

    dispatched = _dispatch(runner, db_path, output)
    assert dispatched.exit_code == 0, dispatched.output
    assert "task_id=research status=dispatched subtasks=5" in dispatched.output
    assert "1. research-1 [worker-1] Research Virtual Actor Model and Grains" in dispatched.output

    simulated = runner.invoke(
        swarm_dispatch,
        [
            "simulate",
            "--db-path",
            str(db_path),
            "--task-id",
            "research",
            "--duration",
            "0",
            "--subtask-duration",
            "research-1=0.05",
            "--fail",
            "research-3",
            "--poll-interval",
            "0.05",
            "--max-wait",
            "10",
        ],
    )
    assert simulated.exit_code == 0, simulated.output
    assert "processed=5 succeeded=4 failed=1 running=0" in simulated.output
    assert "All subtasks completed" in simulated.output
    assert "❌ research-3:" in simulated.output
    research_one = next(
        line for line in simulated.output.splitlines() if line.startswith("✅ research-1:")
    )
    assert "worker=worker-1 duration=" in research_one
    assert "Total time: " in simulated.output
    assert "Sequential time: " in simulated.output
    assert "Speedup: " in simulated.output
    assert f"Combined document: {output}" in simulated.output
    assert output.exists()

    listed = runner.invoke(
        swarm_dispatch,
        ["list", "--db-path", str(db_path), "--task-id", "research"],
    )
    assert listed.exit_code == 0, listed.output
    rows = [line for line in listed.output.splitlines() if line.startswith("research-")]
    assert [row.split()[0] for row in rows] == [f"research-{index}" for index in range(1, 6)]

    inspected = runner.invoke(
        swarm_dispatch,
        ["inspect", "--db-path", str(db_path), "--subtask-id", "research-3"],
    )
    assert inspected.exit_code == 0, inspected.output
    assert "Status: failed" in inspected.output
    assert "Error: Simulated worker failure." in inspected.output
    assert "created - -> pending" in inspected.output
    assert "failed in_progress -> failed" in inspected.output

    merged = tmp_path / "merged.md"
    aggregated = runner.invoke(
        swarm_dispatch,
        [
            "aggregate",
            "--db-path",
            str(db_path),
            "--task-id",
            "research",
            "--output",
            str(merged),
        ],
    )
    assert aggregated.exit_code == 0, aggregated.output
    content = merged.read_text(encoding="utf-8")
    assert content.startswith("# Orleans research")
    assert "*Subtasks: 5 (4 completed, 1 failed)*" in content

    monitored = runner.invoke(
        swarm_dispatch,
        ["monitor", "--db-path", str(db_path), "--task-id", "research", "--max-wait", "1"],
    )
    assert monitored.exit_code == 0, monitored.output
    assert "All subtasks completed" in monitored.output


def test_monitor_exits_non_zero_on_timeout(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    assert _dispatch(runner, db_path, tmp_path / "out.md").exit_code == 0

    result = runner.invoke(
        swarm_dispatch,
        [
            "monitor",
            "--db-path",
            str(db_path),
            "--task-id",
            "research",
            "--poll-interval",
            "0.05",
            "--max-wait",
            "0",
        ],
    )

    assert result.exit_code == 1
    assert "Monitoring timeout - some subtasks may still be running" in result.output
    assert "⏸️ research-5:" in result.output


def test_dispatch_twice_is_rejected(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    assert _dispatch(runner, db_path, tmp_path / "out.md").exit_code == 0

    result = _dispatch(runner, db_path, tmp_path / "out.md")

    assert result.exit_code == 1
    assert "already dispatched" in result.output


def test_dispatch_from_task_file(tmp_path: Path) -> None:
    task_file = tmp_path / "task.json"
    task_file.write_text(
        json.dumps(
            {
                "taskId": "orleans",
                "kind": "orleans-area",
                "policy": "research-orleans",
                "targetPath": str(tmp_path / "orleans.md"),
            },
        ),
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        swarm_dispatch,
        ["dispatch", "--db-path", str(tmp_path / "cli.db"), "--task-file", str(task_file)],
    )

    assert result.exit_code == 0, result.output
    assert "orleans-area-5 [worker-5]" in result.output


def test_aggregate_before_completion_fails(tmp_path: Path) -> None:
    runner = CliRunner()
    db_path = tmp_path / "cli.db"
    assert _dispatch(runner, db_path, tmp_path / "out.md").exit_code == 0

    result = runner.invoke(
        swarm_dispatch,
        ["aggregate", "--db-path", str(db_path), "--task-id", "research"],
    )

    assert result.exit_code == 1
    assert not (tmp_path / "out.md").exists()
