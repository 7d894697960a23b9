"""Load parent task definitions from JSON files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from swarm_dispatch.coordinator.errors import ConfigurationError
from swarm_dispatch.coordinator.models import ParentTaskView


def load_parent_task(path: Path) -> ParentTaskView:
    """Read a task file.

    Accepts both snake_case keys and the camelCase keys of task files written
    by other tools (``taskId``, ``targetPath``, ``decompositionPolicyRef``).
    """

    if not path.exists():
        raise ConfigurationError(f"Task file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"Task file is not valid JSON: {path}: {error}") from error
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Task file must contain a JSON object: {path}")
    return parent_task_from_mapping(payload)


def parent_task_from_mapping(payload: dict[str, Any]) -> ParentTaskView:
    task_id = _first(payload, "task_id", "taskId", "id")
    if not task_id:
        raise ConfigurationError("Task definition is missing 'task_id'.")
    policy_ref = _first(payload, "policy_ref", "policy", "decompositionPolicyRef")
    if not policy_ref:
        raise ConfigurationError(f"Task {task_id} is missing a decomposition policy reference.")
    output_target = _first(payload, "output_target", "outputTarget", "targetPath")
    if not output_target:
        raise ConfigurationError(f"Task {task_id} is missing an output target.")
    return ParentTaskView(
        task_id=task_id,
        kind=_first(payload, "kind") or task_id,
        policy_ref=policy_ref,
        output_target=output_target,
        description=_first(payload, "description"),
    )


def _first(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
