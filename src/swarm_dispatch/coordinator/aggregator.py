"""Result aggregation: merge terminal subtasks into one Markdown artifact."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol

from swarm_dispatch.coordinator.errors import AggregationError
from swarm_dispatch.coordinator.models import SubtaskStatus, SubtaskView
from swarm_dispatch.coordinator.state_machine import is_terminal
from swarm_dispatch.coordinator.store import SubtaskStore
from swarm_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

_ANCHOR_STRIP = re.compile(r"[^a-z0-9 -]")


class AggregatorSink(Protocol):
    def write(self, subtasks: Sequence[SubtaskView], output_target: str) -> Path:
        """Produce and store the merged artifact; return where it was written."""


def collect_terminal_subtasks(
    store: SubtaskStore,
    subtask_ids: Iterable[str],
) -> list[SubtaskView]:
    """Read subtasks in creation order and require each to carry its outcome."""

    ids = tuple(subtask_ids)
    if not ids:
        raise AggregationError("Nothing to aggregate: no subtask ids given.")
    subtasks = store.list(ids)

    unfinished = [subtask.subtask_id for subtask in subtasks if not is_terminal(subtask.status)]
    if unfinished:
        raise AggregationError(f"Subtasks are not terminal yet: {', '.join(unfinished)}")
    empty = [
        subtask.subtask_id
        for subtask in subtasks
        if not (subtask.result if subtask.status == SubtaskStatus.COMPLETED else subtask.error)
    ]
    if empty:
        raise AggregationError(f"Subtasks without result or error: {', '.join(empty)}")
    return subtasks


class MarkdownAggregator:
    """Concatenates subtask results under a title and a table of contents."""

    def __init__(
        self,
        *,
        title: str,
        task_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.title = title
        self.task_id = task_id
        self._clock = clock

    def render(self, subtasks: Sequence[SubtaskView]) -> str:
        completed = sum(1 for subtask in subtasks if subtask.status == SubtaskStatus.COMPLETED)
        failed = len(subtasks) - completed

        lines = [f"# {self.title}", ""]
        lines.append(f"*Generated: {self._clock().isoformat()}*")
        if self.task_id:
            lines.append(f"*Task ID: {self.task_id}*")
        lines.append(f"*Subtasks: {len(subtasks)} ({completed} completed, {failed} failed)*")
        lines.extend(["", "---", "", "## Table of Contents", ""])
        for index, subtask in enumerate(subtasks, start=1):
            lines.append(f"{index}. [{subtask.title}](#{_anchor(subtask.title)})")
        lines.extend(["", "---", ""])

        for subtask in subtasks:
            lines.extend([f"## {subtask.title}", ""])
            if subtask.status == SubtaskStatus.COMPLETED:
                lines.append((subtask.result or "").strip())
            else:
                worker = subtask.assigned_worker or "unassigned"
                lines.append(f"> **Failed** ({worker}): {subtask.error}")
            lines.extend(["", "---", ""])
        return "\n".join(lines)

    def write(self, subtasks: Sequence[SubtaskView], output_target: str) -> Path:
        path = Path(output_target)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(subtasks), encoding="utf-8")
        logger.info("Aggregated %d subtasks into %s", len(subtasks), path)
        return path


def _anchor(title: str) -> str:
    return _ANCHOR_STRIP.sub("", title.lower()).strip().replace(" ", "-")
