"""Progress reporter sinks for monitor snapshots."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from swarm_dispatch.coordinator.models import ProgressSnapshot

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    def report(self, snapshot: ProgressSnapshot) -> None:
        """Receive one monitor tick."""


class NullProgressReporter:
    def report(self, snapshot: ProgressSnapshot) -> None:
        return None


class LoggingProgressReporter:
    """Logs every snapshot at INFO."""

    def report(self, snapshot: ProgressSnapshot) -> None:
        logger.info(
            "Progress: [%d/%d] completed, %d in progress, %d failed",
            snapshot.completed,
            snapshot.total,
            snapshot.in_progress,
            snapshot.failed,
        )


class LineProgressReporter:
    """Renders snapshots as text lines and forwards them to ``emit``.

    Consecutive identical lines are dropped unless ``only_changes`` is off.
    """

    def __init__(
        self,
        emit: Callable[[str], None],
        *,
        width: int = 20,
        only_changes: bool = True,
    ) -> None:
        self._emit = emit
        self._width = width
        self._only_changes = only_changes
        self._last: str | None = None

    def report(self, snapshot: ProgressSnapshot) -> None:
        line = render_progress_line(snapshot, width=self._width)
        if self._only_changes and line == self._last:
            return
        self._last = line
        self._emit(line)


def render_progress_bar(snapshot: ProgressSnapshot, *, width: int = 20) -> str:
    filled = max(0, min(snapshot.percent * width // 100, width))
    bar = "█" * filled + "░" * (width - filled)
    return f"[{bar}] {snapshot.percent}% ({snapshot.completed}/{snapshot.total} completed)"


def render_progress_line(snapshot: ProgressSnapshot, *, width: int = 20) -> str:
    line = (
        f"{render_progress_bar(snapshot, width=width)} | "
        f"{snapshot.in_progress} in progress, {snapshot.failed} failed"
    )
    if snapshot.active_workers:
        line += f" | Active: {', '.join(snapshot.active_workers)}"
    return line
