"""Runtime configuration for the coordinator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_WAIT_STRATEGIES = ("polling", "notify")


@dataclass(slots=True)
class CoordinatorSettings:
    """Dispatch and worker pool settings."""

    max_workers: int = 0
    worker_prefix: str = "worker"


@dataclass(slots=True)
class MonitorSettings:
    """Completion monitor settings."""

    poll_interval_seconds: float = 1.0
    max_wait_seconds: float = 120.0
    wait_strategy: str = "polling"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".swarm_dispatch.db")
    sqlite_busy_timeout_ms: int = 5_000
    coordinator: CoordinatorSettings = field(default_factory=CoordinatorSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        settings = cls(
            db_path=db_path or Path(os.getenv("SWARM_DISPATCH_DB_PATH", ".swarm_dispatch.db")),
            sqlite_busy_timeout_ms=int(os.getenv("SWARM_DISPATCH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            coordinator=CoordinatorSettings(
                max_workers=int(os.getenv("SWARM_DISPATCH_MAX_WORKERS", "0")),
                worker_prefix=os.getenv("SWARM_DISPATCH_WORKER_PREFIX", "worker").strip(),
            ),
            monitor=MonitorSettings(
                poll_interval_seconds=float(
                    os.getenv("SWARM_DISPATCH_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                max_wait_seconds=float(os.getenv("SWARM_DISPATCH_MAX_WAIT_SECONDS", "120.0")),
                wait_strategy=os.getenv("SWARM_DISPATCH_WAIT_STRATEGY", "polling").strip().lower(),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("SWARM_DISPATCH_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.coordinator.max_workers < 0:
            raise ValueError("SWARM_DISPATCH_MAX_WORKERS must be >= 0 (0 = one per subtask).")
        if not self.coordinator.worker_prefix:
            raise ValueError("SWARM_DISPATCH_WORKER_PREFIX must be non-empty.")
        if self.monitor.poll_interval_seconds <= 0:
            raise ValueError("SWARM_DISPATCH_POLL_INTERVAL_SECONDS must be > 0.")
        if self.monitor.max_wait_seconds < 0:
            raise ValueError("SWARM_DISPATCH_MAX_WAIT_SECONDS must be >= 0.")
        if self.monitor.wait_strategy not in SUPPORTED_WAIT_STRATEGIES:
            raise ValueError(
                "Invalid SWARM_DISPATCH_WAIT_STRATEGY: "
                f"{self.monitor.wait_strategy!r}. Expected one of: "
                f"{', '.join(SUPPORTED_WAIT_STRATEGIES)}.",
            )
