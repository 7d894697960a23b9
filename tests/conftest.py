"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from swarm_dispatch.coordinator.repository import SqliteSubtaskStore
from swarm_dispatch.coordinator.store import InMemorySubtaskStore


@pytest.fixture()
def sqlite_store(tmp_path: Path) -> Iterator[SqliteSubtaskStore]:
    store = SqliteSubtaskStore(tmp_path / "swarm.db")
    store.init_schema()
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        yield InMemorySubtaskStore()
        return
    sqlite = SqliteSubtaskStore(tmp_path / "swarm.db")
    sqlite.init_schema()
    yield sqlite
    sqlite.close()
