"""Common helpers for the SQLite-backed store."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_db_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Build SQLAlchemy engine with consistent SQLite policy."""

    db_url = f"sqlite:///{db_path}"
    engine = create_engine(
        db_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
