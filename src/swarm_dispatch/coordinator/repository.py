"""SQLite-backed subtask store."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from swarm_dispatch.coordinator.errors import (
    ConfigurationError,
    ParentTaskNotFoundError,
    StoreError,
    SubtaskNotFoundError,
)
from swarm_dispatch.coordinator.models import (
    ParentTaskStatus,
    ParentTaskView,
    SubtaskEventView,
    SubtaskStatus,
    SubtaskView,
)
from swarm_dispatch.storage.alembic_runner import upgrade_head
from swarm_dispatch.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from swarm_dispatch.storage.sqlmodel_models import ParentTaskRow, SubtaskEventRow, SubtaskRow

logger = logging.getLogger(__name__)

_EVENT_BY_STATUS = {
    SubtaskStatus.PENDING: "created",
    SubtaskStatus.IN_PROGRESS: "started",
    SubtaskStatus.COMPLETED: "completed",
    SubtaskStatus.FAILED: "failed",
}


class SqliteSubtaskStore:
    """Subtask store facade backed by SQLModel + SQLite.

    Every public call runs in its own session and commits before returning, so
    a write is visible to any read that starts after it.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.sqlite_busy_timeout_ms = sqlite_busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def put(self, subtask: SubtaskView) -> None:
        with self._session() as session:
            row = session.get(SubtaskRow, subtask.subtask_id)
            if row is None:
                previous = None
                row = SubtaskRow(
                    subtask_id=subtask.subtask_id,
                    sequence=_next_sequence(session),
                    parent_id=subtask.parent_id,
                    title=subtask.title,
                    description=subtask.description,
                    status=subtask.status.value,
                    created_at=to_db_datetime(subtask.created_at),
                )
            else:
                previous = SubtaskStatus(row.status)
            _apply_subtask(row, subtask)
            session.add(row)
            session.flush()
            if previous != subtask.status:
                self._add_event(session=session, subtask=subtask, status_from=previous)
            session.commit()

    def get(self, subtask_id: str) -> SubtaskView:
        with self._session() as session:
            row = session.get(SubtaskRow, subtask_id)
            if row is None:
                raise SubtaskNotFoundError(subtask_id)
            return _to_subtask_view(row)

    def list(self, subtask_ids: Iterable[str] | None = None) -> list[SubtaskView]:
        wanted = set(subtask_ids) if subtask_ids is not None else None
        with self._session() as session:
            statement = select(SubtaskRow).order_by(col(SubtaskRow.sequence).asc())
            if wanted is not None:
                statement = statement.where(col(SubtaskRow.subtask_id).in_(wanted))
            rows = session.exec(statement).all()
            views = [_to_subtask_view(row) for row in rows]
        if wanted is not None:
            missing = wanted.difference(view.subtask_id for view in views)
            if missing:
                raise SubtaskNotFoundError(sorted(missing)[0])
        return views

    def claim(self, subtask_id: str, *, worker_id: str, now: datetime) -> SubtaskView | None:
        """Compare-and-set ``pending -> in_progress``; ``None`` when already claimed."""

        with self._session() as session:
            result = session.exec(
                sa_update(SubtaskRow)
                .where(
                    col(SubtaskRow.subtask_id) == subtask_id,
                    col(SubtaskRow.status) == SubtaskStatus.PENDING.value,
                    col(SubtaskRow.assigned_worker).is_(None),
                )
                .values(
                    status=SubtaskStatus.IN_PROGRESS.value,
                    assigned_worker=worker_id,
                    started_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                if session.get(SubtaskRow, subtask_id) is None:
                    raise SubtaskNotFoundError(subtask_id)
                return None

            claimed = session.exec(
                select(SubtaskRow).where(SubtaskRow.subtask_id == subtask_id),
            ).one()
            view = _to_subtask_view(claimed)
            self._add_event(session=session, subtask=view, status_from=SubtaskStatus.PENDING)
            session.commit()
            return view

    def put_parent(self, parent: ParentTaskView) -> None:
        with self._session() as session:
            _upsert_parent(session, parent)
            session.commit()

    def get_parent(self, task_id: str) -> ParentTaskView:
        with self._session() as session:
            row = session.get(ParentTaskRow, task_id)
            if row is None:
                raise ParentTaskNotFoundError(task_id)
            return _to_parent_view(row)

    def list_parents(self) -> list[ParentTaskView]:
        with self._session() as session:
            rows = session.exec(
                select(ParentTaskRow).order_by(col(ParentTaskRow.created_at).asc()),
            ).all()
            return [_to_parent_view(row) for row in rows]

    def stage_dispatch(self, parent: ParentTaskView, subtasks: Sequence[SubtaskView]) -> None:
        """Write every subtask and the dispatched parent in one transaction."""

        with self._session() as session:
            next_sequence = _next_sequence(session)
            for offset, subtask in enumerate(subtasks):
                if session.get(SubtaskRow, subtask.subtask_id) is not None:
                    raise ConfigurationError(f"Subtask id already exists: {subtask.subtask_id}")
                row = SubtaskRow(
                    subtask_id=subtask.subtask_id,
                    sequence=next_sequence + offset,
                    parent_id=subtask.parent_id,
                    title=subtask.title,
                    description=subtask.description,
                    status=subtask.status.value,
                    created_at=to_db_datetime(subtask.created_at),
                )
                _apply_subtask(row, subtask)
                session.add(row)
            session.flush()
            for subtask in subtasks:
                self._add_event(session=session, subtask=subtask, status_from=None)
            _upsert_parent(session, parent)
            session.commit()
        logger.debug("Staged %d subtasks for %s", len(subtasks), parent.task_id)

    def list_events(self, *, subtask_id: str) -> list[SubtaskEventView]:
        """Return the audit trail of one subtask, oldest first."""

        with self._session() as session:
            rows = session.exec(
                select(SubtaskEventRow)
                .where(SubtaskEventRow.subtask_id == subtask_id)
                .order_by(col(SubtaskEventRow.id).asc()),
            ).all()

        events: list[SubtaskEventView] = []
        for row in rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                SubtaskEventView(
                    event_id=row.id or 0,
                    subtask_id=row.subtask_id,
                    event_type=row.event_type,
                    status_from=(
                        SubtaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=SubtaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return events

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise StoreError(f"SQLite store operation failed: {error}") from error

    def _add_event(
        self,
        *,
        session: Session,
        subtask: SubtaskView,
        status_from: SubtaskStatus | None,
    ) -> None:
        details: dict[str, object] = {}
        if subtask.assigned_worker is not None:
            details["worker_id"] = subtask.assigned_worker
        if subtask.error is not None:
            details["error"] = subtask.error
        if subtask.result is not None:
            details["result_chars"] = len(subtask.result)
        session.add(
            SubtaskEventRow(
                subtask_id=subtask.subtask_id,
                event_type=_EVENT_BY_STATUS[subtask.status],
                status_from=status_from.value if status_from is not None else None,
                status_to=subtask.status.value,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _next_sequence(session: Session) -> int:
    current = session.exec(select(func.max(SubtaskRow.sequence))).one()
    return (current or 0) + 1


def _apply_subtask(row: SubtaskRow, subtask: SubtaskView) -> None:
    row.parent_id = subtask.parent_id
    row.title = subtask.title
    row.description = subtask.description
    row.status = subtask.status.value
    row.assigned_worker = subtask.assigned_worker
    row.result = subtask.result
    row.error = subtask.error
    row.created_at = to_db_datetime(subtask.created_at)
    row.started_at = to_db_datetime(subtask.started_at) if subtask.started_at else None
    row.completed_at = to_db_datetime(subtask.completed_at) if subtask.completed_at else None


def _upsert_parent(session: Session, parent: ParentTaskView) -> None:
    now = utc_now()
    row = session.get(ParentTaskRow, parent.task_id)
    if row is None:
        row = ParentTaskRow(
            task_id=parent.task_id,
            kind=parent.kind,
            policy_ref=parent.policy_ref,
            output_target=parent.output_target,
            status=parent.status.value,
            created_at=to_db_datetime(parent.created_at or now),
            updated_at=to_db_datetime(now),
        )
    row.kind = parent.kind
    row.policy_ref = parent.policy_ref
    row.output_target = parent.output_target
    row.description = parent.description
    row.status = parent.status.value
    row.subtask_ids_json = json.dumps(list(parent.subtask_ids))
    row.updated_at = to_db_datetime(parent.updated_at or now)
    session.add(row)


def _to_subtask_view(row: SubtaskRow) -> SubtaskView:
    return SubtaskView(
        subtask_id=row.subtask_id,
        parent_id=row.parent_id,
        title=row.title,
        description=row.description,
        status=SubtaskStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        assigned_worker=row.assigned_worker,
        result=row.result,
        error=row.error,
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )


def _to_parent_view(row: ParentTaskRow) -> ParentTaskView:
    return ParentTaskView(
        task_id=row.task_id,
        kind=row.kind,
        policy_ref=row.policy_ref,
        output_target=row.output_target,
        description=row.description,
        status=ParentTaskStatus(row.status),
        subtask_ids=tuple(json.loads(row.subtask_ids_json or "[]")),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
