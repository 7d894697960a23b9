"""SQLModel ORM tables for the subtask store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class ParentTaskRow(SQLModel, table=True):
    __tablename__ = "parent_tasks"  # type: ignore[bad-override]

    task_id: str = Field(primary_key=True)
    kind: str
    policy_ref: str
    output_target: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    subtask_ids_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SubtaskRow(SQLModel, table=True):
    __tablename__ = "subtasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_subtasks_parent_status", "parent_id", "status"),)

    subtask_id: str = Field(primary_key=True)
    sequence: int = Field(unique=True)
    parent_id: str
    title: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    status: str
    assigned_worker: str | None = None
    result: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )


class SubtaskEventRow(SQLModel, table=True):
    __tablename__ = "subtask_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_subtask_events_subtask_time", "subtask_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    subtask_id: str = Field(
        sa_column=Column(
            ForeignKey("subtasks.subtask_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
