"""Parent task, subtask and subtask event tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "parent_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("policy_ref", sa.String(), nullable=False),
        sa.Column("output_target", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("subtask_ids_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("idx_parent_tasks_status", "parent_tasks", ["status"], unique=False)

    op.create_table(
        "subtasks",
        sa.Column("subtask_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("assigned_worker", sa.String(), nullable=True),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("subtask_id"),
        sa.UniqueConstraint("sequence", name="uq_subtasks_sequence"),
    )
    op.create_index(
        "idx_subtasks_parent_status",
        "subtasks",
        ["parent_id", "status"],
        unique=False,
    )

    op.create_table(
        "subtask_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subtask_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["subtask_id"], ["subtasks.subtask_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_subtask_events_subtask_time",
        "subtask_events",
        ["subtask_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_subtask_events_subtask_time", table_name="subtask_events")
    op.drop_table("subtask_events")
    op.drop_index("idx_subtasks_parent_status", table_name="subtasks")
    op.drop_table("subtasks")
    op.drop_index("idx_parent_tasks_status", table_name="parent_tasks")
    op.drop_table("parent_tasks")
