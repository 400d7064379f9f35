"""Add task audit events, failure class, and per-call API usage stats."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261015_0002"
down_revision = "20261012_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("ai_tasks") as batch_op:
        batch_op.add_column(sa.Column("failure_class", sa.String(), nullable=True))

    op.create_table(
        "ai_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["ai_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_task_events_task_id", "ai_task_events", ["task_id"], unique=False)
    op.create_index(
        "ix_ai_task_events_event_type",
        "ai_task_events",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "idx_ai_task_events_task_time",
        "ai_task_events",
        ["task_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "ai_stats",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("artifact_type", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("response_time_ms", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("succeeded", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_ai_stats_type_time",
        "ai_stats",
        ["artifact_type", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_ai_stats_type_time", table_name="ai_stats")
    op.drop_table("ai_stats")
    op.drop_index("idx_ai_task_events_task_time", table_name="ai_task_events")
    op.drop_index("ix_ai_task_events_event_type", table_name="ai_task_events")
    op.drop_index("ix_ai_task_events_task_id", table_name="ai_task_events")
    op.drop_table("ai_task_events")
    with op.batch_alter_table("ai_tasks") as batch_op:
        batch_op.drop_column("failure_class")
