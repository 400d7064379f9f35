"""Create artifact cache and generation task queue tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261012_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ai_content",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("artifact_type", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "subject_id",
            "artifact_type",
            name="uq_ai_content_subject_type",
        ),
    )
    op.create_index("ix_ai_content_subject_id", "ai_content", ["subject_id"], unique=False)
    op.create_index("ix_ai_content_artifact_type", "ai_content", ["artifact_type"], unique=False)

    op.create_table(
        "ai_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("artifact_type", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("owner_lock", sa.String(), nullable=True),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_ai_tasks_artifact_type", "ai_tasks", ["artifact_type"], unique=False)
    op.create_index("ix_ai_tasks_subject_id", "ai_tasks", ["subject_id"], unique=False)
    op.create_index("ix_ai_tasks_status", "ai_tasks", ["status"], unique=False)
    op.create_index("ix_ai_tasks_priority", "ai_tasks", ["priority"], unique=False)
    op.create_index("ix_ai_tasks_owner_lock", "ai_tasks", ["owner_lock"], unique=False)
    op.create_index(
        "idx_ai_tasks_queue",
        "ai_tasks",
        ["status", "priority", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_ai_tasks_queue", table_name="ai_tasks")
    op.drop_index("ix_ai_tasks_owner_lock", table_name="ai_tasks")
    op.drop_index("ix_ai_tasks_priority", table_name="ai_tasks")
    op.drop_index("ix_ai_tasks_status", table_name="ai_tasks")
    op.drop_index("ix_ai_tasks_subject_id", table_name="ai_tasks")
    op.drop_index("ix_ai_tasks_artifact_type", table_name="ai_tasks")
    op.drop_table("ai_tasks")
    op.drop_index("ix_ai_content_artifact_type", table_name="ai_content")
    op.drop_index("ix_ai_content_subject_id", table_name="ai_content")
    op.drop_table("ai_content")
