"""SQLModel ORM tables for the artifact cache and task queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class AiContent(SQLModel, table=True):
    __tablename__ = "ai_content"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("subject_id", "artifact_type", name="uq_ai_content_subject_type"),
    )

    id: int | None = Field(default=None, primary_key=True)
    subject_id: str = Field(index=True)
    artifact_type: str = Field(index=True)
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiTask(SQLModel, table=True):
    __tablename__ = "ai_tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_tasks_queue", "status", "priority", "created_at"),)

    task_id: str = Field(primary_key=True)
    artifact_type: str = Field(index=True)
    subject_id: str = Field(index=True)
    status: str = Field(index=True)
    priority: int = Field(default=0, index=True)
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    owner_lock: str | None = Field(default=None, index=True)
    failure_class: str | None = Field(default=None)
    result: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiTaskEvent(SQLModel, table=True):
    __tablename__ = "ai_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("ai_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AiStat(SQLModel, table=True):
    __tablename__ = "ai_stats"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_ai_stats_type_time", "artifact_type", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    artifact_type: str
    model: str
    response_time_ms: int
    attempts: int = Field(default=1)
    succeeded: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
