"""Domain models for the deferred generation task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class GenerationTaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureClass(str, Enum):
    """Normalized failure classes used by requeue policy."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    ACCESS_OR_AUTH = "access_or_auth"
    BILLING_OR_QUOTA = "billing_or_quota"
    MODEL_NOT_AVAILABLE = "model_not_available"
    INVALID_RESPONSE = "invalid_response"
    GENERATION_FAILED = "generation_failed"
    RESOURCE_EXCEEDED = "resource_exceeded"
    INPUT_INVALID = "input_invalid"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_FAILURE_CLASSES


RETRYABLE_FAILURE_CLASSES = frozenset(
    {
        FailureClass.TRANSIENT,
        FailureClass.RATE_LIMITED,
        FailureClass.INVALID_RESPONSE,
        FailureClass.GENERATION_FAILED,
        FailureClass.RESOURCE_EXCEEDED,
    },
)


@dataclass(slots=True)
class GenerationTaskCreate:
    """Input payload for enqueuing one artifact generation."""

    artifact_type: str
    subject_id: str
    task_id: str | None = None
    priority: int = 0
    max_retries: int = 3


@dataclass(slots=True)
class GenerationTaskView:
    """Readable task view for CLI and worker logic."""

    task_id: str
    artifact_type: str
    subject_id: str
    status: GenerationTaskStatus
    priority: int
    retry_count: int
    max_retries: int
    owner_lock: str | None
    failure_class: FailureClass | None
    result: str | None
    error: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class GenerationTaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: GenerationTaskStatus | None
    status_to: GenerationTaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class GenerationTaskDetails:
    """Task details with event stream."""

    task: GenerationTaskView
    events: list[GenerationTaskEventView]


@dataclass(slots=True)
class QueueStats:
    """Task counts by status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed
