"""Persistent queue repository for deferred generation tasks."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from content_engine.queue.models import (
    RETRYABLE_FAILURE_CLASSES,
    FailureClass,
    GenerationTaskCreate,
    GenerationTaskDetails,
    GenerationTaskEventView,
    GenerationTaskStatus,
    GenerationTaskView,
    QueueStats,
)
from content_engine.storage.alembic_runner import upgrade_head
from content_engine.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from content_engine.storage.sqlmodel_models import AiTask, AiTaskEvent

logger = logging.getLogger(__name__)
LEASE_EXPIRED_ERROR = "Lease expired: worker stopped while processing"


class TaskQueueRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    Every transition out of a state is a conditional update on the expected
    current status, so concurrent workers in separate processes can race on
    the same row and exactly one of them wins.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_task(self, payload: GenerationTaskCreate) -> GenerationTaskView:
        """Create a pending task."""

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = AiTask(
                task_id=task_id,
                artifact_type=payload.artifact_type,
                subject_id=payload.subject_id,
                status=GenerationTaskStatus.PENDING.value,
                priority=payload.priority,
                retry_count=0,
                max_retries=payload.max_retries,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="enqueued",
                status_from=None,
                status_to=GenerationTaskStatus.PENDING,
                details={
                    "artifact_type": payload.artifact_type,
                    "subject_id": payload.subject_id,
                    "priority": payload.priority,
                    "max_retries": payload.max_retries,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def queue_task(
        self,
        artifact_type: str,
        subject_id: str,
        *,
        priority: int = 0,
        max_retries: int = 3,
    ) -> str:
        """Enqueue one artifact generation and return its task id."""

        view = self.enqueue_task(
            GenerationTaskCreate(
                artifact_type=artifact_type,
                subject_id=subject_id,
                priority=priority,
                max_retries=max_retries,
            ),
        )
        return view.task_id

    def claim_batch(self, *, worker_id: str, batch_size: int) -> list[GenerationTaskView]:
        """Claim up to batch_size pending tasks in one transaction.

        Candidates are ordered by priority (highest first), then age. Rows
        another worker claimed between the select and the update are skipped.
        """

        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")

        now = utc_now()
        with Session(self.engine) as session:
            candidates = session.exec(
                select(AiTask)
                .where(AiTask.status == GenerationTaskStatus.PENDING.value)
                .order_by(col(AiTask.priority).desc(), col(AiTask.created_at).asc())
                .limit(batch_size),
            ).all()
            candidate_ids = [candidate.task_id for candidate in candidates]

            claimed_ids: list[str] = []
            for task_id in candidate_ids:
                if self._claim_in_session(
                    session=session,
                    task_id=task_id,
                    worker_id=worker_id,
                    now_db=to_db_datetime(now),
                ):
                    claimed_ids.append(task_id)
                else:
                    logger.debug("Task %s already claimed by another worker", task_id)
            session.commit()

            if not claimed_ids:
                return []
            rows = session.exec(
                select(AiTask)
                .where(col(AiTask.task_id).in_(claimed_ids))
                .order_by(col(AiTask.priority).desc(), col(AiTask.created_at).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def claim_task(self, *, task_id: str, worker_id: str) -> bool:
        """Claim one specific pending task; False when it is no longer pending."""

        with Session(self.engine) as session:
            claimed = self._claim_in_session(
                session=session,
                task_id=task_id,
                worker_id=worker_id,
                now_db=to_db_datetime(utc_now()),
            )
            session.commit()
            return claimed

    def complete_task(self, *, task_id: str, worker_id: str, result: str) -> bool:
        """Mark an owned processing task as completed."""

        now_db = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(AiTask)
                .where(
                    col(AiTask.task_id) == task_id,
                    col(AiTask.status) == GenerationTaskStatus.PROCESSING.value,
                    col(AiTask.owner_lock) == worker_id,
                )
                .values(
                    status=GenerationTaskStatus.COMPLETED.value,
                    result=result,
                    error=None,
                    failure_class=None,
                    owner_lock=None,
                    completed_at=now_db,
                    updated_at=now_db,
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="completed",
                status_from=GenerationTaskStatus.PROCESSING,
                status_to=GenerationTaskStatus.COMPLETED,
                details={"worker_id": worker_id, "result_chars": len(result)},
            )
            session.commit()
            return True

    def fail_task(
        self,
        *,
        task_id: str,
        worker_id: str,
        error: str,
        failure_class: FailureClass,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Mark an owned processing task as failed and count the retry."""

        now_db = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(AiTask)
                .where(
                    col(AiTask.task_id) == task_id,
                    col(AiTask.status) == GenerationTaskStatus.PROCESSING.value,
                    col(AiTask.owner_lock) == worker_id,
                )
                .values(
                    status=GenerationTaskStatus.FAILED.value,
                    error=error,
                    failure_class=failure_class.value,
                    retry_count=col(AiTask.retry_count) + 1,
                    owner_lock=None,
                    completed_at=now_db,
                    updated_at=now_db,
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="failed",
                status_from=GenerationTaskStatus.PROCESSING,
                status_to=GenerationTaskStatus.FAILED,
                details={
                    "worker_id": worker_id,
                    "failure_class": failure_class.value,
                    "error": error,
                    **(details or {}),
                },
            )
            session.commit()
            return True

    def release_task(self, *, task_id: str, worker_id: str, reason: str = "throttled") -> bool:
        """Return an owned processing task to pending without counting a retry."""

        now_db = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(AiTask)
                .where(
                    col(AiTask.task_id) == task_id,
                    col(AiTask.status) == GenerationTaskStatus.PROCESSING.value,
                    col(AiTask.owner_lock) == worker_id,
                )
                .values(
                    status=GenerationTaskStatus.PENDING.value,
                    owner_lock=None,
                    started_at=None,
                    updated_at=now_db,
                ),
            )
            if outcome.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="released",
                status_from=GenerationTaskStatus.PROCESSING,
                status_to=GenerationTaskStatus.PENDING,
                details={"worker_id": worker_id, "reason": reason},
            )
            session.commit()
            return True

    def requeue_failed(self) -> int:
        """Move retryable failed tasks with retry budget left back to pending."""

        now_db = to_db_datetime(utc_now())
        retryable = [failure_class.value for failure_class in RETRYABLE_FAILURE_CLASSES]
        with Session(self.engine) as session:
            candidates = session.exec(
                select(AiTask).where(
                    AiTask.status == GenerationTaskStatus.FAILED.value,
                    col(AiTask.retry_count) < col(AiTask.max_retries),
                    col(AiTask.failure_class).in_(retryable),
                ),
            ).all()
            candidate_ids = [(row.task_id, row.retry_count) for row in candidates]

            requeued = 0
            for task_id, retry_count in candidate_ids:
                outcome = session.exec(
                    sa_update(AiTask)
                    .where(
                        col(AiTask.task_id) == task_id,
                        col(AiTask.status) == GenerationTaskStatus.FAILED.value,
                    )
                    .values(
                        status=GenerationTaskStatus.PENDING.value,
                        started_at=None,
                        completed_at=None,
                        updated_at=now_db,
                    ),
                )
                if outcome.rowcount != 1:
                    continue
                requeued += 1
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="requeued",
                    status_from=GenerationTaskStatus.FAILED,
                    status_to=GenerationTaskStatus.PENDING,
                    details={"retry_count": retry_count},
                )
            session.commit()
        if requeued:
            logger.info("Requeued %d failed tasks", requeued)
        return requeued

    def recover_stale_tasks(self, *, stale_after: timedelta) -> int:
        """Reclaim processing tasks whose lease is older than stale_after.

        An expired lease counts as a failed attempt: the task returns to
        pending while retries remain, otherwise it becomes failed.
        """

        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")

        now = utc_now()
        cutoff_db = to_db_datetime(now - stale_after)
        now_db = to_db_datetime(now)
        with Session(self.engine) as session:
            stale_rows = session.exec(
                select(AiTask).where(
                    AiTask.status == GenerationTaskStatus.PROCESSING.value,
                    col(AiTask.started_at) < cutoff_db,
                ),
            ).all()
            stale = [
                (row.task_id, row.owner_lock, row.retry_count, row.max_retries)
                for row in stale_rows
            ]

            recovered = 0
            for task_id, owner_lock, retry_count, max_retries in stale:
                exhausted = retry_count + 1 >= max_retries
                status_to = (
                    GenerationTaskStatus.FAILED if exhausted else GenerationTaskStatus.PENDING
                )
                outcome = session.exec(
                    sa_update(AiTask)
                    .where(
                        col(AiTask.task_id) == task_id,
                        col(AiTask.status) == GenerationTaskStatus.PROCESSING.value,
                        col(AiTask.started_at) < cutoff_db,
                    )
                    .values(
                        status=status_to.value,
                        retry_count=retry_count + 1,
                        owner_lock=None,
                        started_at=None,
                        completed_at=now_db if exhausted else None,
                        error=LEASE_EXPIRED_ERROR,
                        failure_class=FailureClass.TRANSIENT.value,
                        updated_at=now_db,
                    ),
                )
                if outcome.rowcount != 1:
                    continue
                recovered += 1
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="lease_expired",
                    status_from=GenerationTaskStatus.PROCESSING,
                    status_to=status_to,
                    details={
                        "previous_owner": owner_lock,
                        "stale_after_seconds": int(stale_after.total_seconds()),
                    },
                )
            session.commit()
        if recovered:
            logger.warning("Recovered %d tasks with expired leases", recovered)
        return recovered

    def get_task(self, *, task_id: str) -> GenerationTaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(AiTask).where(AiTask.task_id == task_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: GenerationTaskStatus | None = None,
        limit: int = 50,
    ) -> list[GenerationTaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(AiTask).order_by(col(AiTask.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(AiTask.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> GenerationTaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.exec(select(AiTask).where(AiTask.task_id == task_id)).one_or_none()
            if task is None:
                return None
            task_view = _to_task_view(task)

            event_rows = session.exec(
                select(AiTaskEvent)
                .where(AiTaskEvent.task_id == task_id)
                .order_by(col(AiTaskEvent.created_at).asc(), col(AiTaskEvent.id).asc()),
            ).all()

            events: list[GenerationTaskEventView] = []
            for row in event_rows:
                details = {}
                if row.details_json:
                    parsed = json.loads(row.details_json)
                    if isinstance(parsed, dict):
                        details = parsed
                events.append(
                    GenerationTaskEventView(
                        event_id=row.id or 0,
                        task_id=row.task_id,
                        event_type=row.event_type,
                        status_from=(
                            GenerationTaskStatus(row.status_from)
                            if row.status_from is not None
                            else None
                        ),
                        status_to=(
                            GenerationTaskStatus(row.status_to)
                            if row.status_to is not None
                            else None
                        ),
                        created_at=to_utc_aware_datetime(row.created_at),
                        details=details,
                    ),
                )

        return GenerationTaskDetails(task=task_view, events=events)

    def queue_stats(self) -> QueueStats:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AiTask.status, func.count()).group_by(AiTask.status),
            ).all()
        counts = {status: int(count) for status, count in rows}
        return QueueStats(
            pending=counts.get(GenerationTaskStatus.PENDING.value, 0),
            processing=counts.get(GenerationTaskStatus.PROCESSING.value, 0),
            completed=counts.get(GenerationTaskStatus.COMPLETED.value, 0),
            failed=counts.get(GenerationTaskStatus.FAILED.value, 0),
        )

    def _claim_in_session(
        self,
        *,
        session: Session,
        task_id: str,
        worker_id: str,
        now_db: datetime,
    ) -> bool:
        outcome = session.exec(
            sa_update(AiTask)
            .where(
                col(AiTask.task_id) == task_id,
                col(AiTask.status) == GenerationTaskStatus.PENDING.value,
            )
            .values(
                status=GenerationTaskStatus.PROCESSING.value,
                owner_lock=worker_id,
                started_at=now_db,
                completed_at=None,
                updated_at=now_db,
            ),
        )
        if outcome.rowcount != 1:
            return False
        self._add_event(
            session=session,
            task_id=task_id,
            event_type="claimed",
            status_from=GenerationTaskStatus.PENDING,
            status_to=GenerationTaskStatus.PROCESSING,
            details={"worker_id": worker_id},
        )
        return True

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: GenerationTaskStatus | None,
        status_to: GenerationTaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            AiTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _to_task_view(row: AiTask) -> GenerationTaskView:
    return GenerationTaskView(
        task_id=row.task_id,
        artifact_type=row.artifact_type,
        subject_id=row.subject_id,
        status=GenerationTaskStatus(row.status),
        priority=row.priority,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        owner_lock=row.owner_lock,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        result=row.result,
        error=row.error,
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
