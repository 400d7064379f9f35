from __future__ import annotations

from collections.abc import Iterator
from datetime import timedelta

import allure
import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from content_engine.config import QueueSettings
from content_engine.errors import ApiError, ResourceExceeded, ValidationError
from content_engine.queue.models import FailureClass, GenerationTaskStatus, GenerationTaskView
from content_engine.queue.repository import TaskQueueRepository
from content_engine.queue.worker import QueueWorker, WorkerRunSummary, system_load
from content_engine.storage.common import to_db_datetime, utc_now
from content_engine.storage.sqlmodel_models import AiTask

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Worker Throttling"),
]


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _summarize(task: GenerationTaskView) -> str:
    return f"{task.artifact_type} of {task.subject_id}"


def _worker(
    repository: TaskQueueRepository,
    *,
    handlers=None,
    loads: Iterator[float] | None = None,
    clock: _FakeClock | None = None,
    **kwargs,
) -> QueueWorker:
    clock = clock or _FakeClock()
    load_values = loads if loads is not None else iter(())
    return QueueWorker(
        repository=repository,
        handlers=handlers if handlers is not None else {"summary": _summarize, "tags": _summarize},
        worker_id="worker-test",
        load_sampler=lambda: next(load_values, 0.0),
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


def test_run_once_completes_claimed_tasks(repository: TaskQueueRepository) -> None:
    first = repository.queue_task("summary", "post-1")
    second = repository.queue_task("tags", "post-2")

    summary = _worker(repository).run_once()

    assert summary.processed == 2
    assert summary.succeeded == 2
    for task_id, expected in ((first, "summary of post-1"), (second, "tags of post-2")):
        task = repository.get_task(task_id=task_id)
        assert task is not None
        assert task.status == GenerationTaskStatus.COMPLETED
        assert task.result == expected


def test_handler_errors_are_classified(repository: TaskQueueRepository) -> None:
    rate_limited = repository.queue_task("summary", "post-1", priority=3)
    invalid = repository.queue_task("tags", "post-2", priority=2)
    busy = repository.queue_task("category", "post-3", priority=1)

    def raise_rate_limit(task: GenerationTaskView) -> str:
        raise ApiError(message="HTTP 429: Too many requests", status_code=429)

    def raise_invalid(task: GenerationTaskView) -> str:
        raise ValidationError(message="Content not found")

    def raise_busy(task: GenerationTaskView) -> str:
        raise ResourceExceeded(message="System busy", resource="time")

    summary = _worker(
        repository,
        handlers={"summary": raise_rate_limit, "tags": raise_invalid, "category": raise_busy},
    ).run_once()

    assert summary.failed == 3
    expected = {
        rate_limited: FailureClass.RATE_LIMITED,
        invalid: FailureClass.INPUT_INVALID,
        busy: FailureClass.RESOURCE_EXCEEDED,
    }
    for task_id, failure_class in expected.items():
        task = repository.get_task(task_id=task_id)
        assert task is not None
        assert task.status == GenerationTaskStatus.FAILED
        assert task.failure_class == failure_class
        assert task.retry_count == 1


def test_unexpected_exception_fails_task_as_generation_failure(
    repository: TaskQueueRepository,
) -> None:
    task_id = repository.queue_task("summary", "post-1")

    def explode(task: GenerationTaskView) -> str:
        raise RuntimeError("boom")

    _worker(repository, handlers={"summary": explode}).run_once()

    task = repository.get_task(task_id=task_id)
    assert task is not None
    assert task.failure_class == FailureClass.GENERATION_FAILED
    assert "RuntimeError: boom" in (task.error or "")
    details = repository.get_task_details(task_id=task_id)
    assert details is not None
    assert details.events[-1].details["error_kind"] == "generation"


def test_missing_handler_is_permanent_failure(repository: TaskQueueRepository) -> None:
    task_id = repository.queue_task("seo", "post-1")
    worker = _worker(repository, handlers={})

    worker.run_once()
    second = worker.run_once()

    task = repository.get_task(task_id=task_id)
    assert task is not None
    assert task.status == GenerationTaskStatus.FAILED
    assert task.failure_class == FailureClass.INPUT_INVALID
    assert second.requeued == 0


def test_retryable_failures_are_requeued_and_retried(repository: TaskQueueRepository) -> None:
    task_id = repository.queue_task("summary", "post-1", max_retries=3)
    replies: list[str | Exception] = [ApiError(message="HTTP 503: overloaded", status_code=503)]

    def flaky(task: GenerationTaskView) -> str:
        reply = replies.pop(0) if replies else "Recovered."
        if isinstance(reply, Exception):
            raise reply
        return reply

    worker = _worker(repository, handlers={"summary": flaky})
    first = worker.run_once()
    second = worker.run_once()

    assert first.failed == 1
    assert second.requeued == 1
    assert second.succeeded == 1
    task = repository.get_task(task_id=task_id)
    assert task is not None
    assert task.status == GenerationTaskStatus.COMPLETED
    assert task.retry_count == 1


def test_overloaded_host_claims_nothing(repository: TaskQueueRepository) -> None:
    task_id = repository.queue_task("summary", "post-1")

    summary = _worker(repository, loads=iter([9.0]), max_system_load=4.0).run_once()

    assert summary.throttled == 1
    assert summary.processed == 0
    task = repository.get_task(task_id=task_id)
    assert task is not None
    assert task.status == GenerationTaskStatus.PENDING


def test_load_spike_mid_batch_releases_remaining_tasks(repository: TaskQueueRepository) -> None:
    task_ids = [repository.queue_task("summary", f"post-{index}") for index in range(3)]

    summary = _worker(
        repository,
        loads=iter([0.5, 9.0]),
        max_system_load=4.0,
        batch_size=3,
    ).run_once()

    assert summary.processed == 1
    assert summary.released == 2
    statuses = []
    for task_id in task_ids:
        task = repository.get_task(task_id=task_id)
        assert task is not None
        statuses.append(task.status)
    assert statuses.count(GenerationTaskStatus.COMPLETED) == 1
    assert statuses.count(GenerationTaskStatus.PENDING) == 2


def test_drain_rate_is_throttled(repository: TaskQueueRepository) -> None:
    for index in range(2):
        repository.queue_task("summary", f"post-{index}")
    clock = _FakeClock()

    _worker(
        repository,
        clock=clock,
        throttle_every=2,
        min_task_interval_seconds=1.0,
    ).run_once()

    assert sum(clock.sleeps) == pytest.approx(2.0)


def test_run_task_processes_named_task_ahead_of_priority(repository: TaskQueueRepository) -> None:
    urgent = repository.queue_task("summary", "post-1", priority=9)
    chosen = repository.queue_task("tags", "post-2", priority=0)

    summary = _worker(repository).run_task(chosen)

    assert summary.processed == 1
    assert summary.succeeded == 1
    done = repository.get_task(task_id=chosen)
    assert done is not None
    assert done.status == GenerationTaskStatus.COMPLETED
    assert done.result == "tags of post-2"
    waiting = repository.get_task(task_id=urgent)
    assert waiting is not None
    assert waiting.status == GenerationTaskStatus.PENDING


def test_run_task_skips_task_that_is_not_pending(repository: TaskQueueRepository) -> None:
    task_id = repository.queue_task("summary", "post-1")
    worker = _worker(repository)
    worker.run_task(task_id)

    again = worker.run_task(task_id)
    unknown = worker.run_task("no-such-task")

    assert again.processed == 0
    assert again.idle_polls == 1
    assert unknown.processed == 0
    assert unknown.idle_polls == 1


def test_run_loop_drains_queue_and_exits_when_idle(repository: TaskQueueRepository) -> None:
    for index in range(4):
        repository.queue_task("summary", f"post-{index}")

    summary = _worker(repository, batch_size=2, throttle_every=100).run_loop(max_idle_polls=1)

    assert summary.processed == 4
    assert summary.succeeded == 4
    assert summary.idle_polls == 1
    assert repository.queue_stats().completed == 4


def test_run_loop_respects_max_passes(repository: TaskQueueRepository) -> None:
    for index in range(4):
        repository.queue_task("summary", f"post-{index}")

    summary = _worker(repository, batch_size=1, throttle_every=100).run_loop(max_passes=2)

    assert summary.processed == 2
    assert repository.queue_stats().pending == 2


def test_stop_request_skips_work(repository: TaskQueueRepository) -> None:
    repository.queue_task("summary", "post-1")
    worker = _worker(repository)
    worker.request_stop(signal_name="SIGTERM")

    summary = worker.run_loop()

    assert worker.stop_requested
    assert summary.processed == 0
    assert repository.queue_stats().pending == 1


def test_worker_recovers_expired_leases(repository: TaskQueueRepository) -> None:
    task_id = repository.queue_task("summary", "post-1")
    repository.claim_task(task_id=task_id, worker_id="crashed-worker")
    with Session(repository.engine) as session:
        session.exec(
            sa_update(AiTask)
            .where(col(AiTask.task_id) == task_id)
            .values(started_at=to_db_datetime(utc_now() - timedelta(hours=1))),
        )
        session.commit()

    summary = _worker(repository, stale_task_seconds=60).run_once()

    assert summary.recovered == 1
    assert summary.succeeded == 1
    task = repository.get_task(task_id=task_id)
    assert task is not None
    assert task.status == GenerationTaskStatus.COMPLETED


def test_from_settings_copies_queue_settings(repository: TaskQueueRepository) -> None:
    settings = QueueSettings(batch_size=7, max_system_load=2.5, worker_id="host-1")

    worker = QueueWorker.from_settings(settings, repository=repository, handlers={})

    assert worker.batch_size == 7
    assert worker.max_system_load == 2.5
    assert worker.worker_id == "host-1"


def test_summary_add_and_system_load() -> None:
    total = WorkerRunSummary(processed=1, succeeded=1)
    total.add(WorkerRunSummary(processed=2, failed=1, released=1))

    assert (total.processed, total.succeeded, total.failed, total.released) == (3, 1, 1, 1)
    assert system_load() >= 0.0
