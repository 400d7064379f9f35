"""Queue worker that drains deferred generation tasks with load-aware throttling."""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from content_engine.config import QueueSettings
from content_engine.errors import as_engine_error
from content_engine.llm.failure_classifier import classify_engine_error
from content_engine.queue.models import FailureClass, GenerationTaskView
from content_engine.queue.repository import TaskQueueRepository

logger = logging.getLogger(__name__)

TaskHandler = Callable[[GenerationTaskView], str]
LoadSampler = Callable[[], float]


def system_load() -> float:
    """One-minute load average, or 0.0 where the platform has none."""

    try:
        return os.getloadavg()[0]
    except (AttributeError, OSError):
        return 0.0


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    released: int = 0
    requeued: int = 0
    recovered: int = 0
    throttled: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.released += other.released
        self.requeued += other.requeued
        self.recovered += other.recovered
        self.throttled += other.throttled
        self.idle_polls += other.idle_polls


class QueueWorker:
    """Claims batches of pending tasks and dispatches them by artifact type."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskQueueRepository,
        handlers: Mapping[str, TaskHandler],
        worker_id: str,
        batch_size: int = 5,
        max_system_load: float = 4.0,
        throttle_every: int = 5,
        min_task_interval_seconds: float = 1.0,
        poll_interval_seconds: float = 2.0,
        stale_task_seconds: int = 1800,
        load_sampler: LoadSampler = system_load,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.handlers = dict(handlers)
        self.worker_id = worker_id
        self.batch_size = batch_size
        self.max_system_load = max_system_load
        self.throttle_every = throttle_every
        self.min_task_interval_seconds = min_task_interval_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_task_seconds = stale_task_seconds
        self._load_sampler = load_sampler
        self._sleep = sleep
        self._clock = clock
        self._stop_requested = False
        self._stop_signal_name: str | None = None
        self._window_started_at: float | None = None
        self._window_tasks = 0

    @classmethod
    def from_settings(
        cls,
        settings: QueueSettings,
        *,
        repository: TaskQueueRepository,
        handlers: Mapping[str, TaskHandler],
    ) -> QueueWorker:
        return cls(
            repository=repository,
            handlers=handlers,
            worker_id=settings.worker_id,
            batch_size=settings.batch_size,
            max_system_load=settings.max_system_load,
            throttle_every=settings.throttle_every,
            min_task_interval_seconds=settings.min_task_interval_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            stale_task_seconds=settings.task_stale_seconds,
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run_once(self) -> WorkerRunSummary:
        """One maintenance, claim and drain pass."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        summary.recovered = self._recover_stale_tasks()
        summary.requeued = self.repository.requeue_failed()

        if self._overloaded():
            summary.throttled = 1
            summary.idle_polls = 1
            return summary

        tasks = self.repository.claim_batch(worker_id=self.worker_id, batch_size=self.batch_size)
        if not tasks:
            summary.idle_polls = 1
            return summary

        if self._window_started_at is None:
            self._window_started_at = self._clock()
        for position, task in enumerate(tasks):
            if position > 0 and (self._stop_requested or self._overloaded()):
                summary.released += self._release_remaining(tasks[position:])
                break
            self._process_task(task, summary)
            self._throttle_if_needed()
        return summary

    def run_task(self, task_id: str) -> WorkerRunSummary:
        """Claim and process one named task ahead of the priority order."""

        summary = WorkerRunSummary()
        if not self.repository.claim_task(task_id=task_id, worker_id=self.worker_id):
            logger.info("Task %s is not pending; nothing to run", task_id)
            summary.idle_polls = 1
            return summary
        task = self.repository.get_task(task_id=task_id)
        if task is None:
            summary.idle_polls = 1
            return summary
        self._process_task(task, summary)
        return summary

    def run_loop(
        self,
        *,
        max_passes: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Run passes until the queue stays idle or max_passes is reached.

        Args:
            max_passes: Stop after this many passes (None = unlimited).
            max_idle_polls: How many consecutive idle passes before exiting.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        passes = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_passes is not None and passes >= max_passes:
                    return aggregate

                summary = self.run_once()
                passes += 1
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def request_stop(self, *, signal_name: str = "manual") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name
        logger.info("Worker %s stopping after current task (%s)", self.worker_id, signal_name)

    def _process_task(self, task: GenerationTaskView, summary: WorkerRunSummary) -> None:
        summary.processed += 1
        handler = self.handlers.get(task.artifact_type)
        if handler is None:
            self._fail(
                task,
                error=f"No handler for artifact type {task.artifact_type!r}",
                failure_class=FailureClass.INPUT_INVALID,
                details={},
            )
            summary.failed += 1
            return

        try:
            result = handler(task)
        except Exception as error:  # noqa: BLE001
            engine_error = as_engine_error(error)
            if engine_error is not error:
                logger.exception("Unexpected error while processing task %s", task.task_id)
            classification = classify_engine_error(engine_error)
            self._fail(
                task,
                error=str(engine_error),
                failure_class=classification.failure_class,
                details={"error_kind": engine_error.kind.value, **classification.to_event_details()},
            )
            summary.failed += 1
            return

        if self.repository.complete_task(
            task_id=task.task_id,
            worker_id=self.worker_id,
            result=result,
        ):
            summary.succeeded += 1
            logger.info("Task %s (%s) completed", task.task_id, task.artifact_type)
        else:
            logger.warning("Task %s lost its claim before completion", task.task_id)

    def _fail(
        self,
        task: GenerationTaskView,
        *,
        error: str,
        failure_class: FailureClass,
        details: dict[str, object],
    ) -> None:
        logger.warning(
            "Task %s (%s) failed [%s]: %s",
            task.task_id,
            task.artifact_type,
            failure_class.value,
            error,
        )
        if not self.repository.fail_task(
            task_id=task.task_id,
            worker_id=self.worker_id,
            error=error,
            failure_class=failure_class,
            details=details,
        ):
            logger.warning("Task %s lost its claim before failure was recorded", task.task_id)

    def _release_remaining(self, tasks: list[GenerationTaskView]) -> int:
        released = 0
        reason = "stop_requested" if self._stop_requested else "system_load"
        for task in tasks:
            if self.repository.release_task(
                task_id=task.task_id,
                worker_id=self.worker_id,
                reason=reason,
            ):
                released += 1
        logger.info("Released %d claimed tasks back to pending (%s)", released, reason)
        return released

    def _overloaded(self) -> bool:
        load = self._load_sampler()
        if load > self.max_system_load:
            logger.warning(
                "System load %.2f exceeds ceiling %.2f, not claiming",
                load,
                self.max_system_load,
            )
            return True
        return False

    def _throttle_if_needed(self) -> None:
        self._window_tasks += 1
        if self._window_tasks < self.throttle_every or self._window_started_at is None:
            return

        elapsed = self._clock() - self._window_started_at
        required = self.min_task_interval_seconds * self._window_tasks
        self._window_tasks = 0
        if elapsed < required:
            pause = required - elapsed
            logger.info("Draining too fast, pausing %.2fs", pause)
            self._sleep_with_stop(pause)
        self._window_started_at = self._clock()

    def _recover_stale_tasks(self) -> int:
        if self.stale_task_seconds <= 0:
            return 0
        return self.repository.recover_stale_tasks(
            stale_after=timedelta(seconds=self.stale_task_seconds),
        )

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = self._clock() + seconds
        while not self._stop_requested:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return
            self._sleep(min(0.1, remaining))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
