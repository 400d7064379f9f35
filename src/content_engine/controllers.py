"""Controllers for content-engine CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from content_engine.cache.store import CacheStore, fingerprint
from content_engine.config import Settings
from content_engine.llm.usage import ApiUsageRecorder, render_usage_lines
from content_engine.orchestration.engine import ContentEngine, DirectoryContentSource, SourceDocument
from content_engine.queue.models import GenerationTaskStatus
from content_engine.queue.repository import TaskQueueRepository
from content_engine.queue.worker import QueueWorker


@dataclass(slots=True)
class GenerateCommand:
    """CLI input for one synchronous generation run."""

    db_path: Path | None
    text: str
    subject_id: str | None
    features: tuple[str, ...]
    categories: tuple[str, ...]


@dataclass(slots=True)
class GenerateResult:
    """Generation report to render in CLI."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for deferred generation."""

    db_path: Path | None
    subject_ids: tuple[str, ...]
    features: tuple[str, ...]
    priority: int


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    content_dir: Path
    categories: tuple[str, ...]
    once: bool
    max_passes: int | None
    max_idle_polls: int = 1
    task_id: str | None = None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class RequeueCommand:
    db_path: Path | None


@dataclass(slots=True)
class CacheLookupCommand:
    """CLI input for cache read and invalidation."""

    db_path: Path | None
    subject_id: str
    artifact_type: str | None


@dataclass(slots=True)
class CachePurgeCommand:
    db_path: Path | None


@dataclass(slots=True)
class StatsCommand:
    """CLI input for API usage and queue stats."""

    db_path: Path | None
    hours: int


class EngineCliController:
    """Coordinates generation, queue, cache and stats CLI operations."""

    def generate(self, command: GenerateCommand) -> GenerateResult:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_generation()
        subject_id = command.subject_id or fingerprint(command.text, "document")
        document = SourceDocument(
            subject_id=subject_id,
            text=command.text,
            categories=command.categories,
        )
        with _engine(settings) as engine:
            report = engine.generate(document, command.features or None)

        lines = [
            f"Subject: {report.subject_id}",
            f"Segments: {report.segment_count}",
            f"Cache hits: {','.join(report.cache_hits) or '-'}",
        ]
        for artifact_type, outcome in report.outcomes.items():
            if outcome.ok:
                lines.append(f"[{artifact_type}] {outcome.value}")
            else:
                error = outcome.error
                lines.append(f"[{artifact_type}] FAILED ({error.kind.value}): {error}")
        return GenerateResult(lines=lines, success=report.ok)

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        lines: list[str] = []
        with _engine(settings) as engine:
            for subject_id in command.subject_ids:
                task_ids = engine.enqueue(
                    subject_id,
                    command.features or None,
                    priority=command.priority,
                )
                lines.append(f"Queued {len(task_ids)} tasks for {subject_id}: {' '.join(task_ids)}")
        return lines

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_generation()
        source = DirectoryContentSource(command.content_dir, categories=command.categories)
        with _engine(settings) as engine:
            assert engine.queue is not None
            worker = QueueWorker.from_settings(
                settings.queue,
                repository=engine.queue,
                handlers=engine.task_handlers(source),
            )
            if command.task_id is not None:
                summary = worker.run_task(command.task_id)
            elif command.once:
                summary = worker.run_once()
            else:
                summary = worker.run_loop(
                    max_passes=command.max_passes,
                    max_idle_polls=command.max_idle_polls,
                )

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} released={summary.released} "
            f"requeued={summary.requeued} recovered={summary.recovered} "
            f"throttled={summary.throttled} idle_polls={summary.idle_polls}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} type={task.artifact_type} subject={task.subject_id} "
                f"status={task.status.value} priority={task.priority} "
                f"retries={task.retry_count}/{task.max_retries} "
                f"created_at={task.created_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.artifact_type}",
            f"Subject: {task.subject_id}",
            f"Status: {task.status.value}",
            f"Retries: {task.retry_count}/{task.max_retries}",
            f"Owner: {task.owner_lock or '-'}",
            f"Failure class: {task.failure_class.value if task.failure_class else '-'}",
            f"Error: {task.error or '-'}",
            f"Result: {task.result or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def requeue(self, command: RequeueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            requeued = repository.requeue_failed()
        return [f"Requeued failed tasks: {requeued}"]

    def cache_get(self, command: CacheLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        artifact_types = (
            (command.artifact_type,)
            if command.artifact_type
            else settings.generation.features
        )
        lines: list[str] = []
        with _cache(settings) as cache:
            for artifact_type in artifact_types:
                entry = cache.lookup(command.subject_id, artifact_type)
                if entry is None:
                    lines.append(f"[{artifact_type}] miss")
                else:
                    lines.append(
                        f"[{artifact_type}] {entry.content} "
                        f"(created_at={entry.created_at.isoformat()})",
                    )
        return lines

    def cache_invalidate(self, command: CacheLookupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _cache(settings) as cache:
            removed = cache.invalidate(command.subject_id, command.artifact_type)
        return [f"Invalidated cache entries: {removed}"]

    def cache_purge(self, command: CachePurgeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _cache(settings) as cache:
            removed = cache.purge_expired()
            remaining = cache.count()
        return [f"Purged expired cache entries: {removed}", f"Remaining entries: {remaining}"]

    def stats(self, command: StatsCommand) -> list[str]:
        """Show API usage for a time window plus current queue depth."""

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            queue_stats = repository.queue_stats()
            recorder = ApiUsageRecorder(settings.db_path)
            try:
                snapshot = recorder.snapshot(window=timedelta(hours=max(1, command.hours)))
            finally:
                recorder.close()

        return [
            *render_usage_lines(snapshot=snapshot, hours=command.hours),
            "Queue: "
            f"pending={queue_stats.pending} processing={queue_stats.processing} "
            f"completed={queue_stats.completed} failed={queue_stats.failed} "
            f"total={queue_stats.total}",
        ]


def _parse_status(value: str | None) -> GenerationTaskStatus | None:
    if value is None:
        return None
    return GenerationTaskStatus(value.strip().lower())


@contextmanager
def _engine(settings: Settings) -> Iterator[ContentEngine]:
    engine = ContentEngine.from_settings(settings)
    try:
        yield engine
    finally:
        engine.close()


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskQueueRepository]:
    repository = TaskQueueRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _cache(settings: Settings) -> Iterator[CacheStore]:
    cache = CacheStore(settings.db_path, cache_time=settings.cache.cache_time)
    cache.init_schema()
    try:
        yield cache
    finally:
        cache.close()
