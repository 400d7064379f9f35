"""CLI entrypoint for content-engine."""

import logging
from pathlib import Path
from typing import TextIO

import rich_click as click

from content_engine import __version__
from content_engine.config import SUPPORTED_FEATURES
from content_engine.controllers import (
    CacheLookupCommand,
    CachePurgeCommand,
    EngineCliController,
    EnqueueCommand,
    GenerateCommand,
    InspectTaskCommand,
    ListTasksCommand,
    RequeueCommand,
    StatsCommand,
    WorkerCommand,
)
from content_engine.errors import EngineError
from content_engine.queue.models import GenerationTaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = EngineCliController()

_FEATURE_CHOICE = click.Choice(list(SUPPORTED_FEATURES), case_sensitive=False)


@click.group()
@click.version_option(version=__version__, prog_name="content-engine")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def content_engine(log_level: str) -> None:
    """Generate summaries, tags, categories and SEO metadata with a remote LLM."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@content_engine.command("generate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--input",
    "input_file",
    type=click.File("r", encoding="utf-8"),
    default="-",
    show_default=True,
    help="Text file to process; '-' reads stdin.",
)
@click.option(
    "--subject-id",
    default=None,
    help="Cache key for the document. Defaults to a content fingerprint.",
)
@click.option(
    "--feature",
    "features",
    type=_FEATURE_CHOICE,
    multiple=True,
    help="Artifact type to generate. Can be repeated. Defaults to CONTENT_ENGINE_FEATURES.",
)
@click.option(
    "--category",
    "categories",
    multiple=True,
    help="Allowed category for classification. Can be repeated.",
)
def generate(
    db_path: Path | None,
    input_file: TextIO,
    subject_id: str | None,
    features: tuple[str, ...],
    categories: tuple[str, ...],
) -> None:
    """Generate artifacts for one document and print them."""

    result = _run(
        CONTROLLER.generate,
        GenerateCommand(
            db_path=db_path,
            text=input_file.read(),
            subject_id=subject_id,
            features=tuple(feature.lower() for feature in features),
            categories=categories,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Some artifacts could not be generated.")


@content_engine.group()
def queue() -> None:
    """Deferred generation queue and worker commands."""


@queue.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--subject-id",
    "subject_ids",
    multiple=True,
    required=True,
    help="Subject id to generate for. Can be repeated.",
)
@click.option(
    "--feature",
    "features",
    type=_FEATURE_CHOICE,
    multiple=True,
    help="Artifact type to queue. Can be repeated. Defaults to CONTENT_ENGINE_FEATURES.",
)
@click.option(
    "--priority",
    type=click.IntRange(min=0, max=1000),
    default=0,
    show_default=True,
    help="Higher number is claimed first.",
)
def queue_enqueue(
    db_path: Path | None,
    subject_ids: tuple[str, ...],
    features: tuple[str, ...],
    priority: int,
) -> None:
    """Queue one task per subject and artifact type."""

    _emit_lines(
        _run(
            CONTROLLER.enqueue,
            EnqueueCommand(
                db_path=db_path,
                subject_ids=subject_ids,
                features=tuple(feature.lower() for feature in features),
                priority=priority,
            ),
        ),
    )


@queue.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--content-dir",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    required=True,
    help="Directory holding <subject_id>.txt or <subject_id>.md files.",
)
@click.option(
    "--category",
    "categories",
    multiple=True,
    help="Allowed category for classification tasks. Can be repeated.",
)
@click.option("--once", is_flag=True, default=False, help="Run a single claim pass.")
@click.option(
    "--max-passes",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many passes.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Exit after this many consecutive empty passes.",
)
@click.option(
    "--task-id",
    default=None,
    help="Run only this pending task, ahead of the priority order.",
)
def queue_worker(  # noqa: PLR0913
    db_path: Path | None,
    content_dir: Path,
    categories: tuple[str, ...],
    once: bool,
    max_passes: int | None,
    max_idle_polls: int,
    task_id: str | None,
) -> None:
    """Drain the queue until it stays idle, or run one named task."""

    _emit_lines(
        _run(
            CONTROLLER.run_worker,
            WorkerCommand(
                db_path=db_path,
                content_dir=content_dir,
                categories=categories,
                once=once,
                max_passes=max_passes,
                max_idle_polls=max_idle_polls,
                task_id=task_id,
            ),
        ),
    )


@queue.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in GenerationTaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of tasks to print.",
)
def queue_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List queue tasks, newest first."""

    _emit_lines(
        CONTROLLER.list_tasks(ListTasksCommand(db_path=db_path, status=status, limit=limit)),
    )


@queue.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def queue_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its event history."""

    _emit_lines(CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


@queue.command("requeue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def queue_requeue(db_path: Path | None) -> None:
    """Move retryable failed tasks back to pending."""

    _emit_lines(CONTROLLER.requeue(RequeueCommand(db_path=db_path)))


@content_engine.group()
def cache() -> None:
    """Generated artifact cache commands."""


@cache.command("get")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "artifact_type",
    type=_FEATURE_CHOICE,
    default=None,
    help="Artifact type. Defaults to every configured feature.",
)
@click.argument("subject_id")
def cache_get(db_path: Path | None, artifact_type: str | None, subject_id: str) -> None:
    """Print cached artifacts for a subject."""

    _emit_lines(
        CONTROLLER.cache_get(
            CacheLookupCommand(
                db_path=db_path,
                subject_id=subject_id,
                artifact_type=artifact_type.lower() if artifact_type else None,
            ),
        ),
    )


@cache.command("invalidate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "artifact_type",
    type=_FEATURE_CHOICE,
    default=None,
    help="Artifact type. Defaults to all types.",
)
@click.argument("subject_id")
def cache_invalidate(db_path: Path | None, artifact_type: str | None, subject_id: str) -> None:
    """Drop cached artifacts for a subject."""

    _emit_lines(
        CONTROLLER.cache_invalidate(
            CacheLookupCommand(
                db_path=db_path,
                subject_id=subject_id,
                artifact_type=artifact_type.lower() if artifact_type else None,
            ),
        ),
    )


@cache.command("purge")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def cache_purge(db_path: Path | None) -> None:
    """Delete entries older than CONTENT_ENGINE_CACHE_TIME."""

    _emit_lines(CONTROLLER.cache_purge(CachePurgeCommand(db_path=db_path)))


@content_engine.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=24,
    show_default=True,
    help="Time window for API usage aggregation.",
)
def stats(db_path: Path | None, hours: int) -> None:
    """Show API usage and queue depth."""

    _emit_lines(CONTROLLER.stats(StatsCommand(db_path=db_path, hours=hours)))


def _run(handler, command):
    try:
        return handler(command)
    except (ValueError, EngineError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    content_engine()
