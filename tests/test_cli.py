from __future__ import annotations

from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from content_engine.cache.store import CacheStore
from content_engine.main import content_engine

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Operator Commands"),
]


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, db_path: Path, *args: str):
    return runner.invoke(content_engine, [*args, "--db-path", str(db_path)])


def test_generate_requires_api_key(runner: CliRunner, db_path: Path) -> None:
    result = runner.invoke(
        content_engine,
        ["generate", "--db-path", str(db_path)],
        input="Solar panels turn sunlight into electricity.",
    )

    assert result.exit_code != 0
    assert "API key is not configured" in result.output


def test_enqueue_list_and_inspect(runner: CliRunner, db_path: Path) -> None:
    enqueued = _invoke(
        runner,
        db_path,
        "queue",
        "enqueue",
        "--subject-id",
        "post-1",
        "--feature",
        "summary",
        "--feature",
        "tags",
        "--priority",
        "7",
    )
    assert enqueued.exit_code == 0, enqueued.output
    line = enqueued.output.strip()
    assert line.startswith("Queued 2 tasks for post-1: ")
    task_id = line.rsplit(": ", 1)[1].split()[0]

    listed = _invoke(runner, db_path, "queue", "list", "--status", "pending")
    assert listed.exit_code == 0, listed.output
    assert listed.output.splitlines()[0] == "Tasks: 2"
    assert "priority=7" in listed.output

    inspected = _invoke(runner, db_path, "queue", "inspect", task_id)
    assert inspected.exit_code == 0, inspected.output
    assert f"Task: {task_id}" in inspected.output
    assert "Status: pending" in inspected.output
    assert "Events: 1" in inspected.output


def test_inspect_unknown_task(runner: CliRunner, db_path: Path) -> None:
    result = _invoke(runner, db_path, "queue", "inspect", "missing")

    assert result.exit_code == 0
    assert result.output.strip() == "Task not found: missing"


def test_requeue_reports_count(runner: CliRunner, db_path: Path) -> None:
    result = _invoke(runner, db_path, "queue", "requeue")

    assert result.exit_code == 0
    assert result.output.strip() == "Requeued failed tasks: 0"


def test_worker_once_with_empty_queue(
    runner: CliRunner,
    db_path: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CONTENT_ENGINE_API_KEY", "sk-test")

    result = _invoke(
        runner,
        db_path,
        "queue",
        "worker",
        "--content-dir",
        str(tmp_path),
        "--once",
    )

    assert result.exit_code == 0, result.output
    assert "Worker summary: processed=0 succeeded=0 failed=0" in result.output


def test_worker_task_id_with_unknown_task_is_idle(
    runner: CliRunner,
    db_path: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CONTENT_ENGINE_API_KEY", "sk-test")

    result = _invoke(
        runner,
        db_path,
        "queue",
        "worker",
        "--content-dir",
        str(tmp_path),
        "--task-id",
        "no-such-task",
    )

    assert result.exit_code == 0, result.output
    assert "processed=0" in result.output
    assert "idle_polls=1" in result.output


def test_cache_get_invalidate_and_purge(runner: CliRunner, db_path: Path) -> None:
    store = CacheStore(db_path, cache_time=3600)
    store.init_schema()
    try:
        store.put("post-1", "summary", "Cached summary.")
        store.put("post-1", "tags", "solar,energy")
    finally:
        store.close()

    hit = _invoke(runner, db_path, "cache", "get", "post-1")
    assert hit.exit_code == 0, hit.output
    assert hit.output.startswith("[summary] Cached summary. (created_at=")

    miss = _invoke(runner, db_path, "cache", "get", "post-2", "--type", "tags")
    assert miss.output.strip() == "[tags] miss"

    invalidated = _invoke(runner, db_path, "cache", "invalidate", "post-1", "--type", "summary")
    assert invalidated.output.strip() == "Invalidated cache entries: 1"

    purged = _invoke(runner, db_path, "cache", "purge")
    assert purged.output.splitlines() == [
        "Purged expired cache entries: 0",
        "Remaining entries: 1",
    ]


def test_stats_on_fresh_database(runner: CliRunner, db_path: Path) -> None:
    result = _invoke(runner, db_path, "stats", "--hours", "6")

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [
        "API usage (window=6h)",
        "Total calls: 0",
        "Per artifact type: none",
        "Queue: pending=0 processing=0 completed=0 failed=0 total=0",
    ]
