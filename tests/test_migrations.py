from __future__ import annotations

import sqlite3
from pathlib import Path

import allure

from content_engine.storage.alembic_runner import current_revision, head_revision, upgrade_head

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Migrations"),
]


def _tables(db_path: Path) -> set[str]:
    with sqlite3.connect(db_path) as connection:
        rows = connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def test_upgrade_head_creates_engine_tables(db_path: Path) -> None:
    upgrade_head(db_path)

    assert {"ai_content", "ai_tasks", "ai_task_events", "ai_stats", "alembic_version"} <= _tables(
        db_path,
    )


def test_upgrade_head_is_idempotent_and_stamps_head(db_path: Path) -> None:
    assert current_revision(db_path) is None

    upgrade_head(db_path)
    upgrade_head(db_path)

    assert head_revision() is not None
    assert current_revision(db_path) == head_revision()


def test_upgrade_head_creates_parent_directory(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "engine.db"

    upgrade_head(db_path)

    assert db_path.exists()
