"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from content_engine.cache.store import CacheStore
from content_engine.queue.repository import TaskQueueRepository


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer CONTENT_ENGINE_* variables out of Settings.from_env()."""

    for name in list(os.environ):
        if name.startswith("CONTENT_ENGINE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "content-engine.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[TaskQueueRepository]:
    repository = TaskQueueRepository(db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def cache_store(db_path: Path) -> Iterator[CacheStore]:
    store = CacheStore(db_path, cache_time=3600)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
