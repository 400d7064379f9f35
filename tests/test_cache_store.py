from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from content_engine.cache.store import CacheStore, fingerprint

pytestmark = [
    allure.epic("Content Generation"),
    allure.feature("Artifact Cache"),
]


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _store(db_path: Path, *, cache_time: int, clock: _Clock | None = None) -> CacheStore:
    store = CacheStore(db_path, cache_time=cache_time, now=clock or _Clock())
    store.init_schema()
    return store


def test_put_then_get_returns_content(cache_store: CacheStore) -> None:
    cache_store.put("post-1", "summary", "A summary.")

    assert cache_store.get("post-1", "summary") == "A summary."
    assert cache_store.get("post-1", "tags") is None
    assert cache_store.get("post-2", "summary") is None


def test_put_replaces_existing_entry(cache_store: CacheStore) -> None:
    cache_store.put("post-1", "summary", "First.")
    cache_store.put("post-1", "summary", "Second.")

    assert cache_store.get("post-1", "summary") == "Second."
    assert cache_store.count() == 1


def test_entries_expire_after_cache_time(db_path: Path) -> None:
    clock = _Clock()
    store = _store(db_path, cache_time=60, clock=clock)
    try:
        store.put("post-1", "summary", "Fresh.")
        clock.advance(59)
        assert store.get("post-1", "summary") == "Fresh."

        clock.advance(2)
        assert store.get("post-1", "summary") is None
        assert store.count() == 1
    finally:
        store.close()


def test_zero_cache_time_never_expires(db_path: Path) -> None:
    clock = _Clock()
    store = _store(db_path, cache_time=0, clock=clock)
    try:
        store.put("post-1", "tags", "a,b")
        clock.advance(10 * 365 * 86_400)

        assert store.get("post-1", "tags") == "a,b"
        assert store.purge_expired() == 0
    finally:
        store.close()


def test_negative_cache_time_bypasses_reads_and_writes(db_path: Path) -> None:
    warm = _store(db_path, cache_time=0)
    warm.put("post-1", "summary", "Cached before bypass.")
    warm.close()

    store = _store(db_path, cache_time=-1)
    try:
        assert not store.enabled
        assert store.get("post-1", "summary") is None
        store.put("post-1", "summary", "Ignored.")
        assert store.count() == 1
    finally:
        store.close()


@pytest.mark.asyncio
async def test_aget_or_generate_only_calls_generator_on_miss(cache_store: CacheStore) -> None:
    calls: list[str] = []

    async def generator() -> str:
        calls.append("called")
        return "Generated."

    assert await cache_store.aget_or_generate("post-1", "summary", generator) == "Generated."
    assert await cache_store.aget_or_generate("post-1", "summary", generator) == "Generated."
    assert calls == ["called"]
    assert cache_store.get("post-1", "summary") == "Generated."


@pytest.mark.asyncio
async def test_empty_generation_is_not_cached(cache_store: CacheStore) -> None:
    async def generator() -> str:
        return ""

    assert await cache_store.aget_or_generate("post-1", "summary", generator) == ""
    assert cache_store.count() == 0


def test_invalidate_by_type_and_by_subject(cache_store: CacheStore) -> None:
    cache_store.put("post-1", "summary", "S.")
    cache_store.put("post-1", "tags", "a,b")
    cache_store.put("post-2", "summary", "Other.")

    assert cache_store.invalidate("post-1", "summary") == 1
    assert cache_store.get("post-1", "tags") == "a,b"
    assert cache_store.invalidate("post-1") == 1
    assert cache_store.get("post-2", "summary") == "Other."


def test_purge_expired_removes_only_stale_entries(db_path: Path) -> None:
    clock = _Clock()
    store = _store(db_path, cache_time=60, clock=clock)
    try:
        store.put("old", "summary", "Old.")
        clock.advance(120)
        store.put("new", "summary", "New.")

        assert store.purge_expired() == 1
        assert store.count() == 1
        assert store.get("new", "summary") == "New."
    finally:
        store.close()


def test_lookup_reports_creation_time(db_path: Path) -> None:
    clock = _Clock()
    store = _store(db_path, cache_time=0, clock=clock)
    try:
        store.put("post-1", "seo", '{"description": "d", "keywords": []}')
        entry = store.lookup("post-1", "seo")
    finally:
        store.close()

    assert entry is not None
    assert entry.created_at == clock.now


def test_fingerprint_depends_on_content_and_type() -> None:
    assert fingerprint("text", "summary") == fingerprint("text", "summary")
    assert fingerprint("text", "summary") != fingerprint("text", "tags")
    assert len(fingerprint("text", "summary")) == 32
