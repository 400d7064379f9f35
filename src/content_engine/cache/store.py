"""SQLite-backed cache of generated artifacts keyed by (subject, artifact type)."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from sqlalchemy import func
from sqlmodel import Session, col, delete, select

from content_engine.storage.alembic_runner import upgrade_head
from content_engine.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from content_engine.storage.sqlmodel_models import AiContent

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CacheEntryView:
    subject_id: str
    artifact_type: str
    content: str
    created_at: datetime


def fingerprint(content: str, artifact_type: str) -> str:
    """Stable subject id for content that has no id of its own."""

    return hashlib.md5(f"{content}{artifact_type}".encode(), usedforsecurity=False).hexdigest()


class CacheStore:
    """Generated artifact cache.

    ``cache_time`` selects the regime: negative bypasses the cache entirely,
    zero keeps entries forever, positive is a TTL in seconds.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        cache_time: int,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.cache_time = cache_time
        self._now = now
        self.engine = build_sqlite_engine(db_path=db_path)

    @property
    def enabled(self) -> bool:
        return self.cache_time >= 0

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def lookup(self, subject_id: str, artifact_type: str) -> CacheEntryView | None:
        if not self.enabled:
            return None
        with Session(self.engine) as session:
            statement = select(AiContent).where(
                AiContent.subject_id == subject_id,
                AiContent.artifact_type == artifact_type,
            )
            cutoff = self._cutoff()
            if cutoff is not None:
                statement = statement.where(col(AiContent.created_at) > cutoff)
            row = session.exec(statement).first()
            if row is None:
                return None
            return CacheEntryView(
                subject_id=row.subject_id,
                artifact_type=row.artifact_type,
                content=row.content,
                created_at=to_utc_aware_datetime(row.created_at),
            )

    def get(self, subject_id: str, artifact_type: str) -> str | None:
        entry = self.lookup(subject_id, artifact_type)
        return entry.content if entry is not None else None

    def put(self, subject_id: str, artifact_type: str, content: str) -> None:
        """Replace the entry for the key; a no-op when the cache is bypassed."""

        if not self.enabled:
            return
        with Session(self.engine) as session:
            session.exec(
                delete(AiContent).where(
                    col(AiContent.subject_id) == subject_id,
                    col(AiContent.artifact_type) == artifact_type,
                ),
            )
            session.add(
                AiContent(
                    subject_id=subject_id,
                    artifact_type=artifact_type,
                    content=content,
                    created_at=to_db_datetime(self._now()),
                ),
            )
            session.commit()

    def invalidate(self, subject_id: str, artifact_type: str | None = None) -> int:
        with Session(self.engine) as session:
            statement = delete(AiContent).where(col(AiContent.subject_id) == subject_id)
            if artifact_type is not None:
                statement = statement.where(col(AiContent.artifact_type) == artifact_type)
            result = session.exec(statement)
            session.commit()
            return int(result.rowcount or 0)

    async def aget_or_generate(
        self,
        subject_id: str,
        artifact_type: str,
        generator: Callable[[], Awaitable[str]],
    ) -> str:
        """Return the cached artifact, or await ``generator`` and store a non-empty result.

        Only ``generator`` suspends. The lookup and the write are blocking
        single-row SQLite statements run on the event loop thread, so other
        coroutines wait for them but never for a network call.
        """

        cached = self.get(subject_id, artifact_type)
        if cached is not None:
            logger.debug("Cache hit for %s/%s", subject_id, artifact_type)
            return cached
        content = await generator()
        if content:
            self.put(subject_id, artifact_type, content)
        return content

    def purge_expired(self) -> int:
        """Delete entries older than the TTL and return how many were removed."""

        cutoff = self._cutoff()
        if cutoff is None:
            return 0
        with Session(self.engine) as session:
            result = session.exec(
                delete(AiContent).where(col(AiContent.created_at) <= cutoff),
            )
            session.commit()
            removed = int(result.rowcount or 0)
        if removed:
            logger.info("Purged %d expired cache entries", removed)
        return removed

    def count(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(AiContent)).one())

    def _cutoff(self) -> datetime | None:
        if self.cache_time <= 0:
            return None
        return to_db_datetime(self._now() - timedelta(seconds=self.cache_time))
