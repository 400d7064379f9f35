"""API usage recording and aggregation for the stats command."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from sqlmodel import Session, col, select

from content_engine.storage.common import build_sqlite_engine, to_db_datetime, utc_now
from content_engine.storage.sqlmodel_models import AiStat


@dataclass(slots=True)
class ArtifactUsage:
    """Aggregated gateway calls for one artifact type."""

    artifact_type: str
    calls: int = 0
    succeeded: int = 0
    total_attempts: int = 0
    response_times_ms: list[int] = field(default_factory=list)

    @property
    def success_ratio(self) -> float | None:
        if self.calls == 0:
            return None
        return self.succeeded / self.calls

    @property
    def mean_attempts(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.total_attempts / self.calls


@dataclass(slots=True)
class UsageSnapshot:
    since: datetime
    by_artifact_type: dict[str, ArtifactUsage]

    @property
    def total_calls(self) -> int:
        return sum(usage.calls for usage in self.by_artifact_type.values())


class ApiUsageRecorder:
    """Persist one ``ai_stats`` row per gateway call."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def record(
        self,
        *,
        artifact_type: str,
        model: str,
        response_time_ms: int,
        attempts: int,
        succeeded: bool,
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                AiStat(
                    artifact_type=artifact_type,
                    model=model,
                    response_time_ms=response_time_ms,
                    attempts=attempts,
                    succeeded=succeeded,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def snapshot(self, *, window: timedelta) -> UsageSnapshot:
        since = utc_now() - window
        with Session(self.engine) as session:
            rows = session.exec(
                select(AiStat)
                .where(col(AiStat.created_at) >= to_db_datetime(since))
                .order_by(col(AiStat.created_at).asc()),
            ).all()

        grouped: dict[str, ArtifactUsage] = defaultdict(lambda: ArtifactUsage(artifact_type=""))
        for row in rows:
            usage = grouped[row.artifact_type]
            usage.artifact_type = row.artifact_type
            usage.calls += 1
            usage.succeeded += int(row.succeeded)
            usage.total_attempts += row.attempts
            usage.response_times_ms.append(row.response_time_ms)
        return UsageSnapshot(since=since, by_artifact_type=dict(sorted(grouped.items())))


def render_usage_lines(*, snapshot: UsageSnapshot, hours: int) -> list[str]:
    """Render operator-facing usage lines for CLI output."""

    lines = [f"API usage (window={hours}h)", f"Total calls: {snapshot.total_calls}"]
    if not snapshot.by_artifact_type:
        lines.append("Per artifact type: none")
        return lines
    lines.append("Per artifact type:")
    for artifact_type, usage in snapshot.by_artifact_type.items():
        times = [float(value) for value in usage.response_times_ms]
        lines.append(
            "  "
            f"type={artifact_type} calls={usage.calls} "
            f"success_rate={_fmt_ratio(usage.success_ratio)} "
            f"mean_attempts={usage.mean_attempts:.2f} "
            f"p50={_percentile(times, 0.5):.0f}ms "
            f"p90={_percentile(times, 0.9):.0f}ms",
        )
    return lines


def _fmt_ratio(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:.2%}"


def _percentile(values: list[float], percentile: float) -> float:
    if not values:
        return 0.0
    sorted_values = sorted(values)
    if len(sorted_values) == 1:
        return sorted_values[0]
    rank = (len(sorted_values) - 1) * percentile
    lower = int(rank)
    upper = min(lower + 1, len(sorted_values) - 1)
    weight = rank - lower
    return sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight
