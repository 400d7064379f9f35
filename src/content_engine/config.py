"""Runtime configuration for the generation engine, cache, and task queue."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

SUPPORTED_PROVIDERS = ("deepseek", "openai", "custom")
SUPPORTED_FEATURES = ("summary", "tags", "category", "seo")
SUPPORTED_LANGUAGES = ("zh", "en", "ja", "ko", "fr", "de", "es", "ru", "auto")
SEGMENT_METHODS = ("semantic", "hybrid", "smart", "default")


@dataclass(slots=True)
class ProviderSettings:
    """Remote LLM endpoint and retry settings."""

    provider: str = "deepseek"
    model: str = "deepseek-chat"
    api_key: str = ""
    custom_api_url: str = ""
    temperature: float = 0.7
    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    max_retries: int = 3
    retry_base_seconds: float = 1.0


@dataclass(slots=True)
class GenerationSettings:
    """Artifact generation settings."""

    features: tuple[str, ...] = ("summary",)
    max_summary_length: int = 100
    max_tags: int = 5
    seo_length: int = 200
    language: str = "zh"
    default_category: str = ""
    prompt_overrides: dict[str, str] = field(default_factory=dict)
    refinement_max_attempts: int = 3


@dataclass(slots=True)
class SegmentationSettings:
    """Oversized content splitting settings."""

    max_length: int = 3000
    min_length: int = 50
    overlap: int = 0
    method: str = "semantic"


@dataclass(slots=True)
class CacheSettings:
    """Generated artifact cache settings.

    ``cache_time`` < 0 bypasses the cache, 0 never expires, > 0 is a TTL in seconds.
    """

    cache_time: int = 86_400


@dataclass(slots=True)
class QueueSettings:
    """Deferred task queue and worker settings."""

    batch_size: int = 5
    max_system_load: float = 4.0
    task_max_retries: int = 3
    task_stale_seconds: int = 1_800
    throttle_every: int = 5
    min_task_interval_seconds: float = 1.0
    poll_interval_seconds: float = 2.0
    worker_id: str = field(default_factory=lambda: _default_worker_id())


@dataclass(slots=True)
class ResourceSettings:
    """Per-run resource ceilings."""

    max_concurrency: int = 4
    memory_limit_chars: int = 2_000_000
    time_limit_seconds: float = 300.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".content_engine.db")
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    segmentation: SegmentationSettings = field(default_factory=SegmentationSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    resources: ResourceSettings = field(default_factory=ResourceSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("CONTENT_ENGINE_DB_PATH", ".content_engine.db")),
            provider=ProviderSettings(
                provider=os.getenv("CONTENT_ENGINE_PROVIDER", "deepseek").strip().lower(),
                model=os.getenv("CONTENT_ENGINE_MODEL", "deepseek-chat").strip(),
                api_key=os.getenv("CONTENT_ENGINE_API_KEY", "").strip(),
                custom_api_url=os.getenv("CONTENT_ENGINE_CUSTOM_API_URL", "").strip(),
                temperature=float(os.getenv("CONTENT_ENGINE_TEMPERATURE", "0.7")),
                request_timeout_seconds=float(
                    os.getenv("CONTENT_ENGINE_REQUEST_TIMEOUT_SECONDS", "30"),
                ),
                connect_timeout_seconds=float(
                    os.getenv("CONTENT_ENGINE_CONNECT_TIMEOUT_SECONDS", "10"),
                ),
                max_retries=int(os.getenv("CONTENT_ENGINE_MAX_RETRIES", "3")),
                retry_base_seconds=float(os.getenv("CONTENT_ENGINE_RETRY_BASE_SECONDS", "1.0")),
            ),
            generation=GenerationSettings(
                features=_csv_tuple(os.getenv("CONTENT_ENGINE_FEATURES", "summary")),
                max_summary_length=int(os.getenv("CONTENT_ENGINE_MAX_SUMMARY_LENGTH", "100")),
                max_tags=int(os.getenv("CONTENT_ENGINE_MAX_TAGS", "5")),
                seo_length=int(os.getenv("CONTENT_ENGINE_SEO_LENGTH", "200")),
                language=os.getenv("CONTENT_ENGINE_LANGUAGE", "zh").strip().lower(),
                default_category=os.getenv("CONTENT_ENGINE_DEFAULT_CATEGORY", "").strip(),
                prompt_overrides=_collect_prompt_overrides(),
                refinement_max_attempts=int(
                    os.getenv("CONTENT_ENGINE_REFINEMENT_MAX_ATTEMPTS", "3"),
                ),
            ),
            segmentation=SegmentationSettings(
                max_length=int(os.getenv("CONTENT_ENGINE_SEGMENT_MAX_LENGTH", "3000")),
                min_length=int(os.getenv("CONTENT_ENGINE_SEGMENT_MIN_LENGTH", "50")),
                overlap=int(os.getenv("CONTENT_ENGINE_SEGMENT_OVERLAP", "0")),
                method=os.getenv("CONTENT_ENGINE_SEGMENT_METHOD", "semantic").strip().lower(),
            ),
            cache=CacheSettings(
                cache_time=int(os.getenv("CONTENT_ENGINE_CACHE_TIME", "86400")),
            ),
            queue=QueueSettings(
                batch_size=int(os.getenv("CONTENT_ENGINE_BATCH_SIZE", "5")),
                max_system_load=float(os.getenv("CONTENT_ENGINE_MAX_SYSTEM_LOAD", "4.0")),
                task_max_retries=int(os.getenv("CONTENT_ENGINE_TASK_MAX_RETRIES", "3")),
                task_stale_seconds=int(os.getenv("CONTENT_ENGINE_TASK_STALE_SECONDS", "1800")),
                throttle_every=int(os.getenv("CONTENT_ENGINE_THROTTLE_EVERY", "5")),
                min_task_interval_seconds=float(
                    os.getenv("CONTENT_ENGINE_MIN_TASK_INTERVAL_SECONDS", "1.0"),
                ),
                poll_interval_seconds=float(
                    os.getenv("CONTENT_ENGINE_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                worker_id=os.getenv("CONTENT_ENGINE_WORKER_ID", "").strip()
                or _default_worker_id(),
            ),
            resources=ResourceSettings(
                max_concurrency=int(os.getenv("CONTENT_ENGINE_MAX_CONCURRENCY", "4")),
                memory_limit_chars=int(
                    os.getenv("CONTENT_ENGINE_MEMORY_LIMIT_CHARS", "2000000"),
                ),
                time_limit_seconds=float(os.getenv("CONTENT_ENGINE_TIME_LIMIT_SECONDS", "300")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if values are out of range."""

        provider = self.provider
        if provider.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported CONTENT_ENGINE_PROVIDER: {provider.provider!r}. "
                f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}.",
            )
        if provider.provider == "custom":
            _validate_api_url(provider.custom_api_url)
        elif provider.custom_api_url:
            _validate_api_url(provider.custom_api_url)
        if not provider.model:
            raise ValueError("CONTENT_ENGINE_MODEL must not be empty.")
        if provider.max_retries < 0:
            raise ValueError("CONTENT_ENGINE_MAX_RETRIES must be >= 0.")
        if provider.retry_base_seconds < 0:
            raise ValueError("CONTENT_ENGINE_RETRY_BASE_SECONDS must be >= 0.")

        generation = self.generation
        unknown = [name for name in generation.features if name not in SUPPORTED_FEATURES]
        if unknown:
            raise ValueError(f"Unsupported CONTENT_ENGINE_FEATURES entries: {', '.join(unknown)}")
        if not 1 <= generation.max_tags <= 10:  # noqa: PLR2004
            raise ValueError("CONTENT_ENGINE_MAX_TAGS must be between 1 and 10.")
        if generation.max_summary_length <= 0:
            raise ValueError("CONTENT_ENGINE_MAX_SUMMARY_LENGTH must be > 0.")
        if generation.seo_length <= 0:
            raise ValueError("CONTENT_ENGINE_SEO_LENGTH must be > 0.")
        if generation.language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported CONTENT_ENGINE_LANGUAGE: {generation.language!r}")
        if generation.refinement_max_attempts <= 0:
            raise ValueError("CONTENT_ENGINE_REFINEMENT_MAX_ATTEMPTS must be > 0.")

        segmentation = self.segmentation
        if segmentation.method not in SEGMENT_METHODS:
            raise ValueError(f"Unsupported CONTENT_ENGINE_SEGMENT_METHOD: {segmentation.method!r}")
        if segmentation.max_length <= 0:
            raise ValueError("CONTENT_ENGINE_SEGMENT_MAX_LENGTH must be > 0.")
        if not 0 <= segmentation.min_length <= segmentation.max_length:
            raise ValueError("CONTENT_ENGINE_SEGMENT_MIN_LENGTH must be within [0, max_length].")
        if not 0 <= segmentation.overlap < segmentation.max_length:
            raise ValueError("CONTENT_ENGINE_SEGMENT_OVERLAP must be within [0, max_length).")

        queue = self.queue
        if queue.batch_size <= 0:
            raise ValueError("CONTENT_ENGINE_BATCH_SIZE must be > 0.")
        if queue.max_system_load <= 0:
            raise ValueError("CONTENT_ENGINE_MAX_SYSTEM_LOAD must be > 0.")
        if queue.task_max_retries < 0:
            raise ValueError("CONTENT_ENGINE_TASK_MAX_RETRIES must be >= 0.")
        if queue.task_stale_seconds <= 0:
            raise ValueError("CONTENT_ENGINE_TASK_STALE_SECONDS must be > 0.")
        if queue.throttle_every <= 0:
            raise ValueError("CONTENT_ENGINE_THROTTLE_EVERY must be > 0.")

        resources = self.resources
        if resources.max_concurrency <= 0:
            raise ValueError("CONTENT_ENGINE_MAX_CONCURRENCY must be > 0.")
        if resources.memory_limit_chars <= 0 or resources.time_limit_seconds <= 0:
            raise ValueError("Resource limits must be > 0.")

    def validate_for_generation(self) -> None:
        """Raise configuration error if the remote API cannot be called."""

        self.validate()
        if not self.provider.api_key:
            raise ValueError("API key is not configured. Set CONTENT_ENGINE_API_KEY.")


def _collect_prompt_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for artifact_type in SUPPORTED_FEATURES:
        value = os.getenv(f"CONTENT_ENGINE_{artifact_type.upper()}_PROMPT", "").strip()
        if value:
            overrides[artifact_type] = value
    return overrides


def _csv_tuple(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    for part in raw.split(","):
        token = part.strip().lower()
        if token and token not in values:
            values.append(token)
    return tuple(values)


def _validate_api_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid CONTENT_ENGINE_CUSTOM_API_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"
