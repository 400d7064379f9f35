"""Engine facade: segment, check cache, generate concurrently, refine, store."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Protocol

from content_engine.cache.store import CacheStore
from content_engine.config import SUPPORTED_FEATURES, Settings
from content_engine.errors import EngineError, GenerationError, Outcome, ValidationError
from content_engine.llm.gateway import APIGateway, ModelConfig
from content_engine.llm.prompts import PromptContext, build_system_prompt, build_user_prompt
from content_engine.llm.usage import ApiUsageRecorder
from content_engine.orchestration.executor import ConcurrentExecutor
from content_engine.orchestration.governor import MEMORY, TIME, ResourceGovernor
from content_engine.orchestration.refinement import QualityRefinementLoop
from content_engine.quality.postprocess import PostprocessOptions, merge_segment_results
from content_engine.quality.scoring import QualityScorer
from content_engine.queue.models import GenerationTaskView
from content_engine.queue.repository import TaskQueueRepository
from content_engine.text.language import resolve_language
from content_engine.text.segmenter import Segment, SegmentationStrategy, segment

logger = logging.getLogger(__name__)

# Artifact types generated per segment and merged; the rest use the first segment.
PER_SEGMENT_TYPES = frozenset({"summary", "tags"})


@dataclass(slots=True, frozen=True)
class SourceDocument:
    subject_id: str
    text: str
    categories: tuple[str, ...] = ()


@dataclass(slots=True)
class GenerationReport:
    """Per-artifact outcomes for one document."""

    subject_id: str
    outcomes: dict[str, Outcome[str]] = field(default_factory=dict)
    segment_count: int = 0
    cache_hits: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes.values())

    @property
    def failures(self) -> dict[str, EngineError]:
        return {
            artifact_type: outcome.error
            for artifact_type, outcome in self.outcomes.items()
            if outcome.error is not None
        }


class ContentSource(Protocol):
    def load(self, subject_id: str) -> SourceDocument | None: ...


class DirectoryContentSource:
    """Resolve subject ids to ``<root>/<subject_id>.txt`` or ``.md`` files."""

    def __init__(self, root: Path, *, categories: tuple[str, ...] = ()) -> None:
        self.root = root
        self.categories = categories

    def load(self, subject_id: str) -> SourceDocument | None:
        if not subject_id or "/" in subject_id or "\\" in subject_id or subject_id.startswith("."):
            raise ValidationError(f"Invalid subject id: {subject_id!r}")
        for suffix in (".txt", ".md"):
            path = self.root / f"{subject_id}{suffix}"
            if path.is_file():
                return SourceDocument(
                    subject_id=subject_id,
                    text=path.read_text(encoding="utf-8"),
                    categories=self.categories,
                )
        return None


class ContentEngine:
    """Turn documents into cached summary, tags, category and SEO artifacts."""

    def __init__(
        self,
        settings: Settings,
        *,
        gateway: APIGateway,
        cache: CacheStore,
        queue: TaskQueueRepository | None = None,
        usage: ApiUsageRecorder | None = None,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.cache = cache
        self.queue = queue
        self.usage = usage

    @classmethod
    def from_settings(cls, settings: Settings) -> ContentEngine:
        """Build an engine whose cache, queue and usage stats share one SQLite file."""

        settings.validate()
        cache = CacheStore(settings.db_path, cache_time=settings.cache.cache_time)
        cache.init_schema()
        usage = ApiUsageRecorder(settings.db_path)
        return cls(
            settings,
            gateway=APIGateway.from_settings(settings.provider, usage_recorder=usage),
            cache=cache,
            queue=TaskQueueRepository(settings.db_path),
            usage=usage,
        )

    def close(self) -> None:
        self.cache.close()
        if self.queue is not None:
            self.queue.close()
        if self.usage is not None:
            self.usage.close()

    def new_governor(self) -> ResourceGovernor:
        return ResourceGovernor.from_settings(self.settings.resources)

    def generate(
        self,
        document: SourceDocument,
        features: Iterable[str] | None = None,
        *,
        governor: ResourceGovernor | None = None,
    ) -> GenerationReport:
        return asyncio.run(self.agenerate(document, features, governor=governor))

    async def agenerate(
        self,
        document: SourceDocument,
        features: Iterable[str] | None = None,
        *,
        governor: ResourceGovernor | None = None,
    ) -> GenerationReport:
        """Produce every requested artifact; each failure stays in its own outcome."""

        artifact_types = self._resolve_features(features)
        if not document.text.strip():
            raise ValidationError(f"Document {document.subject_id!r} has no content")
        governor = governor or self.new_governor()
        report = GenerationReport(subject_id=document.subject_id)

        async with governor.reserve(MEMORY, len(document.text)):
            segments = segment(document.text, self._strategy())
            report.segment_count = len(segments)

            generated: set[str] = set()
            factories: list[Callable[[], Awaitable[str]]] = [
                partial(
                    self._cached_artifact,
                    document,
                    artifact_type,
                    segments,
                    governor,
                    generated,
                )
                for artifact_type in artifact_types
            ]
            if len(factories) == 1:
                outcomes = [await _outcome_of(factories[0])]
            else:
                executor = ConcurrentExecutor(
                    max_in_flight=self.settings.resources.max_concurrency,
                    governor=governor,
                )
                outcomes = await executor.run(factories)

        report.outcomes = dict(zip(artifact_types, outcomes, strict=True))
        report.cache_hits = [
            artifact_type
            for artifact_type, outcome in report.outcomes.items()
            if outcome.ok and artifact_type not in generated
        ]
        logger.info(
            "Generated %s for %s: segments=%d cache_hits=%d failures=%d",
            ",".join(artifact_types),
            document.subject_id,
            report.segment_count,
            len(report.cache_hits),
            len(report.failures),
        )
        return report

    def enqueue(
        self,
        subject_id: str,
        features: Iterable[str] | None = None,
        *,
        priority: int = 0,
    ) -> list[str]:
        """Record deferred generation work; returns one task id per artifact type."""

        if self.queue is None:
            raise ValidationError("Task queue is not configured")
        return [
            self.queue.queue_task(
                artifact_type,
                subject_id,
                priority=priority,
                max_retries=self.settings.queue.task_max_retries,
            )
            for artifact_type in self._resolve_features(features)
        ]

    def process_task(self, task: GenerationTaskView, content_source: ContentSource) -> str:
        """Generate the artifact of one claimed queue task."""

        document = content_source.load(task.subject_id)
        if document is None:
            raise ValidationError(f"Content not found for subject {task.subject_id!r}")
        report = self.generate(document, [task.artifact_type])
        return report.outcomes[task.artifact_type].unwrap()

    def task_handlers(self, content_source: ContentSource) -> dict[str, Callable[..., str]]:
        return {
            artifact_type: partial(self.process_task, content_source=content_source)
            for artifact_type in SUPPORTED_FEATURES
        }

    async def _cached_artifact(
        self,
        document: SourceDocument,
        artifact_type: str,
        segments: list[Segment],
        governor: ResourceGovernor,
        generated: set[str],
    ) -> str:
        """Serve one artifact from the cache, generating and storing it on a miss.

        The cache lookup and write run inline on the event loop. Each is one
        single-row statement against the local SQLite file, so sibling
        artifacts stall only for that statement and every step stays on the
        caller's thread.
        """

        async def produce() -> str:
            generated.add(artifact_type)
            return await self._generate_artifact(document, artifact_type, segments, governor)

        return await self.cache.aget_or_generate(document.subject_id, artifact_type, produce)

    async def _generate_artifact(
        self,
        document: SourceDocument,
        artifact_type: str,
        segments: list[Segment],
        governor: ResourceGovernor,
    ) -> str:
        generation = self.settings.generation
        options = PostprocessOptions(
            max_length=generation.max_summary_length,
            max_tags=generation.max_tags,
            seo_length=generation.seo_length,
            categories=document.categories,
            default_category=generation.default_category,
        )
        context = PromptContext(
            language=resolve_language(generation.language, document.text),
            max_length=generation.max_summary_length,
            max_tags=generation.max_tags,
            categories=document.categories,
            seo_length=generation.seo_length,
        )
        system_prompt = build_system_prompt(artifact_type, context, generation.prompt_overrides)
        model_config = ModelConfig.from_settings(
            self.settings.provider,
            max_tokens=2 * (
                generation.seo_length if artifact_type == "seo" else generation.max_summary_length
            ),
        )
        scorer = QualityScorer(options)

        async def send(prompt: str) -> str:
            # Refuse once the budget is spent; a reply already paid for is kept.
            governor.ensure_available(TIME)
            started = time.monotonic()
            try:
                return await self.gateway.generate(
                    prompt,
                    system_prompt,
                    model_config,
                    artifact_type=artifact_type,
                )
            finally:
                governor.charge(TIME, time.monotonic() - started)

        targets = segments if artifact_type in PER_SEGMENT_TYPES else segments[:1]
        results: list[str] = []
        for target in targets:
            loop = QualityRefinementLoop(
                generate=send,
                evaluate=partial(scorer.evaluate, artifact_type, source=target.text),
                max_attempts=generation.refinement_max_attempts,
            )
            refined = await loop.refine(
                build_user_prompt(artifact_type, target.text, context),
                artifact_type,
            )
            logger.debug(
                "Segment %d %s scored %.3f after %d attempts",
                target.index,
                artifact_type,
                refined.score,
                refined.attempts,
            )
            results.append(refined.content)

        merged = merge_segment_results(artifact_type, results, options)
        if not merged:
            raise GenerationError(message=f"No usable {artifact_type} output", attempts=len(results))
        return merged

    def _resolve_features(self, features: Iterable[str] | None) -> list[str]:
        requested = list(features) if features is not None else list(self.settings.generation.features)
        resolved: list[str] = []
        for name in requested:
            artifact_type = name.strip().lower()
            if artifact_type not in SUPPORTED_FEATURES:
                raise ValidationError(f"Unsupported artifact type: {name!r}")
            if artifact_type not in resolved:
                resolved.append(artifact_type)
        if not resolved:
            raise ValidationError("No artifact types requested")
        return resolved

    def _strategy(self) -> SegmentationStrategy:
        segmentation = self.settings.segmentation
        return SegmentationStrategy(
            max_length=segmentation.max_length,
            min_length=segmentation.min_length,
            overlap=segmentation.overlap,
            method=segmentation.method,
        )


async def _outcome_of(factory: Callable[[], Awaitable[str]]) -> Outcome[str]:
    try:
        return Outcome.success(await factory())
    except Exception as error:  # noqa: BLE001
        return Outcome.failure(error)
