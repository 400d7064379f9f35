from __future__ import annotations

import allure
import pytest

from content_engine.errors import ApiError, EngineError, GenerationError, ResourceExceeded
from content_engine.llm.prompts import REFINEMENT_INSTRUCTION, STRONGER_CONSTRAINT_INSTRUCTION
from content_engine.orchestration.refinement import QualityRefinementLoop, adjust_prompt
from content_engine.quality.scoring import ScoredArtifact

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Quality Refinement"),
]


class _ScriptedModel:
    """Replies with queued outputs; EngineError instances are raised."""

    def __init__(self, replies: list[str | EngineError]) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, EngineError):
            raise reply
        return reply


def _score_by_table(scores: dict[str, float]):
    def evaluate(raw: str) -> ScoredArtifact:
        return ScoredArtifact(content=raw.strip(), score=scores.get(raw, 0.0))

    return evaluate


@pytest.mark.asyncio
async def test_high_first_score_exits_after_one_call() -> None:
    model = _ScriptedModel(["great", "unused"])
    loop = QualityRefinementLoop(generate=model, evaluate=_score_by_table({"great": 0.9}))

    result = await loop.refine("prompt", "summary", 3)

    assert result.content == "great"
    assert result.score == 0.9
    assert result.attempts == 1
    assert model.prompts == ["prompt"]


@pytest.mark.asyncio
async def test_low_scores_use_full_budget_and_keep_best() -> None:
    model = _ScriptedModel(["weak", "better", "worse"])
    loop = QualityRefinementLoop(
        generate=model,
        evaluate=_score_by_table({"weak": 0.2, "better": 0.5, "worse": 0.4}),
    )

    result = await loop.refine("prompt", "tags", 3)

    assert result.content == "better"
    assert result.score == 0.5
    assert result.attempts == 3
    assert model.prompts == [
        "prompt",
        "prompt" + STRONGER_CONSTRAINT_INSTRUCTION,
        "prompt" + REFINEMENT_INSTRUCTION,
    ]


@pytest.mark.asyncio
async def test_api_errors_consume_attempts() -> None:
    model = _ScriptedModel([ApiError(message="HTTP 503"), "fine"])
    loop = QualityRefinementLoop(generate=model, evaluate=_score_by_table({"fine": 0.85}))

    result = await loop.refine("prompt", "summary", 3)

    assert result.content == "fine"
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_no_usable_attempt_raises_generation_error() -> None:
    failure = ApiError(message="HTTP 500")
    model = _ScriptedModel([failure, "   ", failure])
    loop = QualityRefinementLoop(generate=model, evaluate=_score_by_table({}), max_attempts=3)

    with pytest.raises(GenerationError) as excinfo:
        await loop.refine("prompt", "seo")

    assert excinfo.value.attempts == 3
    assert excinfo.value.cause is failure
    assert len(model.prompts) == 3


@pytest.mark.asyncio
async def test_zero_attempt_budget_is_rejected() -> None:
    loop = QualityRefinementLoop(generate=_ScriptedModel([]), evaluate=_score_by_table({}))

    with pytest.raises(ValueError):
        await loop.refine("prompt", "summary", 0)


@pytest.mark.asyncio
async def test_exhausted_budget_stops_and_keeps_best_reply() -> None:
    budget = ResourceExceeded(message="System busy: time budget exceeded", resource="time")
    model = _ScriptedModel(["weak", budget, "unused"])
    loop = QualityRefinementLoop(generate=model, evaluate=_score_by_table({"weak": 0.4}))

    result = await loop.refine("prompt", "summary", 3)

    assert result.content == "weak"
    assert result.attempts == 1
    assert len(model.prompts) == 2


@pytest.mark.asyncio
async def test_exhausted_budget_before_any_reply_propagates() -> None:
    budget = ResourceExceeded(message="System busy: time budget exceeded", resource="time")
    loop = QualityRefinementLoop(generate=_ScriptedModel([budget]), evaluate=_score_by_table({}))

    with pytest.raises(ResourceExceeded):
        await loop.refine("prompt", "summary", 3)


@pytest.mark.parametrize(
    ("score", "suffix"),
    [
        (0.1, STRONGER_CONSTRAINT_INSTRUCTION),
        (0.45, REFINEMENT_INSTRUCTION),
        (0.7, ""),
    ],
)
def test_adjust_prompt_thresholds(score: float, suffix: str) -> None:
    assert adjust_prompt("base", score) == "base" + suffix
