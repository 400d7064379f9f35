"""Bounded generate-score-adjust loop that keeps the best attempt."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from content_engine.errors import ApiError, GenerationError, ResourceExceeded
from content_engine.llm.prompts import REFINEMENT_INSTRUCTION, STRONGER_CONSTRAINT_INSTRUCTION
from content_engine.quality.scoring import ScoredArtifact

logger = logging.getLogger(__name__)

ACCEPT_SCORE = 0.8
STRONGER_CONSTRAINT_BELOW = 0.3
REFINE_BELOW = 0.6

GenerateFn = Callable[[str], Awaitable[str]]
EvaluateFn = Callable[[str], ScoredArtifact]


@dataclass(slots=True, frozen=True)
class RefinementResult:
    """Best artifact observed across attempts."""

    content: str
    score: float
    attempts: int


def adjust_prompt(initial_prompt: str, score: float) -> str:
    if score < STRONGER_CONSTRAINT_BELOW:
        return initial_prompt + STRONGER_CONSTRAINT_INSTRUCTION
    if score < REFINE_BELOW:
        return initial_prompt + REFINEMENT_INSTRUCTION
    return initial_prompt


class QualityRefinementLoop:
    """Resubmit low-scoring replies with adjusted prompts.

    ``generate`` sends one prompt and returns the raw reply; ``evaluate``
    post-processes and scores a raw reply. A failed ``generate`` call still
    consumes an attempt. When ``generate`` refuses with ``ResourceExceeded``
    the loop stops and keeps its best reply so far.
    """

    def __init__(
        self,
        *,
        generate: GenerateFn,
        evaluate: EvaluateFn,
        max_attempts: int = 3,
        accept_score: float = ACCEPT_SCORE,
    ) -> None:
        self._generate = generate
        self._evaluate = evaluate
        self.max_attempts = max_attempts
        self.accept_score = accept_score

    async def refine(
        self,
        initial_prompt: str,
        artifact_type: str,
        max_attempts: int | None = None,
    ) -> RefinementResult:
        budget = max_attempts if max_attempts is not None else self.max_attempts
        if budget <= 0:
            raise ValueError(f"max_attempts must be > 0, got {budget}")

        best: ScoredArtifact | None = None
        prompt = initial_prompt
        attempts = 0
        last_error: ApiError | None = None

        while attempts < budget:
            attempts += 1
            try:
                raw = await self._generate(prompt)
            except ResourceExceeded:
                if best is None:
                    raise
                attempts -= 1
                logger.warning(
                    "Stopping %s refinement after %d attempts: budget exhausted",
                    artifact_type,
                    attempts,
                )
                break
            except ApiError as error:
                last_error = error
                logger.warning(
                    "Generation attempt %d/%d for %s failed: %s",
                    attempts,
                    budget,
                    artifact_type,
                    error,
                )
                continue

            scored = self._evaluate(raw)
            logger.debug(
                "Attempt %d/%d for %s scored %.3f",
                attempts,
                budget,
                artifact_type,
                scored.score,
            )
            if scored.content and (best is None or scored.score > best.score):
                best = scored
            if scored.content and scored.score >= self.accept_score:
                break
            prompt = adjust_prompt(initial_prompt, scored.score)

        if best is None:
            raise GenerationError(
                message=f"No usable {artifact_type} output after {attempts} attempts",
                cause=last_error,
                attempts=attempts,
            )
        return RefinementResult(
            content=best.content,
            score=best.score,
            attempts=attempts,
        )
