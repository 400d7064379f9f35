"""Run independent generation coroutines concurrently on one event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from content_engine.errors import Outcome
from content_engine.orchestration.governor import CONCURRENCY, ResourceGovernor

logger = logging.getLogger(__name__)

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[T]]


class ConcurrentExecutor:
    """Schedule zero-argument task factories and collect index-aligned outcomes.

    Completions are consumed as they arrive through ``asyncio.wait``; each
    result lands in the slot of the task that produced it. A failing task only
    fills its own slot with a failed ``Outcome``.
    """

    def __init__(
        self,
        *,
        max_in_flight: int | None = None,
        governor: ResourceGovernor | None = None,
    ) -> None:
        if max_in_flight is not None and max_in_flight <= 0:
            raise ValueError(f"max_in_flight must be > 0, got {max_in_flight}")
        self.max_in_flight = max_in_flight
        self.governor = governor

    async def run(self, tasks: Sequence[TaskFactory[T]]) -> list[Outcome[T]]:
        results: list[Outcome[T] | None] = [None] * len(tasks)
        in_flight: dict[asyncio.Task[Outcome[T]], int] = {}
        queued = iter(enumerate(tasks))

        def launch() -> None:
            while self.max_in_flight is None or len(in_flight) < self.max_in_flight:
                item = next(queued, None)
                if item is None:
                    return
                index, factory = item
                in_flight[asyncio.create_task(self._guarded(index, factory))] = index

        launch()
        try:
            while in_flight:
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    results[in_flight.pop(finished)] = finished.result()
                launch()
        finally:
            for pending in in_flight:
                pending.cancel()

        return [outcome for outcome in results if outcome is not None]

    async def _guarded(self, index: int, factory: TaskFactory[T]) -> Outcome[T]:
        try:
            if self.governor is None:
                value = await factory()
            else:
                async with self.governor.reserve(CONCURRENCY):
                    value = await factory()
        except Exception as error:  # noqa: BLE001
            logger.warning("Task %d failed: %s", index, error)
            return Outcome.failure(error)
        return Outcome.success(value)
