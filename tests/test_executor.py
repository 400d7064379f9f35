from __future__ import annotations

import asyncio

import allure
import pytest

from content_engine.errors import ErrorKind, ValidationError
from content_engine.orchestration.executor import ConcurrentExecutor
from content_engine.orchestration.governor import CONCURRENCY, ResourceGovernor

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Concurrent Executor"),
]


@pytest.mark.asyncio
async def test_results_follow_task_order_not_completion_order() -> None:
    completed: list[int] = []
    second_done = asyncio.Event()

    async def first() -> str:
        await second_done.wait()
        completed.append(0)
        return "summary"

    async def second() -> str:
        completed.append(1)
        second_done.set()
        return "tags"

    async def third() -> str:
        await asyncio.sleep(0)
        completed.append(2)
        return "category"

    outcomes = await ConcurrentExecutor().run([first, second, third])

    assert completed.index(1) < completed.index(0)
    assert [outcome.value for outcome in outcomes] == ["summary", "tags", "category"]
    assert all(outcome.ok for outcome in outcomes)


@pytest.mark.asyncio
async def test_failure_is_isolated_to_its_slot() -> None:
    async def ok() -> str:
        return "fine"

    async def broken() -> str:
        raise RuntimeError("boom")

    async def invalid() -> str:
        raise ValidationError(message="bad input")

    outcomes = await ConcurrentExecutor().run([ok, broken, invalid])

    assert outcomes[0].value == "fine"
    assert outcomes[1].error is not None
    assert outcomes[1].error.kind is ErrorKind.GENERATION
    assert isinstance(outcomes[1].error.cause, RuntimeError)
    assert outcomes[2].error is not None
    assert outcomes[2].error.kind is ErrorKind.VALIDATION
    with pytest.raises(ValidationError):
        outcomes[2].unwrap()


@pytest.mark.asyncio
async def test_max_in_flight_bounds_concurrency() -> None:
    active = 0
    peak = 0

    def make(value: int):
        async def task() -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return value

        return task

    outcomes = await ConcurrentExecutor(max_in_flight=2).run([make(index) for index in range(6)])

    assert peak == 2
    assert [outcome.value for outcome in outcomes] == list(range(6))


@pytest.mark.asyncio
async def test_governor_concurrency_ceiling_fails_excess_tasks() -> None:
    governor = ResourceGovernor({CONCURRENCY: 1})

    async def slow() -> str:
        await asyncio.sleep(0.01)
        return "done"

    outcomes = await ConcurrentExecutor(governor=governor).run([slow, slow])

    assert outcomes[0].value == "done"
    assert outcomes[1].error is not None
    assert outcomes[1].error.kind is ErrorKind.RESOURCE_EXCEEDED
    assert governor.usage(CONCURRENCY) == 0


@pytest.mark.asyncio
async def test_empty_task_set() -> None:
    assert await ConcurrentExecutor().run([]) == []


def test_max_in_flight_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ConcurrentExecutor(max_in_flight=0)
