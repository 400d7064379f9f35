"""Named resource budgets with ceilings, shared by one orchestration run."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType

from content_engine.config import ResourceSettings
from content_engine.errors import ResourceExceeded

logger = logging.getLogger(__name__)

CONCURRENCY = "concurrency"
MEMORY = "memory"
TIME = "time"


@dataclass(slots=True)
class ResourceBudget:
    """One named counter and its ceiling."""

    name: str
    ceiling: float
    used: float = 0.0

    @property
    def remaining(self) -> float:
        return max(0.0, self.ceiling - self.used)


class ResourceGovernor:
    """Thread-safe counters; names without a configured ceiling are unbounded."""

    def __init__(self, ceilings: Mapping[str, float] | None = None) -> None:
        self._lock = threading.Lock()
        self._budgets = {
            name: ResourceBudget(name=name, ceiling=float(ceiling))
            for name, ceiling in (ceilings or {}).items()
        }
        self._unbounded: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: ResourceSettings) -> ResourceGovernor:
        return cls(
            {
                CONCURRENCY: settings.max_concurrency,
                MEMORY: settings.memory_limit_chars,
                TIME: settings.time_limit_seconds,
            },
        )

    def acquire(self, name: str, amount: float = 1.0) -> None:
        """Add amount to the counter or raise ResourceExceeded without changing it."""

        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")
        with self._lock:
            budget = self._budgets.get(name)
            if budget is None:
                self._unbounded[name] = self._unbounded.get(name, 0.0) + amount
                return
            if budget.used + amount > budget.ceiling:
                raise _exceeded(budget, amount)
            budget.used += amount

    def ensure_available(self, name: str) -> None:
        """Raise ResourceExceeded when the budget is already used up.

        Pairs with ``charge`` for costs only known after the work finished,
        such as gateway time.
        """

        with self._lock:
            budget = self._budgets.get(name)
            if budget is not None and budget.used >= budget.ceiling:
                raise _exceeded(budget, 0.0)

    def charge(self, name: str, amount: float) -> None:
        """Record consumption that already happened, even past the ceiling."""

        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")
        with self._lock:
            budget = self._budgets.get(name)
            if budget is None:
                self._unbounded[name] = self._unbounded.get(name, 0.0) + amount
                return
            budget.used += amount

    def release(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            budget = self._budgets.get(name)
            if budget is None:
                self._unbounded[name] = max(0.0, self._unbounded.get(name, 0.0) - amount)
                return
            budget.used = max(0.0, budget.used - amount)

    def usage(self, name: str) -> float:
        with self._lock:
            budget = self._budgets.get(name)
            if budget is None:
                return self._unbounded.get(name, 0.0)
            return budget.used

    def snapshot(self) -> dict[str, ResourceBudget]:
        with self._lock:
            return {
                name: ResourceBudget(name=name, ceiling=budget.ceiling, used=budget.used)
                for name, budget in self._budgets.items()
            }

    def reserve(self, name: str, amount: float = 1.0) -> Reservation:
        """Scoped acquisition usable with ``with`` or ``async with``."""

        return Reservation(self, name, amount)


class Reservation:
    """Holds an acquisition for the duration of a block and releases it on exit."""

    __slots__ = ("_governor", "amount", "name")

    def __init__(self, governor: ResourceGovernor, name: str, amount: float) -> None:
        self._governor = governor
        self.name = name
        self.amount = amount

    def __enter__(self) -> Reservation:
        self._governor.acquire(self.name, self.amount)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self._governor.release(self.name, self.amount)

    async def __aenter__(self) -> Reservation:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc, traceback)


def _exceeded(budget: ResourceBudget, requested: float) -> ResourceExceeded:
    logger.warning(
        "Resource %s exhausted: used=%.2f requested=%.2f ceiling=%.2f",
        budget.name,
        budget.used,
        requested,
        budget.ceiling,
    )
    return ResourceExceeded(
        message=(
            f"System busy: {budget.name} budget exceeded "
            f"({budget.used + requested:g} > {budget.ceiling:g})"
        ),
        resource=budget.name,
        ceiling=budget.ceiling,
    )
