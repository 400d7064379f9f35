"""Tagged engine errors and explicit per-task outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced by the engine."""

    API = "api"
    VALIDATION = "validation"
    RESOURCE_EXCEEDED = "resource_exceeded"
    GENERATION = "generation"


@dataclass(slots=True, eq=False)
class EngineError(Exception):
    """Base engine error tagged with an explicit kind."""

    message: str
    kind: ErrorKind = ErrorKind.GENERATION
    cause: BaseException | None = None

    def __str__(self) -> str:
        return self.message

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.API


@dataclass(slots=True, eq=False)
class ApiError(EngineError):
    """LLM endpoint failure after the retry budget was spent."""

    kind: ErrorKind = ErrorKind.API
    status_code: int | None = None
    attempts: int = 0


@dataclass(slots=True, eq=False)
class ValidationError(EngineError):
    """Malformed or missing input; never retried."""

    kind: ErrorKind = ErrorKind.VALIDATION


@dataclass(slots=True, eq=False)
class ResourceExceeded(EngineError):
    """A governor ceiling was hit; the system is busy."""

    kind: ErrorKind = ErrorKind.RESOURCE_EXCEEDED
    resource: str = ""
    ceiling: float = 0.0


@dataclass(slots=True, eq=False)
class GenerationError(EngineError):
    """Refinement exhausted its attempts without usable output."""

    kind: ErrorKind = ErrorKind.GENERATION
    attempts: int = 0


@dataclass(slots=True)
class Outcome(Generic[T]):
    """Result slot holding either a value or the error that replaced it."""

    value: T | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> Outcome[T]:
        return cls(error=as_engine_error(error))

    def unwrap(self) -> T:
        """Return the value or raise the captured error."""

        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def as_engine_error(error: BaseException) -> EngineError:
    """Wrap foreign exceptions so every failure carries an ErrorKind."""

    if isinstance(error, EngineError):
        return error
    return EngineError(message=f"{type(error).__name__}: {error}", cause=error)
