"""Deterministic API failure classification for task requeue policy."""

from __future__ import annotations

from dataclasses import dataclass

from content_engine.errors import ApiError, EngineError, ErrorKind
from content_engine.queue.models import FailureClass

API_FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "insufficient balance",
    "insufficient_quota",
    "billing",
    "payment",
    "credits",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "incorrect api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "model_not_found",
    "unknown model",
    "unsupported model",
    "model does not exist",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate_limit",
    "try again later",
)
_INVALID_RESPONSE_PATTERNS: tuple[str, ...] = (
    "invalid json",
    "missing choices",
    "unexpected response",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network error",
    "name resolution",
)

_STATUS_CLASSES: dict[int, FailureClass] = {
    401: FailureClass.ACCESS_OR_AUTH,
    402: FailureClass.BILLING_OR_QUOTA,
    403: FailureClass.ACCESS_OR_AUTH,
    404: FailureClass.MODEL_NOT_AVAILABLE,
    408: FailureClass.TRANSIENT,
    429: FailureClass.RATE_LIMITED,
}


@dataclass(slots=True)
class ApiFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self) -> dict[str, object]:
        return {
            "classifier_version": API_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_api_failure(*, status_code: int | None, message: str) -> ApiFailureClassification:
    """Classify an exhausted API call by message first, then by HTTP status."""

    haystack = message.lower()
    for rule, patterns, failure_class in (
        ("billing_or_quota", _BILLING_OR_QUOTA_PATTERNS, FailureClass.BILLING_OR_QUOTA),
        ("access_or_auth", _ACCESS_OR_AUTH_PATTERNS, FailureClass.ACCESS_OR_AUTH),
        ("model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS, FailureClass.MODEL_NOT_AVAILABLE),
        ("rate_limited", _RATE_LIMIT_PATTERNS, FailureClass.RATE_LIMITED),
        ("invalid_response", _INVALID_RESPONSE_PATTERNS, FailureClass.INVALID_RESPONSE),
        ("transient", _TRANSIENT_PATTERNS, FailureClass.TRANSIENT),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ApiFailureClassification(
                failure_class=failure_class,
                matched_rule=rule,
                matched_pattern=pattern,
            )

    if status_code is not None:
        if status_code in _STATUS_CLASSES:
            return ApiFailureClassification(
                failure_class=_STATUS_CLASSES[status_code],
                matched_rule=f"status_{status_code}",
                matched_pattern=None,
            )
        if status_code >= 500:  # noqa: PLR2004
            return ApiFailureClassification(
                failure_class=FailureClass.TRANSIENT,
                matched_rule="status_5xx",
                matched_pattern=None,
            )

    return ApiFailureClassification(
        failure_class=FailureClass.TRANSIENT,
        matched_rule="fallback_transient",
        matched_pattern=None,
    )


def classify_engine_error(error: EngineError) -> ApiFailureClassification:
    """Map any engine error onto a queue failure class.

    A generation that ran out of attempts because every call failed carries
    the last ``ApiError`` as its cause; that cause decides the class, so an
    auth or billing failure is not retried as a generation failure.
    """

    if isinstance(error, ApiError):
        return classify_api_failure(status_code=error.status_code, message=error.message)
    if isinstance(error.cause, ApiError):
        return classify_api_failure(
            status_code=error.cause.status_code,
            message=error.cause.message,
        )
    by_kind = {
        ErrorKind.VALIDATION: FailureClass.INPUT_INVALID,
        ErrorKind.RESOURCE_EXCEEDED: FailureClass.RESOURCE_EXCEEDED,
        ErrorKind.GENERATION: FailureClass.GENERATION_FAILED,
        ErrorKind.API: FailureClass.TRANSIENT,
    }
    return ApiFailureClassification(
        failure_class=by_kind[error.kind],
        matched_rule=f"kind_{error.kind.value}",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
