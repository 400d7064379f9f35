"""Chat-completion API gateway with retry and exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from content_engine.config import ProviderSettings
from content_engine.errors import ApiError, ValidationError

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
PROVIDER_BASE_URLS = {
    "deepseek": "https://api.deepseek.com",
    "openai": "https://api.openai.com",
}
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_SECONDS = 1.0
_ERROR_BODY_PREVIEW_CHARS = 300
_CODE_FENCE_RE = re.compile(r"^```[A-Za-z]*[ \t]*\n?(.*?)\n?```$", re.DOTALL)


@dataclass(slots=True, frozen=True)
class ModelConfig:
    """Per-call model parameters."""

    model: str
    api_key: str
    endpoint: str
    temperature: float = 0.7
    max_tokens: int = 200

    @classmethod
    def from_settings(cls, settings: ProviderSettings, *, max_tokens: int) -> ModelConfig:
        return cls(
            model=settings.model,
            api_key=settings.api_key,
            endpoint=resolve_endpoint(settings.provider, settings.custom_api_url),
            temperature=settings.temperature,
            max_tokens=max_tokens,
        )


class UsageRecorder(Protocol):
    def record(
        self,
        *,
        artifact_type: str,
        model: str,
        response_time_ms: int,
        attempts: int,
        succeeded: bool,
    ) -> None: ...


def resolve_endpoint(provider: str, custom_api_url: str = "") -> str:
    """Return the full chat-completions URL for a provider."""

    if custom_api_url:
        base = custom_api_url.rstrip("/")
    elif provider in PROVIDER_BASE_URLS:
        base = PROVIDER_BASE_URLS[provider]
    else:
        raise ValidationError(f"Provider {provider!r} requires a custom API URL")
    if base.endswith("/chat/completions"):
        return base
    return base + CHAT_COMPLETIONS_PATH


def strip_code_fence(text: str) -> str:
    """Trim the reply and unwrap a fenced code block around it."""

    stripped = text.strip()
    match = _CODE_FENCE_RE.match(stripped)
    if match is not None:
        return match.group(1).strip()
    return stripped


@dataclass(slots=True)
class _AttemptFailure:
    message: str
    status_code: int | None = None
    cause: BaseException | None = None


class APIGateway:
    """Send chat-completion requests, retrying failed attempts with backoff."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
        request_timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        usage_recorder: UsageRecorder | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValidationError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self._timeout = httpx.Timeout(request_timeout_seconds, connect=connect_timeout_seconds)
        self._transport = transport
        self._sleep = sleep
        self._usage_recorder = usage_recorder

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        *,
        usage_recorder: UsageRecorder | None = None,
    ) -> APIGateway:
        return cls(
            max_retries=settings.max_retries,
            retry_base_seconds=settings.retry_base_seconds,
            request_timeout_seconds=settings.request_timeout_seconds,
            connect_timeout_seconds=settings.connect_timeout_seconds,
            usage_recorder=usage_recorder,
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        model_config: ModelConfig,
        *,
        artifact_type: str = "generic",
    ) -> str:
        """Return the post-processed reply text or raise ApiError after the last retry."""

        payload = {
            "model": model_config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": model_config.temperature,
            "max_tokens": model_config.max_tokens,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {model_config.api_key}",
        }
        total_attempts = self.max_retries + 1
        started = time.monotonic()
        failure = _AttemptFailure(message="no attempt made")

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(total_attempts):
                reply, failure = await self._attempt(client, model_config.endpoint, payload, headers)
                if reply is not None:
                    self._record_usage(artifact_type, model_config, started, attempt + 1, True)
                    return strip_code_fence(reply)

                if attempt < total_attempts - 1:
                    delay = self.retry_base_seconds * (2**attempt)
                    logger.warning(
                        "API call for %s failed (attempt %d/%d): %s; retrying in %.2fs",
                        artifact_type,
                        attempt + 1,
                        total_attempts,
                        failure.message,
                        delay,
                    )
                    await self._sleep(delay)

        self._record_usage(artifact_type, model_config, started, total_attempts, False)
        logger.error(
            "API call for %s failed after %d attempts: %s",
            artifact_type,
            total_attempts,
            failure.message,
        )
        raise ApiError(
            message=failure.message,
            cause=failure.cause,
            status_code=failure.status_code,
            attempts=total_attempts,
        )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> tuple[str | None, _AttemptFailure]:
        try:
            response = await client.post(endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as error:
            return None, _AttemptFailure(message=f"request timed out: {error}", cause=error)
        except httpx.HTTPError as error:
            return None, _AttemptFailure(message=f"network error: {error}", cause=error)

        if not response.is_success:
            return None, _AttemptFailure(
                message=f"HTTP {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as error:
            return None, _AttemptFailure(
                message=f"invalid JSON response: {error}",
                status_code=response.status_code,
                cause=error,
            )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as error:
            return None, _AttemptFailure(
                message="missing choices[0].message.content in response",
                status_code=response.status_code,
                cause=error,
            )
        if not isinstance(content, str):
            return None, _AttemptFailure(
                message="unexpected response: message content is not text",
                status_code=response.status_code,
            )
        return content, _AttemptFailure(message="")

    def _record_usage(
        self,
        artifact_type: str,
        model_config: ModelConfig,
        started: float,
        attempts: int,
        succeeded: bool,  # noqa: FBT001
    ) -> None:
        if self._usage_recorder is None:
            return
        self._usage_recorder.record(
            artifact_type=artifact_type,
            model=model_config.model,
            response_time_ms=int((time.monotonic() - started) * 1000),
            attempts=attempts,
            succeeded=succeeded,
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:_ERROR_BODY_PREVIEW_CHARS]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text[:_ERROR_BODY_PREVIEW_CHARS]
