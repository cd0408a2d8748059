"""OpenAI provider adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
)

from ..config import ConfigError, ProviderConfig
from .base import (
    HEALTH_CHECK_TIMEOUT,
    BaseProvider,
    GenerationOptions,
    GenerationResult,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderProtocolError,
    ProviderTransientError,
    Usage,
)

LOGGER = logging.getLogger("persona_gateway.providers.openai")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_MS = 30000

_USER_MARKERS = ("Human:", "User:")
_ASSISTANT_MARKER = "Assistant:"


def _marker_role(line: str) -> Optional[str]:
    stripped = line.strip()
    if stripped.startswith(_USER_MARKERS):
        return "user"
    if stripped.startswith(_ASSISTANT_MARKER):
        return "assistant"
    return None


def _strip_marker(line: str) -> str:
    stripped = line.strip()
    for marker in (*_USER_MARKERS, _ASSISTANT_MARKER):
        if stripped.startswith(marker):
            return stripped[len(marker):].strip()
    return stripped


def prompt_to_messages(prompt: str) -> List[Dict[str, str]]:
    """Reshape a flat prompt into chat turns.

    Text before the first ``Human:``/``User:`` line becomes the system turn;
    after that each marker line opens a new turn. A prompt without any user
    marker is sent as a single user turn. User text that itself contains
    these markers can split turns in the wrong place.
    """
    lines = prompt.split("\n")
    start = next((i for i, line in enumerate(lines) if _marker_role(line) == "user"), None)
    if start is None:
        return [{"role": "user", "content": prompt.strip()}]

    messages: List[Dict[str, str]] = []
    system_text = "\n".join(lines[:start]).strip()
    if system_text:
        messages.append({"role": "system", "content": system_text})

    role: Optional[str] = None
    buffer: List[str] = []

    def _flush() -> None:
        content = "\n".join(buffer).strip()
        if role and content:
            messages.append({"role": role, "content": content})

    for line in lines[start:]:
        marker_role = _marker_role(line)
        if marker_role is not None:
            _flush()
            role = marker_role
            buffer = [_strip_marker(line)]
        else:
            buffer.append(line)
    _flush()
    return messages


def _classify(exc: APIError) -> ProviderError:
    status = getattr(exc, "status_code", None)
    details = {"status_code": status, "openai_code": getattr(exc, "code", None)}
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return ProviderAuthError("Invalid OpenAI API key", details=details)
    if isinstance(exc, RateLimitError):
        return ProviderTransientError("OpenAI rate limit exceeded. Please try again later.", details=details)
    if isinstance(exc, APITimeoutError):
        return ProviderTransientError("OpenAI request timed out", details=details)
    if isinstance(exc, APIConnectionError):
        return ProviderConnectionError("Unable to connect to the OpenAI API", details=details)
    if isinstance(exc, InternalServerError) or (status is not None and status >= 500):
        return ProviderTransientError("OpenAI service temporarily unavailable", details=details)
    if isinstance(exc, APIStatusError):
        return ProviderProtocolError(f"OpenAI API error: {status}", details=details)
    return ProviderProtocolError(f"OpenAI service error: {exc.message}", details=details)


class OpenAIChatProvider(BaseProvider):
    """Adapter for OpenAI Chat Completions API."""

    def __init__(self, config: ProviderConfig, *, api_key: Optional[str] = None):
        api_key = api_key or config.api_key
        if not api_key:
            raise ConfigError(
                "OpenAI API key is required. Set OPENAI_API_KEY, provide api_key in config, "
                "or set the environment variable named by api_key_env"
            )
        self._config = config
        self._model = config.model or DEFAULT_MODEL
        self._timeout = (config.timeout_ms or DEFAULT_TIMEOUT_MS) / 1000.0
        # Fail over happens at startup only; a request gets exactly one attempt.
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=config.endpoint or None,
            timeout=self._timeout,
            max_retries=0,
        )
        LOGGER.info("OpenAI provider initialized with model: %s", self._model)

    @property
    def model(self) -> str:
        return self._model

    async def generate_response(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        request: Dict[str, Any] = {
            "model": self._model,
            "messages": prompt_to_messages(prompt),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "top_p": options.top_p,
        }
        if options.stop:
            request["stop"] = options.stop

        LOGGER.debug("Generating response with OpenAI model: %s", self._model)
        try:
            response = await self._client.chat.completions.create(**request)
        except APIError as exc:
            raise _classify(exc) from exc

        if not response.choices:
            raise ProviderProtocolError("No response generated from OpenAI")
        choice = response.choices[0]
        content = getattr(choice.message, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise ProviderProtocolError("OpenAI returned an empty completion")

        usage = response.usage
        return GenerationResult(
            text=content,
            provider_name="openai",
            model_name=getattr(response, "model", None) or self._model,
            usage=Usage.from_counts(
                getattr(usage, "prompt_tokens", 0) if usage else 0,
                getattr(usage, "completion_tokens", 0) if usage else 0,
            ),
            metadata={
                "finish_reason": getattr(choice, "finish_reason", None),
                "response_id": getattr(response, "id", None),
                "created": getattr(response, "created", None),
            },
        )

    async def health_check(self) -> bool:
        try:
            await self._client.with_options(timeout=HEALTH_CHECK_TIMEOUT).models.list()
            return True
        except Exception as exc:
            LOGGER.warning("OpenAI health check failed: %s", exc)
            return False

    async def list_models(self) -> List[Dict[str, Any]]:
        """GPT model ids visible to the configured key; empty on failure."""
        try:
            page = await self._client.models.list()
        except APIError as exc:
            LOGGER.warning("Failed to get OpenAI models: %s", exc)
            return []
        return [
            {"id": model.id, "created": model.created, "owned_by": model.owned_by}
            for model in page.data
            if "gpt" in model.id
        ]

    def get_provider_name(self) -> str:
        return f"OpenAI ({self._model})"

    def get_config_summary(self) -> Dict[str, Any]:
        summary = self._config.summary(env={})
        summary.update(
            {
                "model": self._model,
                "timeout_ms": int(self._timeout * 1000),
                "has_api_key": True,
            }
        )
        return summary

    async def aclose(self) -> None:
        await self._client.close()
