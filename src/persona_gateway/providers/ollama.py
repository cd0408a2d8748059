"""Ollama provider adapter.

Talks to a local Ollama daemon over its REST API. Local models may need to
load weights on the first call, so the default timeout is long; the
connect timeout stays short so an absent daemon fails fast.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import ConfigError, ProviderConfig
from .base import (
    HEALTH_CHECK_TIMEOUT,
    BaseProvider,
    GenerationOptions,
    GenerationResult,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderProtocolError,
    ProviderTransientError,
    Usage,
)

LOGGER = logging.getLogger("persona_gateway.providers.ollama")

DEFAULT_MODEL = "phi3:mini"
DEFAULT_TIMEOUT_MS = 120000
_CONNECT_TIMEOUT = 10.0
_PULL_TIMEOUT = 300.0


def _classify_status(exc: httpx.HTTPStatusError, endpoint: str) -> Exception:
    status = exc.response.status_code
    details = {"status_code": status, "endpoint": endpoint}
    if status in (401, 403):
        return ProviderAuthError(f"Ollama rejected the request credentials ({status})", details=details)
    if status == 429 or status >= 500:
        return ProviderTransientError(f"Ollama service temporarily unavailable ({status})", details=details)
    return ProviderProtocolError(f"Ollama API error: {status} - {exc.response.reason_phrase}", details=details)


class OllamaProvider(BaseProvider):
    """Adapter for Ollama's ``/api/generate`` endpoint."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not config.endpoint:
            raise ConfigError("Ollama URL is required in configuration")
        self._config = config
        self._endpoint = config.endpoint.rstrip("/")
        self._model = config.model or DEFAULT_MODEL
        self._timeout = (config.timeout_ms or DEFAULT_TIMEOUT_MS) / 1000.0
        self._client = httpx.AsyncClient(
            base_url=self._endpoint,
            timeout=httpx.Timeout(self._timeout, connect=min(_CONNECT_TIMEOUT, self._timeout)),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        LOGGER.info("Ollama provider initialized with URL: %s, model: %s", self._endpoint, self._model)

    @property
    def model(self) -> str:
        return self._model

    async def generate_response(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        payload = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "top_p": options.top_p,
                "num_predict": options.max_tokens,
                "stop": options.stop or [],
            },
        }

        LOGGER.debug("Generating response with Ollama model: %s", self._model)
        try:
            response = await self._client.post("/api/generate", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise _classify_status(exc, self._endpoint) from exc
        except httpx.TimeoutException as exc:
            raise ProviderTransientError(
                f"Ollama request timed out after {self._timeout}s for model '{self._model}'",
                details={"endpoint": self._endpoint},
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderConnectionError(
                "Unable to connect to Ollama service. Please ensure it is running.",
                details={"endpoint": self._endpoint, "reason": str(exc)},
            ) from exc
        except ValueError as exc:
            raise ProviderProtocolError("Ollama returned a body that is not JSON") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise ProviderProtocolError("Invalid response format from Ollama")

        return GenerationResult(
            text=text,
            provider_name="ollama",
            model_name=self._model,
            usage=Usage.from_counts(data.get("prompt_eval_count"), data.get("eval_count")),
            metadata={
                "done": bool(data.get("done", False)),
                "total_duration": data.get("total_duration") or 0,
                "eval_duration": data.get("eval_duration") or 0,
            },
        )

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=HEALTH_CHECK_TIMEOUT)
            return response.status_code == 200 and isinstance(response.json().get("models"), list)
        except Exception as exc:
            LOGGER.warning("Ollama health check failed: %s", exc)
            return False

    async def list_models(self) -> List[Dict[str, Any]]:
        """Models installed in the Ollama daemon; empty when unreachable."""
        try:
            response = await self._client.get("/api/tags", timeout=10.0)
            response.raise_for_status()
            return list(response.json().get("models") or [])
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("Failed to get Ollama models: %s", exc)
            return []

    async def pull_model(self, model_name: str) -> bool:
        """Ask the daemon to download ``model_name``."""
        LOGGER.info("Pulling model: %s", model_name)
        try:
            response = await self._client.post(
                "/api/pull",
                json={"name": model_name, "stream": False},
                timeout=_PULL_TIMEOUT,
            )
            return response.status_code == 200
        except httpx.HTTPError as exc:
            LOGGER.warning("Failed to pull model %s: %s", model_name, exc)
            return False

    def get_provider_name(self) -> str:
        return f"Ollama ({self._model})"

    def get_config_summary(self) -> Dict[str, Any]:
        summary = self._config.summary(env={})
        summary.update(
            {
                "endpoint": self._endpoint,
                "model": self._model,
                "timeout_ms": int(self._timeout * 1000),
                "has_api_key": bool(self._config.api_key),
            }
        )
        return summary

    async def aclose(self) -> None:
        await self._client.aclose()
