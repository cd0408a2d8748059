"""Chat pipeline for the persona gateway."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict, Optional

from .config import AppConfig
from .metrics import ChatEvent, LoggingMetricsCollector, MetricsCollector, SecurityMetrics
from .personas import PersonaNotFoundError, PersonaStore
from .providers.base import BaseProvider, GenerationOptions, GenerationResult, ProviderError
from .security import (
    SECURITY_INFO,
    ValidationError,
    build_secure_prompt,
    default_metrics,
    validate_input,
    validate_response,
)

GENERIC_ERROR = "An error occurred while processing your request"
GENERIC_DETAILS = "Failed to generate a response from the language model service"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ChatReply:
    """Response payload plus the HTTP-style status it corresponds to."""

    status_code: int
    body: Dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class ChatHandler:
    """Coordinate input validation, prompt isolation, provider invocation and output screening."""

    def __init__(
        self,
        *,
        provider: Optional[BaseProvider],
        personas: PersonaStore,
        config: Optional[AppConfig] = None,
        security_metrics: Optional[SecurityMetrics] = None,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._provider = provider
        self._personas = personas
        self._options = GenerationOptions.from_mapping(config.merged_options() if config else None)
        self._log_usage = bool(config and config.log_provider_usage)
        self._security_metrics = security_metrics or default_metrics()
        self._metrics = metrics or LoggingMetricsCollector()
        self._logger = logger or logging.getLogger("persona_gateway.chat_handler")

    @property
    def provider(self) -> Optional[BaseProvider]:
        return self._provider

    async def handle(self, persona: str, message: Any) -> ChatReply:
        """Run one chat request through the pipeline."""
        start = perf_counter()
        provider_name = self._provider.get_provider_name() if self._provider else None

        def _record(status: str, *, error_code: Optional[str] = None, filtered: bool = False) -> None:
            self._metrics.record(
                ChatEvent(
                    persona=persona,
                    status=status,
                    provider=provider_name,
                    duration_ms=(perf_counter() - start) * 1000,
                    response_filtered=filtered,
                    error_code=error_code,
                )
            )

        if self._provider is None:
            self._logger.error("Chat request for %s refused: no LLM provider available", persona)
            _record("error", error_code="no_provider")
            return ChatReply(
                503,
                {
                    "error": "No LLM provider available",
                    "details": "No language model provider is configured. Please check configuration.",
                    "persona": persona,
                    "timestamp": _timestamp(),
                },
            )

        try:
            persona_config = self._personas.get(persona)
        except PersonaNotFoundError as exc:
            self._logger.warning("%s", exc)
            _record("error", error_code="unknown_persona")
            return ChatReply(
                404,
                {
                    "error": "Persona not found",
                    "details": str(exc),
                    "persona": persona,
                    "timestamp": _timestamp(),
                },
            )

        try:
            sanitized = validate_input(message, self._security_metrics)
        except ValidationError as exc:
            _record("rejected", error_code=exc.category)
            return ChatReply(
                400,
                {
                    "error": "Input validation failed",
                    "details": str(exc),
                    "persona": persona,
                    "security_info": SECURITY_INFO,
                    "timestamp": _timestamp(),
                },
            )
        self._logger.debug("Input validation passed for persona: %s", persona)

        prompt = build_secure_prompt(persona_config, sanitized)
        self._logger.info("Generating response for persona: %s using %s", persona, provider_name)

        try:
            result: GenerationResult = await self._provider.generate_response(prompt, self._options)
        except asyncio.CancelledError:
            raise
        except ProviderError as exc:
            self._logger.warning(
                "Provider error for persona %s: %s (%s) details=%s",
                persona,
                exc.code,
                exc.message,
                exc.details,
            )
            _record("error", error_code=exc.code)
            return self._service_error(persona, exc.code)
        except Exception as exc:
            self._logger.exception("Unexpected provider exception for persona %s: %s", persona, exc)
            _record("error", error_code="unhandled_error")
            return self._service_error(persona, "unhandled_error")

        safe_text = validate_response(result.text, persona_config.persona, self._security_metrics)
        filtered = safe_text != result.text
        if self._log_usage:
            self._logger.info("Provider usage for persona %s: %s", persona, result.usage.as_dict())

        _record("success", filtered=filtered)
        return ChatReply(
            200,
            {
                "response": safe_text,
                "persona": persona,
                "provider": result.provider_name,
                "model": result.model_name,
                "usage": result.usage.as_dict(),
                "security": {
                    "input_validated": True,
                    "response_filtered": filtered,
                    "context_isolated": True,
                },
                "timestamp": _timestamp(),
            },
        )

    def _service_error(self, persona: str, code: str) -> ChatReply:
        return ChatReply(
            502,
            {
                "error": GENERIC_ERROR,
                "details": GENERIC_DETAILS,
                "error_code": code,
                "persona": persona,
                "timestamp": _timestamp(),
            },
        )
