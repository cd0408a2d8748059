"""Runtime wiring for the persona gateway."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from . import __version__
from .config import AppConfig, ConfigError, LLMSettings, environment_warnings
from .handlers import ChatHandler, ChatReply
from .metrics import MetricsCollector, SecurityMetrics, create_metrics_collector
from .personas import PersonaStore, YamlPersonaStore
from .providers import factory
from .providers.base import BaseProvider

LOGGER = logging.getLogger("persona_gateway.runtime")


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def select_provider(
    settings: LLMSettings,
    *,
    provider: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[BaseProvider]:
    """Create the configured provider, falling back through ``fallback_providers``.

    Returns None when every candidate fails so the caller can keep serving
    diagnostics. Runs once at startup.
    """
    fallbacks = [
        config
        for config in settings.fallback_configs(env=env)
        if config.name != (provider or settings.default_provider)
    ]
    try:
        primary = settings.current_provider_config(provider=provider, env=env)
    except ConfigError as exc:
        LOGGER.error("Failed to resolve primary provider: %s", exc)
        primary = None

    try:
        selected = factory.create_provider_with_fallback(primary, fallbacks, env=env)
    except ConfigError as exc:
        LOGGER.error("No LLM provider available, chat requests will be refused: %s", exc)
        return None
    LOGGER.info("Initialized LLM provider: %s", selected.get_provider_name())
    return selected


class GatewayRuntime:
    """Own the active provider and expose chat and diagnostic operations."""

    def __init__(
        self,
        *,
        config: AppConfig,
        settings: Optional[LLMSettings] = None,
        provider: Optional[BaseProvider] = None,
        personas: Optional[PersonaStore] = None,
        security_metrics: Optional[SecurityMetrics] = None,
        metrics: Optional[MetricsCollector] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self._env = os.environ if env is None else env
        LOGGER.setLevel(_level_for(config.log_level))

        for warning in environment_warnings(self._env):
            LOGGER.warning("%s", warning)

        self.settings = settings if settings is not None else self._load_settings(config)
        if self.settings is not None:
            try:
                config = self.config = config.with_document_settings(self.settings.settings, self._env)
            except ConfigError as exc:
                LOGGER.error("Ignoring LLM configuration settings: %s", exc)
        self._metrics_collector = metrics or create_metrics_collector(config.metrics_backend, config.metrics_port)
        self.security_metrics = security_metrics or SecurityMetrics(collector=self._metrics_collector)
        self.personas = personas or YamlPersonaStore(config.persona_dir)

        if provider is None and self.settings is not None:
            provider = select_provider(self.settings, provider=config.provider_override, env=self._env)
        self._provider = provider

        self._handler = ChatHandler(
            provider=self._provider,
            personas=self.personas,
            config=config,
            security_metrics=self.security_metrics,
            metrics=self._metrics_collector,
        )

    @staticmethod
    def _load_settings(config: AppConfig) -> Optional[LLMSettings]:
        try:
            settings = LLMSettings.load(config.llm_config_path)
        except ConfigError as exc:
            LOGGER.error("Failed to load LLM configuration: %s", exc)
            return None
        validation = settings.validate()
        for error in validation.errors:
            LOGGER.warning("LLM configuration problem: %s", error)
        LOGGER.info("Loaded LLM configuration from: %s", settings.source)
        return settings

    @property
    def provider(self) -> Optional[BaseProvider]:
        return self._provider

    async def chat(self, persona: str, message: Any) -> ChatReply:
        return await self._handler.handle(persona, message)

    async def provider_status(self) -> Dict[str, Any]:
        """Health and safe configuration of the active provider."""
        if self._provider is None:
            return {
                "provider": "none",
                "healthy": False,
                "error": "No LLM provider initialized",
                "timestamp": _timestamp(),
            }
        try:
            healthy = await asyncio.wait_for(self._provider.health_check(), self.config.health_check_timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Health check for %s timed out", self._provider.get_provider_name())
            healthy = False
        return {
            "provider": self._provider.get_provider_name(),
            "healthy": healthy,
            "config": self._provider.get_config_summary(),
            "timestamp": _timestamp(),
        }

    def list_providers(self) -> Dict[str, Any]:
        """Configured and supported providers without credentials."""
        summary = self.settings.summary(self._env) if self.settings else {}
        return {
            "current": {
                "name": summary.get("default_provider") or "none",
                "provider": self._provider.get_provider_name() if self._provider else "none",
                "healthy": "unknown" if self._provider else False,
            },
            "available": summary.get("available_providers", []),
            "supported": factory.supported_providers(),
            "fallback": summary.get("fallback_providers", []),
            "configurations": summary.get("providers", {}),
            "timestamp": _timestamp(),
        }

    async def test_provider(self, name: str) -> Dict[str, Any]:
        """Construct and health-check ``name`` without making it active."""
        if not name:
            return {"success": False, "healthy": False, "error": "Provider name is required", "timestamp": _timestamp()}
        if self.settings is None:
            return {"success": False, "healthy": False, "error": "LLM configuration not loaded", "timestamp": _timestamp()}
        try:
            provider_config = self.settings.provider_config(name, env=self._env)
        except ConfigError as exc:
            return {"success": False, "healthy": False, "error": str(exc), "timestamp": _timestamp()}
        result = await factory.test_provider(provider_config, env=self._env)
        result["timestamp"] = _timestamp()
        return result

    def security_stats(self) -> Dict[str, Any]:
        stats = self.security_metrics.get_stats()
        stats["message"] = "Security monitoring statistics"
        stats["timestamp"] = _timestamp()
        return stats

    def describe(self) -> Dict[str, Any]:
        """Service information and the personas this deployment serves."""
        return {
            "service": "persona-gateway",
            "version": __version__,
            "environment": self.config.environment,
            "provider": {
                "current": self._provider.get_provider_name() if self._provider else "none",
                "status": "initialized" if self._provider else "not available",
            },
            "personas": self.personas.available(),
            "security": {
                "prompt_injection_defense": "enabled",
                "input_validation": "enabled",
                "context_isolation": "enabled",
                "response_filtering": "enabled",
            },
            "timestamp": _timestamp(),
        }

    async def aclose(self) -> None:
        if self._provider is not None:
            try:
                await self._provider.aclose()
            except Exception:  # pragma: no cover - provider cleanup best-effort
                LOGGER.debug("Provider cleanup failed", exc_info=True)


async def perform_healthcheck(config: AppConfig, runtime: Optional[GatewayRuntime] = None) -> bool:
    """Report whether the active provider answers its health check."""
    runtime = runtime or GatewayRuntime(config=config)
    try:
        status = await runtime.provider_status()
        if status["healthy"]:
            LOGGER.info("Healthcheck succeeded for provider %s", status["provider"])
        else:
            LOGGER.warning("Healthcheck failed for provider %s", status["provider"])
        return bool(status["healthy"])
    finally:
        await runtime.aclose()
