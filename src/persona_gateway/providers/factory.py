"""Provider construction, validation and startup fallback."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..config import ConfigError, ConfigValidation, ProviderConfig
from .base import BaseProvider
from .ollama import OllamaProvider
from .openai import OpenAIChatProvider

LOGGER = logging.getLogger("persona_gateway.providers.factory")

ConfigLike = Union[ProviderConfig, Mapping[str, Any]]
Builder = Callable[[ProviderConfig, Mapping[str, str]], BaseProvider]


def _build_ollama(config: ProviderConfig, env: Mapping[str, str]) -> BaseProvider:
    return OllamaProvider(config)


def _build_openai(config: ProviderConfig, env: Mapping[str, str]) -> BaseProvider:
    return OpenAIChatProvider(config, api_key=config.resolve_api_key(env))


SUPPORTED_PROVIDERS: Dict[str, Builder] = {
    "ollama": _build_ollama,
    "openai": _build_openai,
}


def supported_providers() -> List[str]:
    return list(SUPPORTED_PROVIDERS)


def _coerce(config: Optional[ConfigLike]) -> Optional[ProviderConfig]:
    if config is None or isinstance(config, ProviderConfig):
        return config
    return ProviderConfig.from_mapping(str(config.get("name") or config.get("type") or "provider"), config)


def _env(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if env is None else env


def validate_config(config: Optional[ConfigLike], env: Optional[Mapping[str, str]] = None) -> ConfigValidation:
    """Check a configuration against its type's requirements, collecting every problem."""
    config = _coerce(config)
    if config is None:
        return ConfigValidation.from_errors(["Configuration is required"])

    errors: List[str] = []
    if not config.type:
        errors.append("Provider type is required")
    elif config.type not in SUPPORTED_PROVIDERS:
        errors.append(f"Unsupported provider type: {config.type}")

    if config.timeout_ms is not None and config.timeout_ms <= 0:
        errors.append("Provider timeout must be a positive number of milliseconds")

    if config.type == "ollama" and not config.endpoint:
        errors.append("Ollama provider requires a URL")
    if config.type == "openai" and not config.resolve_api_key(_env(env)):
        errors.append("OpenAI provider requires an API key")

    return ConfigValidation.from_errors(errors)


def create_provider(config: Optional[ConfigLike], env: Optional[Mapping[str, str]] = None) -> BaseProvider:
    """Instantiate the adapter selected by ``config.type``."""
    config = _coerce(config)
    if config is None or not config.type:
        raise ConfigError("Provider configuration must include a type")

    builder = SUPPORTED_PROVIDERS.get(config.type)
    if builder is None:
        raise ConfigError(
            f"Unsupported provider type: {config.type}. "
            f"Supported providers: {', '.join(supported_providers())}"
        )

    env = _env(env)
    validation = validate_config(config, env)
    if not validation.is_valid:
        raise ConfigError(f"Invalid {config.type} provider configuration: {'; '.join(validation.errors)}")

    LOGGER.info("Creating %s provider instance for %s", config.type, config.name)
    try:
        return builder(config, env)
    except Exception as exc:
        raise ConfigError(f"Failed to create {config.type} provider: {exc}") from exc


def create_provider_with_fallback(
    primary: Optional[ConfigLike],
    fallback: Optional[Union[ConfigLike, Sequence[ConfigLike]]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> BaseProvider:
    """Create the primary provider, trying fallback configs in order if it fails.

    Meant to run once at startup; a provider that fails later is not
    replaced.
    """
    try:
        return create_provider(primary, env)
    except ConfigError as exc:
        primary_name = getattr(_coerce(primary), "name", None)
        LOGGER.warning("Failed to create primary provider (%s): %s", primary_name, exc)
        if not fallback:
            raise
        failures = [f"{primary_name}: {exc}"]

    if isinstance(fallback, (ProviderConfig, Mapping)):
        fallback = [fallback]

    for candidate in fallback:
        candidate_name = getattr(_coerce(candidate), "name", None)
        LOGGER.info("Attempting to create fallback provider (%s)", candidate_name)
        try:
            provider = create_provider(candidate, env)
        except ConfigError as exc:
            LOGGER.warning("Fallback provider %s also failed: %s", candidate_name, exc)
            failures.append(f"{candidate_name}: {exc}")
            continue
        LOGGER.info("Using fallback provider: %s", provider.get_provider_name())
        return provider

    raise ConfigError(f"All providers failed to initialize ({' | '.join(failures)})")


async def test_provider(config: Optional[ConfigLike], env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Construct and health-check a provider, reporting failures instead of raising."""
    coerced: Optional[ProviderConfig] = None
    try:
        coerced = _coerce(config)
        provider = create_provider(coerced, env)
    except ConfigError as exc:
        return {
            "success": False,
            "healthy": False,
            "error": str(exc),
            "config": coerced.summary(env) if coerced is not None else None,
        }

    try:
        healthy = await provider.health_check()
        return {
            "success": True,
            "healthy": healthy,
            "provider": provider.get_provider_name(),
            "config": provider.get_config_summary(),
        }
    finally:
        await provider.aclose()
