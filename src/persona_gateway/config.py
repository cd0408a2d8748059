"""Configuration utilities for the persona gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_LLM_CONFIG_PATH = DATA_DIR / "llm-config.yaml"
DEFAULT_PERSONA_DIR = DATA_DIR / "personas"

DEFAULT_API_KEY_ENV = {"openai": "OPENAI_API_KEY"}

# Environment variables that override a field of the provider with that name.
PROVIDER_ENV_OVERRIDES: Dict[str, Dict[str, str]] = {
    "ollama": {"endpoint": "OLLAMA_URL", "model": "OLLAMA_MODEL"},
    "openai": {"endpoint": "OPENAI_BASE_URL", "model": "OPENAI_MODEL"},
}


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


@dataclass(frozen=True)
class ConfigValidation:
    """Outcome of a validation pass that collects every violation."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ConfigValidation":
        return cls(is_valid=not errors, errors=list(errors))


def _as_bool(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None and value != "":
            return value
    return None


def _environ(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if env is None else env


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration record for a single backend adapter."""

    name: str
    type: Optional[str]
    model: Optional[str] = None
    endpoint: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    api_key_env: Optional[str] = None
    timeout_ms: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = frozenset(
        {
            "name", "type", "model", "url", "endpoint", "apiKey", "api_key",
            "apiKeyEnv", "api_key_env", "timeout", "timeout_ms",
        }
    )

    @classmethod
    def from_mapping(cls, name: str, data: Optional[Mapping[str, Any]]) -> "ProviderConfig":
        """Build a config from a document entry, accepting both key spellings."""
        if data is None:
            raise ConfigError(f"Provider configuration not found: {name}")
        if not isinstance(data, Mapping):
            raise ConfigError(f"Provider '{name}' configuration must be a mapping")

        provider_type = data.get("type")
        timeout = _first(data, "timeout_ms", "timeout")
        try:
            timeout_ms = int(timeout) if timeout is not None else None
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Provider '{name}' timeout must be an integer number of milliseconds") from exc

        return cls(
            name=str(data.get("name") or name),
            type=str(provider_type).strip().lower() if provider_type else None,
            model=_first(data, "model"),
            endpoint=_first(data, "endpoint", "url"),
            api_key=_first(data, "api_key", "apiKey"),
            api_key_env=_first(data, "api_key_env", "apiKeyEnv"),
            timeout_ms=timeout_ms,
            options={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def resolve_api_key(self, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Return the credential from the named env var, the default env var, or the literal value."""
        env = _environ(env)
        if self.api_key_env and env.get(self.api_key_env):
            return env[self.api_key_env]
        default_env = DEFAULT_API_KEY_ENV.get(self.type or "")
        if default_env and env.get(default_env):
            return env[default_env]
        return self.api_key

    def summary(self, env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Credential-free view of the configuration."""
        return {
            "name": self.name,
            "type": self.type,
            "model": self.model,
            "endpoint": self.endpoint,
            "timeout_ms": self.timeout_ms,
            "api_key_env": self.api_key_env,
            "has_api_key": bool(self.resolve_api_key(env)),
            **self.options,
        }


def resolve_provider_config(
    config: ProviderConfig,
    *,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ProviderConfig:
    """Apply environment and explicit overrides to a document entry.

    Precedence, highest first: explicit override, environment variable,
    document value. Adapter defaults fill whatever is still missing when
    the adapter is constructed.
    """
    env = _environ(env)
    changes: Dict[str, Any] = {}

    for field_name, env_key in PROVIDER_ENV_OVERRIDES.get(config.name, {}).items():
        value = env.get(env_key)
        if value:
            changes[field_name] = value

    credential = config.resolve_api_key(env)
    if credential:
        changes["api_key"] = credential

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in {"model", "endpoint", "api_key", "timeout_ms"}:
            raise ConfigError(f"Unsupported provider override: {key}")
        changes[key] = value

    return replace(config, **changes) if changes else config


@dataclass(frozen=True)
class LLMSettings:
    """Provider configuration document: default provider, providers and fallbacks."""

    default_provider: Optional[str]
    providers: Dict[str, ProviderConfig]
    fallback_providers: List[str] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None

    @classmethod
    def load(cls, path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> "LLMSettings":
        """Read the YAML document and apply the ``LLM_PROVIDER`` override."""
        path = Path(path) if path is not None else DEFAULT_LLM_CONFIG_PATH
        if not path.exists():
            raise ConfigError(f"LLM configuration file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"LLM configuration file is not valid YAML: {path}") from exc
        return cls.from_mapping(data, env=env, source=str(path))

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        env: Optional[Mapping[str, str]] = None,
        source: Optional[str] = None,
    ) -> "LLMSettings":
        env = _environ(env)
        if not isinstance(data, Mapping):
            raise ConfigError("LLM configuration document must be a mapping")

        raw_providers = data.get("providers") or {}
        if not isinstance(raw_providers, Mapping):
            raise ConfigError("'providers' must be a mapping of name to provider configuration")
        providers = {
            name: ProviderConfig.from_mapping(name, entry) for name, entry in raw_providers.items()
        }

        fallback = data.get("fallback_providers") or []
        if isinstance(fallback, str):
            fallback = [fallback]

        return cls(
            default_provider=env.get("LLM_PROVIDER") or data.get("default_provider"),
            providers=providers,
            fallback_providers=[str(name) for name in fallback],
            settings=dict(data.get("settings") or {}),
            source=source,
        )

    def available_providers(self) -> List[str]:
        return list(self.providers)

    def provider_config(
        self,
        name: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> ProviderConfig:
        """Return the resolved configuration for ``name``."""
        config = self.providers.get(name)
        if config is None:
            raise ConfigError(f"Provider configuration not found: {name}")
        return resolve_provider_config(config, env=env, overrides=overrides)

    def current_provider_config(
        self,
        *,
        provider: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> ProviderConfig:
        """Resolve the active provider; an explicit ``provider`` wins over the document."""
        name = provider or self.default_provider
        if not name:
            raise ConfigError("default_provider is required")
        return self.provider_config(name, env=env, overrides=overrides)

    def fallback_configs(self, *, env: Optional[Mapping[str, str]] = None) -> List[ProviderConfig]:
        """Resolved fallback configurations in document order, skipping unknown names."""
        return [
            self.provider_config(name, env=env)
            for name in self.fallback_providers
            if name in self.providers
        ]

    def validate(self) -> ConfigValidation:
        errors: List[str] = []
        if not self.default_provider:
            errors.append("default_provider is required")
        if not self.providers:
            errors.append("At least one provider configuration is required")
        if self.default_provider and self.default_provider not in self.providers:
            errors.append(f"Default provider '{self.default_provider}' not found in providers")
        for name, config in self.providers.items():
            if not config.type:
                errors.append(f"Provider '{name}' missing type")
        for name in self.fallback_providers:
            if name not in self.providers:
                errors.append(f"Fallback provider '{name}' not found in providers")
        return ConfigValidation.from_errors(errors)

    def summary(self, env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        return {
            "config_path": self.source,
            "default_provider": self.default_provider,
            "available_providers": self.available_providers(),
            "fallback_providers": list(self.fallback_providers),
            "settings": dict(self.settings),
            "providers": {name: config.summary(env) for name, config in self.providers.items()},
        }


@dataclass(frozen=True)
class AppConfig:
    """Runtime configuration for the persona gateway."""

    environment: str
    log_level: str
    llm_config_path: Path
    persona_dir: Path
    provider_override: Optional[str]
    metrics_backend: str
    metrics_port: Optional[int]
    health_check_timeout: float
    temperature: float
    max_tokens: int
    top_p: float
    log_provider_usage: bool = False
    default_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Build configuration from environment variables."""
        env = _environ(env)

        environment = env.get("APP_ENV", "development").strip().lower()
        log_level = env.get("LOG_LEVEL", "DEBUG" if environment == "development" else "INFO").upper()
        llm_config_path = Path(env.get("LLM_CONFIG_PATH") or DEFAULT_LLM_CONFIG_PATH)
        persona_dir = Path(env.get("PERSONA_CONFIG_DIR") or DEFAULT_PERSONA_DIR)
        provider_override = env.get("LLM_PROVIDER") or None

        try:
            metrics_backend = env.get("METRICS_BACKEND", "logging").strip().lower()
            metrics_port_raw = env.get("METRICS_PORT")
            metrics_port = int(metrics_port_raw) if metrics_port_raw else None
            health_check_timeout = int(env.get("HEALTH_CHECK_TIMEOUT", "5000")) / 1000.0
            temperature = float(env.get("LLM_TEMPERATURE", "0.7"))
            max_tokens = int(env.get("LLM_MAX_TOKENS", "300"))
            top_p = float(env.get("LLM_TOP_P", "0.9"))
            log_provider_usage = _as_bool(env.get("LOG_PROVIDER_USAGE", "false"))
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        if environment not in {"development", "production", "test"}:
            raise ConfigError("APP_ENV must be 'development', 'production' or 'test'")
        if metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("METRICS_BACKEND must be 'logging' or 'prometheus'")
        if metrics_port is not None and metrics_port < 0:
            raise ConfigError("METRICS_PORT must be >= 0 when provided")
        if health_check_timeout <= 0:
            raise ConfigError("HEALTH_CHECK_TIMEOUT must be > 0")
        if max_tokens < 1:
            raise ConfigError("LLM_MAX_TOKENS must be >= 1")
        if not 0.0 <= temperature <= 2.0:
            raise ConfigError("LLM_TEMPERATURE must be between 0 and 2")
        if not 0.0 < top_p <= 1.0:
            raise ConfigError("LLM_TOP_P must be in (0, 1]")

        default_options: Dict[str, Any] = {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
        }

        return cls(
            environment=environment,
            log_level=log_level,
            llm_config_path=llm_config_path,
            persona_dir=persona_dir,
            provider_override=provider_override,
            metrics_backend=metrics_backend,
            metrics_port=metrics_port,
            health_check_timeout=health_check_timeout,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
            log_provider_usage=log_provider_usage,
            default_options=default_options,
        )

    def with_document_settings(
        self,
        settings: Mapping[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        """Fill values the environment left unset from the document's ``settings`` block."""
        env = _environ(env)
        changes: Dict[str, Any] = {}

        timeout = settings.get("health_check_timeout")
        if timeout is not None and not env.get("HEALTH_CHECK_TIMEOUT"):
            try:
                changes["health_check_timeout"] = int(timeout) / 1000.0
            except (TypeError, ValueError) as exc:
                raise ConfigError("settings.health_check_timeout must be an integer number of milliseconds") from exc
            if changes["health_check_timeout"] <= 0:
                raise ConfigError("settings.health_check_timeout must be > 0")

        usage = settings.get("log_provider_usage")
        if usage is not None and not env.get("LOG_PROVIDER_USAGE"):
            changes["log_provider_usage"] = usage if isinstance(usage, bool) else _as_bool(str(usage))

        return replace(self, **changes) if changes else self

    def merged_options(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Return default generation options combined with per-call overrides."""
        merged = dict(self.default_options)
        if overrides:
            merged.update({k: v for k, v in overrides.items() if v is not None})
        return merged


def environment_warnings(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Report provider-related environment variables that look incomplete."""
    env = _environ(env)
    warnings: List[str] = []
    provider = (env.get("LLM_PROVIDER") or "").lower()
    environment = (env.get("APP_ENV") or "development").lower()

    if not provider:
        warnings.append("LLM_PROVIDER not set, using default from config")
    elif provider.startswith("openai") and not env.get("OPENAI_API_KEY"):
        warnings.append("OPENAI_API_KEY is not set; the OpenAI provider needs a credential")
    elif provider == "ollama" and not env.get("OLLAMA_URL"):
        warnings.append("OLLAMA_URL not set, using default from config")

    if environment == "production" and provider == "ollama" and not env.get("OLLAMA_URL"):
        warnings.append("OLLAMA_URL should be explicitly set in production")
    return warnings
