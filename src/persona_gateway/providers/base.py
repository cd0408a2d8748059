"""Provider abstractions for LLM integrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 300
DEFAULT_TOP_P = 0.9
HEALTH_CHECK_TIMEOUT = 5.0


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling options passed to every provider adapter."""

    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    top_p: float = DEFAULT_TOP_P
    stop: Optional[List[str]] = None

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None) -> "GenerationOptions":
        """Build options from a loose mapping, ignoring ``None`` values."""
        options = options or {}

        def _pick(*keys: str) -> Any:
            for key in keys:
                value = options.get(key)
                if value is not None:
                    return value
            return None

        temperature = _pick("temperature")
        max_tokens = _pick("max_tokens", "maxTokens", "num_predict")
        top_p = _pick("top_p", "topP")
        stop = _pick("stop", "stop_sequences", "stopSequences")
        return cls(
            temperature=DEFAULT_TEMPERATURE if temperature is None else float(temperature),
            max_tokens=DEFAULT_MAX_TOKENS if max_tokens is None else int(max_tokens),
            top_p=DEFAULT_TOP_P if top_p is None else float(top_p),
            stop=([stop] if isinstance(stop, str) else list(stop)) if stop else None,
        )


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by a backend."""

    prompt_units: int = 0
    completion_units: int = 0

    @classmethod
    def from_counts(cls, prompt: Any, completion: Any) -> "Usage":
        return cls(prompt_units=int(prompt or 0), completion_units=int(completion or 0))

    def as_dict(self) -> Dict[str, int]:
        return {
            "prompt_units": self.prompt_units,
            "completion_units": self.completion_units,
            "total_units": self.prompt_units + self.completion_units,
        }


@dataclass
class GenerationResult:
    """Normalized provider output."""

    text: str
    provider_name: str
    model_name: str
    usage: Usage = field(default_factory=Usage)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.text = (self.text or "").strip()


class ProviderError(Exception):
    """Standard error raised by provider adapters."""

    def __init__(self, code: str, message: str, retryable: bool = False, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.details = details or {}


class _CategorizedProviderError(ProviderError):
    CODE = "provider_error"
    RETRYABLE = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(self.CODE, message, self.RETRYABLE, details=details)


class ProviderConnectionError(_CategorizedProviderError):
    """Backend could not be reached."""

    CODE = "connection_error"
    RETRYABLE = True


class ProviderAuthError(_CategorizedProviderError):
    """Backend rejected the configured credential."""

    CODE = "auth_error"


class ProviderTransientError(_CategorizedProviderError):
    """Rate limit, timeout or server-side failure; safe to fail over."""

    CODE = "transient_error"
    RETRYABLE = True


class ProviderProtocolError(_CategorizedProviderError):
    """Backend answered with something that is not a usable completion."""

    CODE = "protocol_error"


class BaseProvider(Protocol):
    """Protocol describing provider behaviour."""

    async def generate_response(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """Produce a completion for the fully assembled prompt."""

    async def health_check(self) -> bool:
        """Return True when the backend answers a lightweight liveness check."""

    def get_provider_name(self) -> str:
        """Human readable ``"<Backend> (<model>)"`` label."""

    def get_config_summary(self) -> Dict[str, Any]:
        """Configuration with credentials replaced by ``has_api_key``."""

    async def aclose(self) -> None:  # pragma: no cover - optional hook
        """Optional async cleanup hook."""
