"""Provider registry exports."""

from .base import (
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
from .factory import (
    create_provider,
    create_provider_with_fallback,
    supported_providers,
    validate_config,
)
from .ollama import OllamaProvider
from .openai import OpenAIChatProvider

__all__ = [
    "BaseProvider",
    "GenerationOptions",
    "GenerationResult",
    "OllamaProvider",
    "OpenAIChatProvider",
    "ProviderAuthError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderProtocolError",
    "ProviderTransientError",
    "Usage",
    "create_provider",
    "create_provider_with_fallback",
    "supported_providers",
    "validate_config",
]
