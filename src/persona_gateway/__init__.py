"""Persona Gateway - persona-scoped LLM chat with swappable providers and prompt injection defense."""

__version__ = "0.1.0"

from .config import AppConfig, ConfigError  # noqa: E402,F401
from .runtime import GatewayRuntime  # noqa: E402,F401

__all__ = ["AppConfig", "ConfigError", "GatewayRuntime", "__version__"]
