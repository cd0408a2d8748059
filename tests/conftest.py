"""Shared test fixtures for the persona gateway."""

import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from persona_gateway.personas import InMemoryPersonaStore, PersonaConfig  # noqa: E402
from persona_gateway.providers.base import GenerationResult, ProviderError, Usage  # noqa: E402

_GATEWAY_ENV = (
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_PROVIDER_USAGE",
    "LLM_PROVIDER",
    "LLM_CONFIG_PATH",
    "PERSONA_CONFIG_DIR",
    "LLM_TEMPERATURE",
    "LLM_MAX_TOKENS",
    "LLM_TOP_P",
    "HEALTH_CHECK_TIMEOUT",
    "METRICS_BACKEND",
    "METRICS_PORT",
    "OLLAMA_URL",
    "OLLAMA_MODEL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep developer shells and .env files from leaking into tests."""
    for key in _GATEWAY_ENV:
        monkeypatch.delenv(key, raising=False)


class StubProvider:
    """In-memory provider returning a canned completion."""

    def __init__(self, text="Food trucks need a mobile vendor license.", error=None):
        self.text = text
        self.error = error
        self.prompts = []
        self.options = []
        self.closed = False

    async def generate_response(self, prompt, options=None):
        self.prompts.append(prompt)
        self.options.append(options)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            text=self.text,
            provider_name="stub",
            model_name="stub-model",
            usage=Usage(prompt_units=42, completion_units=7),
        )

    async def health_check(self):
        return self.error is None

    def get_provider_name(self):
        return "Stub (stub-model)"

    def get_config_summary(self):
        return {"name": "stub", "type": "stub", "has_api_key": False}

    async def aclose(self):
        self.closed = True


@pytest.fixture
def persona_store():
    return InMemoryPersonaStore(
        {
            "business-licensing": PersonaConfig(
                persona="business licensing",
                system_prompt="You help people with business licenses and permits.",
            ),
        }
    )


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def failing_provider():
    return StubProvider(error=ProviderError("connection_error", "backend down", True))


@pytest.fixture
def make_provider():
    """Factory for stub providers with custom text or error."""
    return StubProvider
