"""Tests for provider construction and startup fallback."""

import pytest

from persona_gateway.config import ConfigError, ProviderConfig
from persona_gateway.providers import factory
from persona_gateway.providers.ollama import OllamaProvider
from persona_gateway.providers.openai import OpenAIChatProvider

OLLAMA = ProviderConfig(name="ollama", type="ollama", endpoint="http://localhost:11434", model="phi3:mini")
OPENAI = ProviderConfig(name="openai", type="openai", model="gpt-4o-mini", api_key_env="OPENAI_API_KEY")


def test_supported_providers():
    assert factory.supported_providers() == ["ollama", "openai"]


def test_create_provider_requires_type():
    with pytest.raises(ConfigError) as exc:
        factory.create_provider({"model": "phi3:mini"}, env={})

    assert "must include a type" in str(exc.value)


def test_create_provider_rejects_unknown_type():
    with pytest.raises(ConfigError) as exc:
        factory.create_provider({"type": "anthropic"}, env={})

    message = str(exc.value)
    assert "Unsupported provider type: anthropic" in message
    assert "ollama" in message and "openai" in message


def test_create_provider_builds_ollama():
    provider = factory.create_provider(OLLAMA, env={})

    assert isinstance(provider, OllamaProvider)
    assert provider.get_provider_name() == "Ollama (phi3:mini)"


def test_create_provider_builds_openai_with_env_key():
    provider = factory.create_provider(OPENAI, env={"OPENAI_API_KEY": "sk-env"})

    assert isinstance(provider, OpenAIChatProvider)


def test_create_provider_accepts_mapping():
    provider = factory.create_provider({"type": "ollama", "url": "http://ollama:11434"}, env={})

    assert isinstance(provider, OllamaProvider)


def test_validate_config_collects_all_errors():
    config = ProviderConfig(name="broken", type="ollama", timeout_ms=0)

    validation = factory.validate_config(config, env={})

    assert validation.is_valid is False
    assert validation.errors == [
        "Provider timeout must be a positive number of milliseconds",
        "Ollama provider requires a URL",
    ]


def test_validate_config_missing_openai_key():
    validation = factory.validate_config(OPENAI, env={})

    assert validation.errors == ["OpenAI provider requires an API key"]
    assert factory.validate_config(OPENAI, env={"OPENAI_API_KEY": "sk"}).is_valid


def test_invalid_config_error_names_type():
    with pytest.raises(ConfigError) as exc:
        factory.create_provider(OPENAI, env={})

    assert str(exc.value).startswith("Invalid openai provider configuration:")


def test_fallback_not_used_when_primary_succeeds():
    provider = factory.create_provider_with_fallback(OLLAMA, OPENAI, env={})

    assert isinstance(provider, OllamaProvider)


def test_fallback_used_in_order():
    broken = ProviderConfig(name="ollama", type="ollama")
    second = ProviderConfig(name="local", type="ollama", endpoint="http://backup:11434", model="llama3")

    provider = factory.create_provider_with_fallback(broken, [OPENAI, second], env={})

    assert provider.get_provider_name() == "Ollama (llama3)"


def test_fallback_single_config():
    broken = ProviderConfig(name="ollama", type="ollama")

    provider = factory.create_provider_with_fallback(broken, OPENAI, env={"OPENAI_API_KEY": "sk"})

    assert isinstance(provider, OpenAIChatProvider)


def test_primary_error_raised_without_fallback():
    with pytest.raises(ConfigError) as exc:
        factory.create_provider_with_fallback(ProviderConfig(name="ollama", type="ollama"), env={})

    assert "Ollama provider requires a URL" in str(exc.value)


def test_all_providers_failed():
    broken = ProviderConfig(name="ollama", type="ollama")

    with pytest.raises(ConfigError) as exc:
        factory.create_provider_with_fallback(broken, [OPENAI], env={})

    message = str(exc.value)
    assert message.startswith("All providers failed to initialize")
    assert "ollama:" in message and "openai:" in message


@pytest.mark.asyncio
async def test_provider_check_reports_health(monkeypatch, make_provider):
    stub = make_provider()
    monkeypatch.setitem(factory.SUPPORTED_PROVIDERS, "ollama", lambda config, env: stub)

    report = await factory.test_provider(OLLAMA, env={})

    assert report["success"] is True
    assert report["healthy"] is True
    assert report["provider"] == "Stub (stub-model)"
    assert stub.closed is True


@pytest.mark.asyncio
async def test_provider_check_reports_config_failure():
    report = await factory.test_provider(OPENAI, env={})

    assert report["success"] is False
    assert report["healthy"] is False
    assert "requires an API key" in report["error"]
    assert report["config"]["has_api_key"] is False


@pytest.mark.asyncio
async def test_provider_check_reports_unparseable_mapping():
    report = await factory.test_provider(
        {"name": "x", "type": "ollama", "url": "http://h", "timeout": "abc"}, env={}
    )

    assert report["success"] is False
    assert report["healthy"] is False
    assert "timeout must be an integer" in report["error"]
    assert report["config"] is None
