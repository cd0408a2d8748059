"""Tests for application and provider configuration handling."""

from pathlib import Path

import pytest

from persona_gateway.config import (
    DEFAULT_LLM_CONFIG_PATH,
    AppConfig,
    ConfigError,
    LLMSettings,
    ProviderConfig,
    environment_warnings,
    resolve_provider_config,
)


def _apply_env(monkeypatch, pairs):
    for key, value in pairs.items():
        monkeypatch.setenv(key, value)


def _document():
    return {
        "default_provider": "ollama",
        "providers": {
            "ollama": {"type": "ollama", "url": "http://localhost:11434", "model": "phi3:mini", "timeout": 120000},
            "openai": {"type": "openai", "model": "gpt-4o-mini", "apiKeyEnv": "MY_OPENAI_KEY"},
        },
        "fallback_providers": ["openai", "missing"],
    }


def test_config_from_env_with_defaults():
    """An empty environment produces a valid development configuration."""
    config = AppConfig.from_env({})

    assert config.environment == "development"
    assert config.log_level == "DEBUG"
    assert config.llm_config_path == DEFAULT_LLM_CONFIG_PATH
    assert config.provider_override is None
    assert config.metrics_backend == "logging"
    assert config.metrics_port is None
    assert config.health_check_timeout == pytest.approx(5.0)
    assert config.default_options == {"temperature": 0.7, "max_tokens": 300, "top_p": 0.9}


def test_config_from_env_overrides(monkeypatch, tmp_path):
    """Custom environment values should override defaults."""
    _apply_env(
        monkeypatch,
        {
            "APP_ENV": "production",
            "LLM_CONFIG_PATH": str(tmp_path / "llm.yaml"),
            "PERSONA_CONFIG_DIR": str(tmp_path),
            "LLM_PROVIDER": "openai",
            "METRICS_BACKEND": "prometheus",
            "METRICS_PORT": "9100",
            "HEALTH_CHECK_TIMEOUT": "2500",
            "LLM_TEMPERATURE": "0",
            "LLM_MAX_TOKENS": "128",
            "LOG_PROVIDER_USAGE": "true",
        },
    )

    config = AppConfig.from_env()

    assert config.environment == "production"
    assert config.log_level == "INFO"
    assert config.llm_config_path == Path(tmp_path / "llm.yaml")
    assert config.persona_dir == Path(tmp_path)
    assert config.provider_override == "openai"
    assert config.metrics_backend == "prometheus"
    assert config.metrics_port == 9100
    assert config.health_check_timeout == pytest.approx(2.5)
    assert config.temperature == 0.0
    assert config.log_provider_usage is True
    assert config.merged_options({"max_tokens": 50, "top_p": None}) == {
        "temperature": 0.0,
        "max_tokens": 50,
        "top_p": 0.9,
    }


@pytest.mark.parametrize(
    "env_key, value",
    [
        ("LLM_MAX_TOKENS", "0"),
        ("METRICS_BACKEND", "statsd"),
        ("APP_ENV", "staging"),
        ("LLM_TOP_P", "1.5"),
    ],
)
def test_config_validation_bounds(env_key, value):
    """Invalid values should trigger ConfigError naming the variable."""
    with pytest.raises(ConfigError) as exc:
        AppConfig.from_env({env_key: value})

    assert env_key in str(exc.value)


def test_config_rejects_non_numeric():
    with pytest.raises(ConfigError) as exc:
        AppConfig.from_env({"LLM_MAX_TOKENS": "lots"})

    assert "Invalid numeric configuration" in str(exc.value)


def test_provider_config_accepts_document_spellings():
    config = ProviderConfig.from_mapping(
        "openai",
        {"type": "OpenAI", "url": "https://proxy.example", "apiKey": "sk-doc", "timeout": "30000", "organization": "gov"},
    )

    assert config.type == "openai"
    assert config.endpoint == "https://proxy.example"
    assert config.api_key == "sk-doc"
    assert config.timeout_ms == 30000
    assert config.options == {"organization": "gov"}


def test_provider_config_summary_hides_credentials():
    config = ProviderConfig(name="openai", type="openai", model="gpt-4o-mini", api_key="sk-secret")

    summary = config.summary(env={})

    assert summary["has_api_key"] is True
    assert "api_key" not in summary
    assert "sk-secret" not in str(summary)


def test_api_key_precedence():
    config = ProviderConfig(name="openai", type="openai", api_key="from-doc", api_key_env="MY_KEY")

    assert config.resolve_api_key({"MY_KEY": "named", "OPENAI_API_KEY": "default"}) == "named"
    assert config.resolve_api_key({"OPENAI_API_KEY": "default"}) == "default"
    assert config.resolve_api_key({}) == "from-doc"


def test_resolution_precedence_override_env_document():
    base = ProviderConfig(name="ollama", type="ollama", endpoint="http://doc:11434", model="phi3:mini")
    env = {"OLLAMA_URL": "http://env:11434", "OLLAMA_MODEL": "llama3"}

    from_env = resolve_provider_config(base, env=env)
    overridden = resolve_provider_config(base, env=env, overrides={"model": "mistral"})
    document_only = resolve_provider_config(base, env={})

    assert from_env.endpoint == "http://env:11434"
    assert from_env.model == "llama3"
    assert overridden.endpoint == "http://env:11434"
    assert overridden.model == "mistral"
    assert document_only is base


def test_resolution_rejects_unknown_override():
    base = ProviderConfig(name="ollama", type="ollama", endpoint="http://doc:11434")

    with pytest.raises(ConfigError):
        resolve_provider_config(base, env={}, overrides={"temperature": 1})


def test_settings_from_mapping_and_fallbacks():
    settings = LLMSettings.from_mapping(_document(), env={})

    assert settings.default_provider == "ollama"
    assert settings.available_providers() == ["ollama", "openai"]
    assert [config.name for config in settings.fallback_configs(env={})] == ["openai"]

    validation = settings.validate()
    assert validation.is_valid is False
    assert "Fallback provider 'missing' not found in providers" in validation.errors


def test_settings_provider_selection_precedence():
    env = {"LLM_PROVIDER": "openai", "MY_OPENAI_KEY": "sk-env"}
    settings = LLMSettings.from_mapping(_document(), env=env)

    assert settings.current_provider_config(env=env).name == "openai"
    assert settings.current_provider_config(env=env).api_key == "sk-env"
    assert settings.current_provider_config(provider="ollama", env=env).name == "ollama"


def test_settings_unknown_provider():
    settings = LLMSettings.from_mapping(_document(), env={})

    with pytest.raises(ConfigError) as exc:
        settings.provider_config("anthropic", env={})

    assert "anthropic" in str(exc.value)


def test_settings_validate_collects_all_errors():
    settings = LLMSettings.from_mapping({"default_provider": "x", "providers": {"a": {"model": "m"}}}, env={})

    validation = settings.validate()

    assert validation.errors == [
        "Default provider 'x' not found in providers",
        "Provider 'a' missing type",
    ]


def test_settings_load_packaged_document():
    settings = LLMSettings.load(env={})

    assert settings.validate().is_valid
    assert settings.default_provider == "ollama"
    assert settings.providers["ollama"].endpoint == "http://localhost:11434"
    assert settings.summary(env={})["providers"]["openai"]["has_api_key"] is False


def test_settings_load_missing_file(tmp_path):
    with pytest.raises(ConfigError) as exc:
        LLMSettings.load(tmp_path / "absent.yaml")

    assert "not found" in str(exc.value)


def test_settings_load_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("providers: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigError):
        LLMSettings.load(path)


def test_environment_warnings():
    assert environment_warnings({}) == ["LLM_PROVIDER not set, using default from config"]
    assert environment_warnings({"LLM_PROVIDER": "openai"}) == [
        "OPENAI_API_KEY is not set; the OpenAI provider needs a credential"
    ]
    assert environment_warnings({"LLM_PROVIDER": "openai", "OPENAI_API_KEY": "sk"}) == []


def test_document_settings_fill_unset_values():
    config = AppConfig.from_env({})

    updated = config.with_document_settings({"health_check_timeout": 2000, "log_provider_usage": True}, env={})

    assert updated.health_check_timeout == pytest.approx(2.0)
    assert updated.log_provider_usage is True
    assert config.with_document_settings({}, env={}) is config


def test_environment_wins_over_document_settings():
    env = {"HEALTH_CHECK_TIMEOUT": "8000", "LOG_PROVIDER_USAGE": "false"}
    config = AppConfig.from_env(env)

    updated = config.with_document_settings({"health_check_timeout": 2000, "log_provider_usage": True}, env=env)

    assert updated.health_check_timeout == pytest.approx(8.0)
    assert updated.log_provider_usage is False


def test_document_settings_rejects_bad_timeout():
    with pytest.raises(ConfigError):
        AppConfig.from_env({}).with_document_settings({"health_check_timeout": "soon"}, env={})


def test_resolved_credential_not_in_repr():
    config = ProviderConfig(name="openai", type="openai", api_key_env="MY_KEY")

    resolved = resolve_provider_config(config, env={"MY_KEY": "sk-very-secret"})

    assert resolved.api_key == "sk-very-secret"
    assert "sk-very-secret" not in repr(resolved)
