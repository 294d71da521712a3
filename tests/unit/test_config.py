"""Unit tests for settings loading and gateway config derivation."""

from __future__ import annotations

import pydantic
import pytest

from ai_gateway.config import DEFAULT_PROVIDERS, Settings, build_gateway_config, get_settings
from ai_gateway.dependencies import get_cached_settings
from ai_gateway.domain.enums import DEFAULT_FALLBACK_ORDER

KEY_VARS = [f"{name}_API_KEY" for name in DEFAULT_PROVIDERS]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in KEY_VARS:
        monkeypatch.delenv(var, raising=False)
        monkeypatch.delenv(var.lower(), raising=False)
        monkeypatch.delenv(var.upper(), raising=False)


def _settings(**overrides) -> Settings:
    return get_settings(_env_file=None, **overrides)


class TestSettings:
    def test_every_default_provider_is_present(self):
        settings = _settings()
        assert set(settings.providers) == set(DEFAULT_PROVIDERS)
        gemini = settings.providers["gemini"]
        assert gemini.timeout_seconds == 60
        assert gemini.retry_attempts == 5
        assert gemini.retry_delay_ms == 2000
        assert settings.providers["openai"].default_model == "gpt-3.5-turbo"
        assert settings.fallback_order == DEFAULT_FALLBACK_ORDER

    def test_partial_override_keeps_other_defaults(self):
        settings = _settings(providers={"OpenAI": {"requestsPerMinute": 5}})
        openai = settings.providers["openai"]
        assert openai.requests_per_minute == 5
        assert openai.base_url == "https://api.openai.com/v1"

    def test_custom_provider_can_be_added(self):
        settings = _settings(
            providers={"local": {"base_url": "http://localhost:8080/v1", "default_model": "llama"}},
            fallback_provider_order="local, openai",
        )
        assert settings.providers["local"].default_model == "llama"
        assert settings.fallback_order == ("local", "openai")

    def test_api_key_fields_fill_provider_credentials(self):
        settings = _settings(anthropic_api_key="ak-123")
        assert settings.providers["anthropic"].api_key == "ak-123"
        assert settings.providers["openai"].api_key == ""

    def test_nested_env_vars(self, monkeypatch):
        monkeypatch.setenv("PROVIDERS__COHERE__TIMEOUT_SECONDS", "12")
        monkeypatch.setenv("COHERE_API_KEY", "co-key")
        settings = _settings()
        assert settings.providers["cohere"].timeout_seconds == 12
        assert settings.providers["cohere"].api_key == "co-key"

    def test_log_level_uppercased(self):
        assert _settings(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize("threshold", [0, 1.5])
    def test_alert_threshold_bounds(self, threshold):
        with pytest.raises(pydantic.ValidationError):
            _settings(token_budget_alert_threshold=threshold)

    def test_retry_attempts_must_be_positive(self):
        with pytest.raises(pydantic.ValidationError):
            _settings(providers={"openai": {"retry_attempts": 0}})


class TestBuildGatewayConfig:
    def test_only_enabled_providers_with_keys(self):
        settings = _settings(
            openai_api_key="sk",
            mistral_api_key="mk",
            providers={"mistral": {"enabled": False}},
        )
        config = build_gateway_config(settings)
        assert [p.name for p in config.providers] == ["openai"]

    def test_provider_settings_are_converted(self):
        settings = _settings(
            gemini_api_key="gk",
            cache_ttl_seconds=120,
            token_budget_monthly_limit=5_000,
            fallback_enabled=False,
        )
        config = build_gateway_config(settings)
        gemini = config.providers[0]
        assert gemini.name == "gemini"
        assert gemini.timeout_s == 60
        assert gemini.max_attempts == 5
        assert gemini.retry_base_delay_s == 2.0
        assert gemini.requests_per_minute == 60
        assert config.cache_ttl_seconds == 120.0
        assert config.token_budget_monthly_limit == 5_000
        assert config.fallback_enabled is False


class TestCachedSettings:
    def test_settings_are_built_once(self):
        get_cached_settings.cache_clear()
        try:
            first = get_cached_settings()
            assert get_cached_settings() is first
        finally:
            get_cached_settings.cache_clear()
