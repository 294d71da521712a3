"""AI Request Gateway — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel, to_snake
from pydantic_settings import BaseSettings, SettingsConfigDict

from ai_gateway.domain.enums import DEFAULT_FALLBACK_ORDER, CacheBackend, LLMProvider
from ai_gateway.shared.providers.types import GatewayConfig, ProviderConfig

logger = structlog.get_logger(__name__)


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ProviderSettings(BaseModel):
    """Per-provider options. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    base_url: str = ""
    default_model: str = ""
    api_key: str = Field(default="", repr=False)
    timeout_seconds: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    requests_per_minute: int = Field(default=60, ge=0)
    enabled: bool = True


DEFAULT_PROVIDERS: dict[str, dict[str, Any]] = {
    LLMProvider.OPENAI.value: {
        "base_url": "https://api.openai.com/v1",
        "default_model": "gpt-3.5-turbo",
        "requests_per_minute": 60,
    },
    LLMProvider.ANTHROPIC.value: {
        "base_url": "https://api.anthropic.com/v1",
        "default_model": "claude-3-sonnet-20240229",
        "requests_per_minute": 30,
    },
    LLMProvider.GEMINI.value: {
        "base_url": "https://generativelanguage.googleapis.com/v1",
        "default_model": "gemini-1.5-flash",
        "timeout_seconds": 60,
        "retry_attempts": 5,
        "retry_delay_ms": 2000,
        "requests_per_minute": 60,
    },
    LLMProvider.GROK.value: {
        "base_url": "https://api.grok.x.com/v1",
        "default_model": "grok-1",
        "requests_per_minute": 20,
    },
    LLMProvider.HUGGINGFACE.value: {
        "base_url": "https://api-inference.huggingface.co/models",
        "default_model": "meta-llama/Llama-2-70b-chat-hf",
        "timeout_seconds": 60,
        "requests_per_minute": 10,
    },
    LLMProvider.OPENROUTER.value: {
        "base_url": "https://openrouter.ai/api/v1",
        "default_model": "openai/gpt-3.5-turbo",
        "requests_per_minute": 60,
    },
    LLMProvider.MISTRAL.value: {
        "base_url": "https://api.mistral.ai/v1",
        "default_model": "mistral-large-latest",
        "requests_per_minute": 30,
    },
    LLMProvider.DEEPSEEK.value: {
        "base_url": "https://api.deepseek.com/v1",
        "default_model": "deepseek-chat",
        "requests_per_minute": 20,
    },
    LLMProvider.COHERE.value: {
        "base_url": "https://api.cohere.ai/v1",
        "default_model": "command",
        "requests_per_minute": 30,
    },
}


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "ai-request-gateway"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Providers ────────────────────────────────────────────
    providers: dict[str, ProviderSettings] = Field(default_factory=dict, validate_default=True)

    # Credentials, named as the upstream vendors document them
    openai_api_key: str = Field(default="", repr=False)
    anthropic_api_key: str = Field(default="", repr=False)
    gemini_api_key: str = Field(default="", repr=False)
    grok_api_key: str = Field(default="", repr=False)
    huggingface_api_key: str = Field(default="", repr=False)
    openrouter_api_key: str = Field(default="", repr=False)
    mistral_api_key: str = Field(default="", repr=False)
    deepseek_api_key: str = Field(default="", repr=False)
    cohere_api_key: str = Field(default="", repr=False)

    # ── Fallback ─────────────────────────────────────────────
    fallback_enabled: bool = True
    fallback_provider_order: str = ",".join(DEFAULT_FALLBACK_ORDER)

    # ── Cache ────────────────────────────────────────────────
    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(default=3600, gt=0)
    cache_max_entries: int = Field(default=10_000, gt=0)
    cache_backend: CacheBackend = CacheBackend.MEMORY
    redis_url: str = ""
    redis_max_connections: int = 50

    # ── Token budget ─────────────────────────────────────────
    token_budget_enabled: bool = True
    token_budget_monthly_limit: int = Field(default=1_000_000, gt=0)
    token_budget_alert_threshold: float = Field(default=0.8, gt=0, le=1)

    # ── Resilience ───────────────────────────────────────────
    circuit_breaker_failure_threshold: int = Field(default=5, ge=1)
    circuit_breaker_cooldown_seconds: float = Field(default=30.0, gt=0)
    retry_max_delay_seconds: float = Field(default=8.0, gt=0)
    retry_jitter_seconds: float = Field(default=1.0, ge=0)

    # ── Observability ────────────────────────────────────────
    request_log_max_records: int = Field(default=10_000, gt=0)
    prometheus_enabled: bool = True

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @property
    def fallback_order(self) -> tuple[str, ...]:
        return tuple(
            name.strip().lower()
            for name in self.fallback_provider_order.split(",")
            if name.strip()
        )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("providers", mode="before")
    @classmethod
    def _merge_provider_defaults(cls, v: Any) -> dict[str, Any]:
        """Overlay partial per-provider overrides on the built-in defaults."""
        merged: dict[str, dict[str, Any]] = {name: dict(opts) for name, opts in DEFAULT_PROVIDERS.items()}
        for name, opts in (v or {}).items():
            key = str(name).strip().lower()
            if isinstance(opts, ProviderSettings):
                opts = opts.model_dump(exclude_unset=True)
            merged.setdefault(key, {}).update({to_snake(k): val for k, val in opts.items()})
        return merged

    @model_validator(mode="after")
    def _apply_credentials(self) -> Settings:
        for name, provider in self.providers.items():
            if not provider.api_key:
                provider.api_key = getattr(self, f"{name}_api_key", "") or ""
        if self.cache_backend == CacheBackend.REDIS and not self.redis_url:
            logger.warning("cache_backend_redis_without_url")
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)


def build_gateway_config(settings: Settings) -> GatewayConfig:
    """Immutable gateway configuration. Only enabled providers with a key are registered."""
    providers: list[ProviderConfig] = []
    for name, opts in settings.providers.items():
        if not opts.enabled:
            continue
        if not opts.api_key:
            logger.info("provider_skipped_no_api_key", provider=name)
            continue
        providers.append(
            ProviderConfig(
                name=name,
                base_url=opts.base_url,
                default_model=opts.default_model,
                api_key=opts.api_key,
                timeout_s=opts.timeout_seconds,
                max_attempts=opts.retry_attempts,
                retry_base_delay_s=opts.retry_delay_ms / 1000,
                requests_per_minute=opts.requests_per_minute,
            )
        )

    return GatewayConfig(
        providers=tuple(providers),
        fallback_enabled=settings.fallback_enabled,
        fallback_order=settings.fallback_order,
        cache_enabled=settings.cache_enabled,
        cache_ttl_seconds=float(settings.cache_ttl_seconds),
        cache_max_entries=settings.cache_max_entries,
        token_budget_enabled=settings.token_budget_enabled,
        token_budget_monthly_limit=settings.token_budget_monthly_limit,
        token_budget_alert_threshold=settings.token_budget_alert_threshold,
        circuit_failure_threshold=settings.circuit_breaker_failure_threshold,
        circuit_cooldown_s=settings.circuit_breaker_cooldown_seconds,
        retry_max_delay_s=settings.retry_max_delay_seconds,
        retry_jitter_s=settings.retry_jitter_seconds,
        request_log_max_records=settings.request_log_max_records,
    )
