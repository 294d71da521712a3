"""Core types for the multi-provider gateway."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from ai_gateway.domain.enums import DEFAULT_FALLBACK_ORDER


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single provider.

    Attributes:
        name:                Unique key (e.g. "openai", "anthropic").
        base_url:            Base endpoint, without trailing slash.
        default_model:       Model used when the request has no override.
        api_key:             Credential sent upstream.
        timeout_s:           Bound on every individual attempt.
        max_attempts:        Total attempts per call, first try included.
        retry_base_delay_s:  Base of the exponential backoff.
        requests_per_minute: Local admission limit (0 = unlimited).
        metadata:            Provider-specific extras (API version, headers).
    """

    name: str
    base_url: str = ""
    default_model: str = ""
    api_key: str = field(default="", repr=False)
    timeout_s: float = 30.0
    max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    requests_per_minute: int = 60
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", self.name.strip().lower())
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.max_attempts < 1:
            raise ValueError(f"{self.name}: max_attempts must be >= 1")
        if self.timeout_s <= 0:
            raise ValueError(f"{self.name}: timeout_s must be positive")

    @property
    def has_key(self) -> bool:
        return bool(self.api_key.strip())


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable gateway configuration, built once at startup."""

    providers: tuple[ProviderConfig, ...] = ()
    fallback_enabled: bool = True
    fallback_order: tuple[str, ...] = DEFAULT_FALLBACK_ORDER
    cache_enabled: bool = True
    cache_ttl_seconds: float = 3600.0
    cache_max_entries: int = 10_000
    token_budget_enabled: bool = True
    token_budget_monthly_limit: int = 1_000_000
    token_budget_alert_threshold: float = 0.8
    circuit_failure_threshold: int = 5
    circuit_cooldown_s: float = 30.0
    retry_max_delay_s: float = 8.0
    retry_jitter_s: float = 1.0
    request_log_max_records: int = 10_000


@dataclass(frozen=True)
class ProviderResponse:
    """Normalized payload returned by a provider client.

    Usage fields are ``None`` when the provider does not report them.
    """

    content: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_usage(self) -> bool:
        return self.total_tokens is not None or (
            self.prompt_tokens is not None and self.completion_tokens is not None
        )


@dataclass
class ProviderHealth:
    """Read-only snapshot of a provider's circuit and failure counters."""

    provider: str
    circuit_state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    total_successes: int = 0
    total_failures: int = 0
    last_error: str | None = None
    rate_limit_available: int | None = None
