"""Multi-provider AI request gateway.

Rate limiting, token budgeting, response caching, retries, circuit
breaking and ordered fallback across upstream AI providers.
"""

from ai_gateway.shared.providers.types import (
    CircuitState,
    GatewayConfig,
    ProviderConfig,
    ProviderHealth,
    ProviderResponse,
)
from ai_gateway.shared.providers.registry import ProviderRegistry
from ai_gateway.shared.providers.rate_limiter import RateLimiter, TokenBucket
from ai_gateway.shared.providers.budget import TokenBudgetTracker, estimate_tokens
from ai_gateway.shared.providers.cache import ResponseCache, fingerprint
from ai_gateway.shared.providers.circuit_breaker import CircuitBreaker
from ai_gateway.shared.providers.health import ProviderHealthBoard
from ai_gateway.shared.providers.retry import RetryExecutor
from ai_gateway.shared.providers.router import FallbackRouter, RouteResult
from ai_gateway.shared.providers.request_log import RequestLogger
from ai_gateway.shared.providers.gateway import AIRequestGateway

__all__ = [
    "AIRequestGateway",
    "CircuitBreaker",
    "CircuitState",
    "FallbackRouter",
    "GatewayConfig",
    "ProviderConfig",
    "ProviderHealth",
    "ProviderHealthBoard",
    "ProviderRegistry",
    "ProviderResponse",
    "RateLimiter",
    "RequestLogger",
    "ResponseCache",
    "RetryExecutor",
    "RouteResult",
    "TokenBucket",
    "TokenBudgetTracker",
    "estimate_tokens",
    "fingerprint",
]
