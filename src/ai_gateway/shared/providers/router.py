"""Fallback router — tries providers in order until one succeeds.

Start → TryingProvider(i) → Success | NextProvider | AllExhausted

* A pinned request is tried against that provider only, even when its
  circuit is open.
* Otherwise candidates are the registry's fallback order minus providers
  whose circuit is open.  A half-open provider is admitted only while its
  single trial slot is free; the slot is given back if the provider is then
  skipped or the call is cancelled.
* A local rate-limit rejection skips the provider without touching its
  health; a failed provider (retries exhausted or fatal error) counts one
  circuit failure.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from ai_gateway.domain.entities import GenerationRequest
from ai_gateway.domain.exceptions import (
    AllProvidersFailedError,
    LocalRateLimitExceededError,
    ProviderError,
)
from ai_gateway.shared.observability.metrics import AI_RATE_LIMIT_SKIPS
from ai_gateway.shared.providers.health import ProviderHealthBoard
from ai_gateway.shared.providers.rate_limiter import RateLimiter
from ai_gateway.shared.providers.registry import ProviderRegistry
from ai_gateway.shared.providers.retry import RetryExecutor
from ai_gateway.shared.providers.types import ProviderConfig, ProviderResponse

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RouteResult:
    provider: str
    model: str
    response: ProviderResponse
    attempted: tuple[str, ...] = field(default_factory=tuple)


class FallbackRouter:
    def __init__(
        self,
        registry: ProviderRegistry,
        rate_limiter: RateLimiter,
        health: ProviderHealthBoard,
        executor: RetryExecutor,
        *,
        fallback_enabled: bool = True,
    ) -> None:
        self._registry = registry
        self._rate_limiter = rate_limiter
        self._health = health
        self._executor = executor
        self._fallback_enabled = fallback_enabled

    def candidates(self, request: GenerationRequest) -> list[ProviderConfig]:
        """Ordered providers currently eligible for ``request``.

        Read-only view: no trial slot is taken.  Raises
        ``ProviderNotFoundError`` for an unknown override.
        """
        if request.provider is not None:
            return [self._registry.get(request.provider)]

        chain: list[ProviderConfig] = []
        for name in self._registry.fallback_order():
            if not self._health.is_available(name):
                logger.debug("provider_circuit_open_skipped", provider=name)
                continue
            chain.append(self._registry.get(name))
            if not self._fallback_enabled:
                break
        return chain

    def _chain(self, request: GenerationRequest) -> list[ProviderConfig]:
        if request.provider is not None:
            return [self._registry.get(request.provider)]
        return [self._registry.get(name) for name in self._registry.fallback_order()]

    async def route(self, request: GenerationRequest, *, fingerprint: str = "") -> RouteResult:
        pinned = request.provider is not None
        chain = self._chain(request)
        errors: dict[str, ProviderError] = {}
        skipped: list[str] = []
        attempted: list[str] = []

        admitted_any = False
        for cfg in chain:
            if not self._fallback_enabled and admitted_any:
                break
            trial = False
            if not pinned:
                admitted, trial = self._health.try_acquire(cfg.name)
                if not admitted:
                    logger.debug("provider_circuit_open_skipped", provider=cfg.name)
                    continue
            admitted_any = True

            try:
                self._rate_limiter.acquire(cfg.name)
            except LocalRateLimitExceededError as exc:
                if trial:
                    self._health.release_trial(cfg.name)
                skipped.append(cfg.name)
                AI_RATE_LIMIT_SKIPS.labels(provider=cfg.name).inc()
                logger.info("provider_skipped_rate_limited", provider=cfg.name, reason=exc.code)
                continue

            attempted.append(cfg.name)
            model = request.model or cfg.default_model
            try:
                response = await self._executor.call(
                    cfg, request, model=model, fingerprint=fingerprint
                )
            except ProviderError as exc:
                errors[cfg.name] = exc
                self._health.record_failure(cfg.name, exc.message)
                logger.warning(
                    "provider_exhausted_trying_next",
                    provider=cfg.name,
                    error=exc.message,
                    retryable=exc.retryable,
                )
                continue
            except asyncio.CancelledError:
                if trial:
                    self._health.release_trial(cfg.name)
                raise

            self._health.record_success(cfg.name)
            if len(attempted) > 1 or skipped:
                logger.info(
                    "provider_failover_success",
                    provider=cfg.name,
                    failed_providers=list(errors),
                    skipped_providers=skipped,
                )
            return RouteResult(
                provider=cfg.name,
                model=response.model or model,
                response=response,
                attempted=tuple(attempted),
            )

        logger.error(
            "all_providers_failed",
            attempted=attempted,
            skipped=skipped,
            candidates=[c.name for c in chain],
        )
        raise AllProvidersFailedError(errors, skipped=skipped)
