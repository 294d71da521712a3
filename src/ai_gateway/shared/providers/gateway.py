"""AI request gateway — the single ``generate`` entry-point for chat handling.

Composes the registry, rate limiter, token budget, response cache, circuit
breakers, retry executor, fallback router and request logger from one
immutable ``GatewayConfig``::

    gateway = AIRequestGateway(config, clients, event_bus=bus)
    result = await gateway.generate("hello", session_id="s-1")

Flow: cache lookup → budget reservation → fallback routing → commit actual
tokens → cache store.  Any failure or cancellation after the reservation
releases it, so a request that never produced a result costs nothing.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import structlog

from ai_gateway.adapters.outbound.cache import MemoryCacheAdapter
from ai_gateway.domain.entities import CacheEntry, GenerationRequest, GenerationResult
from ai_gateway.domain.events import ProviderCircuitOpenedEvent
from ai_gateway.domain.exceptions import CacheEntryNotFoundError, ProviderNotFoundError
from ai_gateway.domain.value_objects import BudgetSnapshot, TokenUsage
from ai_gateway.ports.outbound import CachePort, EventBusPort, ProviderClient
from ai_gateway.shared.observability.metrics import AI_BUDGET_USAGE_RATIO, AI_CACHE_LOOKUPS
from ai_gateway.shared.providers.budget import CHARS_PER_TOKEN, TokenBudgetTracker, estimate_tokens
from ai_gateway.shared.providers.cache import ResponseCache, fingerprint
from ai_gateway.shared.providers.health import ProviderHealthBoard
from ai_gateway.shared.providers.rate_limiter import RateLimiter
from ai_gateway.shared.providers.registry import ProviderRegistry
from ai_gateway.shared.providers.request_log import RequestLogger
from ai_gateway.shared.providers.retry import RetryExecutor, SleepFn
from ai_gateway.shared.providers.router import FallbackRouter
from ai_gateway.shared.providers.types import GatewayConfig, ProviderHealth, ProviderResponse

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AIRequestGateway:
    def __init__(
        self,
        config: GatewayConfig,
        clients: Mapping[str, ProviderClient],
        *,
        cache_backend: CachePort | None = None,
        event_bus: EventBusPort | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        budget_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._event_bus = event_bus
        self._clients = dict(clients)

        self._registry = ProviderRegistry(config.providers, fallback_order=config.fallback_order)
        missing = [name for name in self._registry.names() if name not in self._clients]
        if missing:
            raise ValueError(f"No provider client registered for: {', '.join(missing)}")

        self._request_logger = RequestLogger(
            max_records=config.request_log_max_records,
            event_bus=event_bus,
        )
        self._rate_limiter = RateLimiter(config.providers, clock=clock)
        self._health = ProviderHealthBoard(
            self._registry.names(),
            failure_threshold=config.circuit_failure_threshold,
            cooldown_seconds=config.circuit_cooldown_s,
            clock=clock,
            on_open=self._on_circuit_open,
        )
        self._budget = TokenBudgetTracker(
            config.token_budget_monthly_limit,
            alert_threshold=config.token_budget_alert_threshold,
            enabled=config.token_budget_enabled,
            clock=budget_clock,
            on_alert=self._request_logger.record_budget_alert,
        )
        if cache_backend is None:
            cache_backend = MemoryCacheAdapter(max_entries=config.cache_max_entries)
        self._cache = ResponseCache(
            cache_backend,
            ttl_seconds=config.cache_ttl_seconds,
            max_tracked=config.cache_max_entries,
            clock=wall_clock,
        )
        self._executor = RetryExecutor(
            self._clients,
            max_delay_s=config.retry_max_delay_s,
            jitter_s=config.retry_jitter_s,
            sleep=sleep,
            on_attempt=self._request_logger.record,
        )
        self._router = FallbackRouter(
            self._registry,
            self._rate_limiter,
            self._health,
            self._executor,
            fallback_enabled=config.fallback_enabled,
        )

        logger.info(
            "ai_gateway_initialized",
            providers=list(self._registry.names()),
            fallback_order=list(self._registry.fallback_order()),
            fallback_enabled=config.fallback_enabled,
            cache_enabled=config.cache_enabled,
            token_budget_enabled=config.token_budget_enabled,
        )

    # ── Main entry-point ─────────────────────────────────────
    async def generate(
        self,
        prompt: str,
        *,
        session_id: str,
        context_rule_id: str | None = None,
        knowledge_base_ids: Sequence[str] = (),
        provider: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        metadata: dict[str, Any] | None = None,
    ) -> GenerationResult:
        request = GenerationRequest(
            prompt=prompt,
            session_id=session_id,
            context_rule_id=context_rule_id,
            knowledge_base_ids=tuple(knowledge_base_ids),
            provider=provider,
            model=model,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            metadata=metadata or {},
        )
        return await self.execute(request)

    async def execute(self, request: GenerationRequest) -> GenerationResult:
        """Run one request to its single terminal outcome.

        Raises:
            BudgetExceededError: the reservation would exceed the monthly limit.
            AllProvidersFailedError: every candidate failed or was skipped.
            ProviderNotFoundError: the pinned provider is not configured.
        """
        start = time.monotonic()
        fp = fingerprint(request, self._registry)
        log = logger.bind(
            request_id=request.request_id,
            session_id=request.session_id,
            fingerprint=fp[:12],
        )

        if self._config.cache_enabled:
            entry = await self._cache.get(fp)
            if entry is not None:
                AI_CACHE_LOOKUPS.labels(result="hit").inc()
                log.info("ai_cache_hit", provider=entry.result.provider, model=entry.result.model)
                return replace(
                    entry.result,
                    cached=True,
                    processing_time_ms=self._elapsed_ms(start),
                    fingerprint=fp,
                    session_id=request.session_id,
                )
            AI_CACHE_LOOKUPS.labels(result="miss").inc()

        if request.provider is not None and request.provider not in self._registry:
            raise ProviderNotFoundError(request.provider)

        estimated = estimate_tokens(request)
        reservation = self._budget.reserve(estimated)
        self._observe_budget()
        try:
            routed = await self._router.route(request, fingerprint=fp)
        except BaseException:
            self._budget.release(reservation)
            self._observe_budget()
            raise

        usage = self._usage(routed.response, estimated)
        self._budget.commit(reservation, usage.total)
        self._observe_budget()

        result = GenerationResult(
            content=routed.response.content,
            provider=routed.provider,
            model=routed.model,
            tokens=usage.total,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            processing_time_ms=self._elapsed_ms(start),
            cached=False,
            fingerprint=fp,
            session_id=request.session_id,
        )
        if self._config.cache_enabled:
            await self._cache.put(fp, result)

        log.info(
            "ai_generation_completed",
            provider=result.provider,
            model=result.model,
            tokens=result.tokens,
            processing_time_ms=result.processing_time_ms,
            attempted=list(routed.attempted),
        )
        return result

    # ── Admin views ──────────────────────────────────────────
    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def request_logger(self) -> RequestLogger:
        return self._request_logger

    @property
    def config(self) -> GatewayConfig:
        return self._config

    def get_health(self, provider: str) -> ProviderHealth:
        cfg = self._registry.get(provider)
        health = self._health.snapshot(cfg.name)
        health.rate_limit_available = self._rate_limiter.available(cfg.name)
        return health

    def get_all_health(self) -> dict[str, ProviderHealth]:
        return {name: self.get_health(name) for name in self._registry.names()}

    def reset_provider(self, provider: str) -> None:
        cfg = self._registry.get(provider)
        self._health.reset(cfg.name)
        logger.info("provider_manually_reset", provider=cfg.name)

    def budget_snapshot(self) -> BudgetSnapshot:
        return self._budget.snapshot()

    def cache_stats(self) -> dict[str, Any]:
        stats = self._cache.stats()
        stats["enabled"] = self._config.cache_enabled
        return stats

    async def cache_entry(self, fp: str) -> tuple[CacheEntry, int]:
        """Live cache entry for ``fp`` with its hit count."""
        found = await self._cache.peek(fp)
        if found is None:
            raise CacheEntryNotFoundError(fp)
        return found

    async def clear_cache(self) -> int:
        return await self._cache.clear()

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()

    # ── Internals ────────────────────────────────────────────
    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.monotonic() - start) * 1000, 1)

    @staticmethod
    def _usage(response: ProviderResponse, estimated_prompt: int) -> TokenUsage:
        """Actual usage when the provider reports it, otherwise a length estimate."""
        if response.has_usage:
            prompt = response.prompt_tokens or 0
            if response.completion_tokens is not None:
                completion = response.completion_tokens
            else:
                completion = max(0, (response.total_tokens or 0) - prompt)
            return TokenUsage(prompt, completion)
        completion = math.ceil(len(response.content) / CHARS_PER_TOKEN)
        return TokenUsage(estimated_prompt, completion)

    def _observe_budget(self) -> None:
        AI_BUDGET_USAGE_RATIO.set(self._budget.snapshot().usage_fraction)

    def _on_circuit_open(self, provider: str, consecutive_failures: int) -> None:
        if self._event_bus is not None:
            self._event_bus.publish_nowait(
                ProviderCircuitOpenedEvent(
                    provider=provider,
                    consecutive_failures=consecutive_failures,
                )
            )
