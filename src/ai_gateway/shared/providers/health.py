"""Provider health board — one circuit breaker per registered provider.

Written to only by the router after each provider's final outcome; read by
the router to drop open-circuit providers from the fallback candidates.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

import structlog

from ai_gateway.domain.exceptions import ProviderNotFoundError
from ai_gateway.shared.providers.circuit_breaker import CircuitBreaker
from ai_gateway.shared.providers.types import ProviderHealth

logger = structlog.get_logger(__name__)

CircuitOpenedCallback = Callable[[str, int], None]


class ProviderHealthBoard:
    def __init__(
        self,
        providers: Iterable[str],
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        on_open: CircuitOpenedCallback | None = None,
    ) -> None:
        self._breakers: dict[str, CircuitBreaker] = {
            name: CircuitBreaker(
                name,
                failure_threshold=failure_threshold,
                cooldown_seconds=cooldown_seconds,
                clock=clock,
            )
            for name in providers
        }
        self._on_open = on_open

    def is_available(self, provider: str) -> bool:
        """Whether the provider's circuit is not open. Does not take a trial slot."""
        breaker = self._breakers.get(provider)
        return breaker is None or not breaker.is_open()

    def try_acquire(self, provider: str) -> tuple[bool, bool]:
        """Admit a call to ``provider``. Returns ``(admitted, is_trial)``."""
        breaker = self._breakers.get(provider)
        if breaker is None:
            return True, False
        return breaker.try_acquire()

    def release_trial(self, provider: str) -> None:
        breaker = self._breakers.get(provider)
        if breaker is not None:
            breaker.release_trial()

    def record_success(self, provider: str) -> None:
        breaker = self._breakers.get(provider)
        if breaker is not None:
            breaker.record_success()

    def record_failure(self, provider: str, error: str | None = None) -> None:
        breaker = self._breakers.get(provider)
        if breaker is None:
            return
        opened = breaker.record_failure(error)
        if opened and self._on_open is not None:
            self._on_open(provider, breaker.consecutive_failures)

    def reset(self, provider: str) -> None:
        self._breaker(provider).reset()

    def snapshot(self, provider: str) -> ProviderHealth:
        return self._breaker(provider).snapshot()

    def snapshots(self) -> dict[str, ProviderHealth]:
        return {name: b.snapshot() for name, b in self._breakers.items()}

    def _breaker(self, provider: str) -> CircuitBreaker:
        try:
            return self._breakers[provider]
        except KeyError:
            raise ProviderNotFoundError(provider) from None
