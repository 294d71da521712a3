"""Rate limiter — per-provider token buckets for local admission control.

Capacity equals the provider's requests-per-minute limit and the bucket
refills continuously at ``capacity / 60`` tokens per second.  Acquisition
never blocks: a rejection tells the router to skip the provider right now.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

import structlog

from ai_gateway.domain.exceptions import LocalRateLimitExceededError
from ai_gateway.shared.providers.types import ProviderConfig

logger = structlog.get_logger(__name__)


class TokenBucket:
    """Thread-safe continuously refilling token bucket."""

    def __init__(
        self,
        capacity: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = float(capacity)
        self._refill_per_s = capacity / 60.0
        self._clock = clock
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return int(self._capacity)

    def try_acquire(self, tokens: float = 1.0) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    @property
    def available(self) -> int:
        with self._lock:
            self._refill()
            return int(self._tokens)

    def _refill(self) -> None:
        """Caller must hold lock."""
        now = self._clock()
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_per_s)
        self._updated_at = now


class RateLimiter:
    """One token bucket per provider, keyed by provider name.

    Providers configured with ``requests_per_minute <= 0`` are unlimited.
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._buckets: dict[str, TokenBucket] = {
            cfg.name: TokenBucket(cfg.requests_per_minute, clock=clock)
            for cfg in providers
            if cfg.requests_per_minute > 0
        }

    def try_acquire(self, provider: str) -> bool:
        bucket = self._buckets.get(provider)
        if bucket is None:
            return True
        admitted = bucket.try_acquire()
        if not admitted:
            logger.debug(
                "rate_limit_rejected",
                provider=provider,
                capacity=bucket.capacity,
            )
        return admitted

    def acquire(self, provider: str) -> None:
        """Like ``try_acquire`` but raises ``LocalRateLimitExceededError`` on rejection."""
        if not self.try_acquire(provider):
            raise LocalRateLimitExceededError(provider)

    def available(self, provider: str) -> int | None:
        """Whole tokens left for ``provider``; ``None`` when unlimited."""
        bucket = self._buckets.get(provider)
        return bucket.available if bucket is not None else None
