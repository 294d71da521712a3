"""Circuit breaker — isolates providers that keep failing.

State machine:
    CLOSED  → (N consecutive failures) → OPEN
    OPEN    → (cooldown expires)       → HALF_OPEN
    HALF_OPEN → (trial succeeds)       → CLOSED
    HALF_OPEN → (trial fails)          → OPEN

HALF_OPEN admits one trial call at a time; other callers are refused until
the trial call reports an outcome or is released.

Rate-limit skips never reach the breaker; only real provider failures do.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import structlog

from ai_gateway.shared.providers.types import CircuitState, ProviderHealth

logger = structlog.get_logger(__name__)


class CircuitBreaker:
    """Per-provider circuit breaker with a single half-open trial call."""

    def __init__(
        self,
        provider: str,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._provider = provider
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._wall_clock = wall_clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float = 0.0
        self._last_failure_at: float | None = None
        self._last_error: str | None = None
        self._total_successes = 0
        self._total_failures = 0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_transition_to_half_open()
            return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def trial_in_flight(self) -> bool:
        return self._trial_in_flight

    def is_open(self) -> bool:
        """True while calls are refused outright. Does not claim the trial slot."""
        with self._lock:
            self._maybe_transition_to_half_open()
            return self._state == CircuitState.OPEN

    def can_execute(self) -> bool:
        """Check if the circuit lets a request through."""
        admitted, _ = self.try_acquire()
        return admitted

    def try_acquire(self) -> tuple[bool, bool]:
        """Admit one call. Returns ``(admitted, is_trial)``.

        In HALF_OPEN the first caller takes the trial slot; everyone else is
        refused until ``record_success``, ``record_failure``, ``reset`` or
        ``release_trial`` frees it.
        """
        with self._lock:
            self._maybe_transition_to_half_open()
            if self._state == CircuitState.OPEN:
                return False, False
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    return False, False
                self._trial_in_flight = True
                return True, True
            return True, False

    def release_trial(self) -> None:
        """Free the trial slot without recording an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def record_success(self) -> None:
        """Record a successful call — resets the circuit."""
        with self._lock:
            self._trial_in_flight = False
            prev = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._total_successes += 1
            if prev != CircuitState.CLOSED:
                logger.info(
                    "circuit_breaker_closed",
                    provider=self._provider,
                    previous_state=prev.value,
                )

    def record_failure(self, error: str | None = None) -> bool:
        """Record a failed call. Returns True when this failure opened the circuit."""
        with self._lock:
            self._trial_in_flight = False
            self._maybe_transition_to_half_open()
            self._consecutive_failures += 1
            self._total_failures += 1
            self._last_failure_at = self._wall_clock()
            self._last_error = error

            if self._state == CircuitState.HALF_OPEN:
                # Trial call failed
                self._open()
                logger.warning(
                    "circuit_breaker_reopened",
                    provider=self._provider,
                    failures=self._consecutive_failures,
                )
                return True
            if (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._failure_threshold
            ):
                self._open()
                logger.warning(
                    "circuit_breaker_opened",
                    provider=self._provider,
                    failures=self._consecutive_failures,
                    cooldown_s=self._cooldown,
                )
                return True
            return False

    def reset(self) -> None:
        """Force the circuit closed (admin override)."""
        with self._lock:
            self._trial_in_flight = False
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            logger.info("circuit_breaker_force_reset", provider=self._provider)

    def snapshot(self) -> ProviderHealth:
        with self._lock:
            self._maybe_transition_to_half_open()
            return ProviderHealth(
                provider=self._provider,
                circuit_state=self._state,
                consecutive_failures=self._consecutive_failures,
                last_failure_at=self._last_failure_at,
                total_successes=self._total_successes,
                total_failures=self._total_failures,
                last_error=self._last_error,
            )

    def _open(self) -> None:
        """Caller must hold lock."""
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()

    def _maybe_transition_to_half_open(self) -> None:
        """Caller must hold lock."""
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self._opened_at
            if elapsed >= self._cooldown:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "circuit_breaker_half_open",
                    provider=self._provider,
                    elapsed_s=round(elapsed, 1),
                )
