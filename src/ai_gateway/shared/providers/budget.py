"""Token budget tracker — process-wide monthly ledger of AI tokens.

Requests reserve an estimate before dispatch; the reservation is then
either committed with the real token count or released when every provider
failed.  Admission compares ``consumed + reserved + estimate`` against the
period limit, so a request landing exactly on the limit is still allowed.

Ledgers are keyed by UTC calendar month ("YYYY-MM").  Each ledger carries
its own lock, and the threshold alert fires at most once per period.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from ai_gateway.domain.entities import GenerationRequest
from ai_gateway.domain.exceptions import BudgetExceededError
from ai_gateway.domain.value_objects import BudgetAlert, BudgetReservation, BudgetSnapshot

logger = structlog.get_logger(__name__)

BudgetAlertCallback = Callable[[BudgetAlert], None]

CHARS_PER_TOKEN = 4


def estimate_tokens(request: GenerationRequest) -> int:
    """Prompt-length heuristic used for the pre-dispatch reservation."""
    text = (request.system_prompt or "") + request.prompt
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def period_key(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Ledger:
    def __init__(self, period: str) -> None:
        self.period = period
        self.consumed = 0
        self.reserved = 0
        self.alert_emitted = False
        self.lock = threading.Lock()


class TokenBudgetTracker:
    def __init__(
        self,
        monthly_limit: int,
        *,
        alert_threshold: float = 0.8,
        enabled: bool = True,
        clock: Callable[[], datetime] = _utcnow,
        on_alert: BudgetAlertCallback | None = None,
    ) -> None:
        if monthly_limit <= 0:
            raise ValueError("monthly_limit must be positive")
        if not 0.0 < alert_threshold <= 1.0:
            raise ValueError("alert_threshold must be within (0, 1]")
        self._limit = monthly_limit
        self._threshold = alert_threshold
        self._enabled = enabled
        self._clock = clock
        self._on_alert = on_alert
        self._ledgers: dict[str, _Ledger] = {}
        self._ledgers_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def limit(self) -> int:
        return self._limit

    def current_period(self) -> str:
        return period_key(self._clock())

    # ── Reservation lifecycle ────────────────────────────────
    def reserve(self, estimated_tokens: int) -> BudgetReservation:
        """Reserve ``estimated_tokens`` in the current period or raise ``BudgetExceededError``."""
        estimated_tokens = max(0, int(estimated_tokens))
        ledger = self._ledger(self.current_period())
        alert: BudgetAlert | None = None
        with ledger.lock:
            in_flight = ledger.consumed + ledger.reserved
            if self._enabled and in_flight + estimated_tokens > self._limit:
                logger.warning(
                    "token_budget_exceeded",
                    period=ledger.period,
                    consumed=ledger.consumed,
                    reserved=ledger.reserved,
                    requested=estimated_tokens,
                    limit=self._limit,
                )
                raise BudgetExceededError(
                    period=ledger.period,
                    consumed=in_flight,
                    requested=estimated_tokens,
                    limit=self._limit,
                )
            ledger.reserved += estimated_tokens
            alert = self._check_alert(ledger)
        self._emit(alert)
        return BudgetReservation(period=ledger.period, tokens=estimated_tokens)

    def commit(self, reservation: BudgetReservation, actual_tokens: int) -> None:
        """Replace the reservation with the real token count."""
        ledger = self._ledger(reservation.period)
        with ledger.lock:
            ledger.reserved = max(0, ledger.reserved - reservation.tokens)
            ledger.consumed += max(0, int(actual_tokens))
            alert = self._check_alert(ledger)
        logger.debug(
            "token_budget_committed",
            period=reservation.period,
            estimated=reservation.tokens,
            actual=actual_tokens,
        )
        self._emit(alert)

    def release(self, reservation: BudgetReservation) -> None:
        ledger = self._ledger(reservation.period)
        with ledger.lock:
            ledger.reserved = max(0, ledger.reserved - reservation.tokens)
        logger.debug("token_budget_released", period=reservation.period, tokens=reservation.tokens)

    def snapshot(self, period: str | None = None) -> BudgetSnapshot:
        ledger = self._ledger(period or self.current_period())
        with ledger.lock:
            return BudgetSnapshot(
                period=ledger.period,
                consumed=ledger.consumed,
                reserved=ledger.reserved,
                limit=self._limit,
                alert_threshold=self._threshold,
                alert_emitted=ledger.alert_emitted,
            )

    # ── Internals ────────────────────────────────────────────
    def _ledger(self, period: str) -> _Ledger:
        with self._ledgers_lock:
            ledger = self._ledgers.get(period)
            if ledger is None:
                ledger = self._ledgers[period] = _Ledger(period)
            return ledger

    def _check_alert(self, ledger: _Ledger) -> BudgetAlert | None:
        """Caller must hold the ledger lock."""
        if not self._enabled or ledger.alert_emitted:
            return None
        if ledger.consumed + ledger.reserved < self._threshold * self._limit:
            return None
        ledger.alert_emitted = True
        return BudgetAlert(
            period=ledger.period,
            consumed=ledger.consumed,
            reserved=ledger.reserved,
            limit=self._limit,
            threshold=self._threshold,
        )

    def _emit(self, alert: BudgetAlert | None) -> None:
        if alert is None:
            return
        logger.warning(
            "token_budget_alert",
            period=alert.period,
            usage_pct=alert.usage_pct,
            threshold=alert.threshold,
            limit=alert.limit,
        )
        if self._on_alert is not None:
            self._on_alert(alert)
