"""Request logger — append-only record of every upstream attempt.

Keeps a bounded in-memory window for analytics (success rate, latency and
token usage per provider) and publishes each record and budget alert onto
the outbound event bus.  Never influences routing.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Any

import structlog

from ai_gateway.domain.entities import AttemptRecord
from ai_gateway.domain.enums import AttemptOutcome
from ai_gateway.domain.events import AttemptRecordedEvent, BudgetAlertEvent
from ai_gateway.domain.exceptions import AttemptRecordNotFoundError
from ai_gateway.domain.value_objects import BudgetAlert
from ai_gateway.ports.outbound import EventBusPort
from ai_gateway.shared.observability.metrics import (
    AI_ATTEMPT_LATENCY,
    AI_ATTEMPTS_TOTAL,
    AI_BUDGET_ALERTS,
    AI_TOKENS_TOTAL,
)

logger = structlog.get_logger(__name__)


class RequestLogger:
    def __init__(
        self,
        *,
        max_records: int = 10_000,
        event_bus: EventBusPort | None = None,
    ) -> None:
        if max_records <= 0:
            raise ValueError("max_records must be positive")
        self._records: deque[AttemptRecord] = deque(maxlen=max_records)
        self._alerts: deque[BudgetAlert] = deque(maxlen=100)
        self._event_bus = event_bus
        self._lock = threading.Lock()

    # ── Recording ────────────────────────────────────────────
    def record(self, attempt: AttemptRecord) -> None:
        with self._lock:
            self._records.append(attempt)

        AI_ATTEMPTS_TOTAL.labels(provider=attempt.provider, outcome=attempt.outcome.value).inc()
        AI_ATTEMPT_LATENCY.labels(provider=attempt.provider).observe(attempt.latency_ms / 1000)
        if attempt.succeeded:
            AI_TOKENS_TOTAL.labels(provider=attempt.provider, kind="prompt").inc(attempt.prompt_tokens)
            AI_TOKENS_TOTAL.labels(provider=attempt.provider, kind="completion").inc(
                attempt.completion_tokens
            )

        if self._event_bus is not None:
            self._event_bus.publish_nowait(AttemptRecordedEvent(record=attempt.to_dict()))

    def record_budget_alert(self, alert: BudgetAlert) -> None:
        with self._lock:
            self._alerts.append(alert)
        AI_BUDGET_ALERTS.inc()
        if self._event_bus is not None:
            self._event_bus.publish_nowait(
                BudgetAlertEvent(
                    period=alert.period,
                    consumed=alert.consumed,
                    reserved=alert.reserved,
                    limit=alert.limit,
                    threshold=alert.threshold,
                    usage_pct=alert.usage_pct,
                )
            )

    # ── Queries ──────────────────────────────────────────────
    def records(
        self,
        *,
        provider: str | None = None,
        outcome: AttemptOutcome | None = None,
        limit: int = 100,
    ) -> list[AttemptRecord]:
        """Most recent records first, optionally filtered."""
        with self._lock:
            snapshot = list(self._records)
        matched: list[AttemptRecord] = []
        for rec in reversed(snapshot):
            if provider is not None and rec.provider != provider:
                continue
            if outcome is not None and rec.outcome is not outcome:
                continue
            matched.append(rec)
            if len(matched) >= limit:
                break
        return matched

    def get(self, record_id: str) -> AttemptRecord:
        with self._lock:
            for rec in self._records:
                if rec.id == record_id:
                    return rec
        raise AttemptRecordNotFoundError(record_id)

    def budget_alerts(self) -> list[BudgetAlert]:
        with self._lock:
            return list(self._alerts)

    def summary(self, *, since: datetime | None = None) -> dict[str, Any]:
        """Per-provider totals, limited to records at or after ``since`` when given."""
        with self._lock:
            snapshot = list(self._records)
        if since is not None:
            snapshot = [rec for rec in snapshot if rec.timestamp >= since]

        per_provider: dict[str, dict[str, Any]] = {}
        for rec in snapshot:
            stats = per_provider.setdefault(
                rec.provider,
                {"attempts": 0, "successes": 0, "failures": 0, "total_latency_ms": 0.0, "total_tokens": 0},
            )
            stats["attempts"] += 1
            stats["total_latency_ms"] += rec.latency_ms
            if rec.succeeded:
                stats["successes"] += 1
                stats["total_tokens"] += rec.total_tokens
            else:
                stats["failures"] += 1

        providers: dict[str, dict[str, Any]] = {}
        for name, stats in per_provider.items():
            attempts = stats["attempts"]
            providers[name] = {
                "attempts": attempts,
                "successes": stats["successes"],
                "failures": stats["failures"],
                "success_rate": round(stats["successes"] / attempts, 4),
                "avg_latency_ms": round(stats["total_latency_ms"] / attempts, 1),
                "total_tokens": stats["total_tokens"],
            }

        successes = sum(p["successes"] for p in providers.values())
        return {
            "since": since.isoformat() if since is not None else None,
            "total_attempts": len(snapshot),
            "successful_attempts": successes,
            "failed_attempts": len(snapshot) - successes,
            "total_tokens": sum(p["total_tokens"] for p in providers.values()),
            "providers": providers,
        }
