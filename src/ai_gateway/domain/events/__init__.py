"""Domain events — typed records of things that happened in the gateway.

Events are published onto the outbound channel so that analytics, log
viewers and admin notification surfaces can react without the gateway
depending on their existence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


ATTEMPT_RECORDED = "AI_ATTEMPT_RECORDED"
BUDGET_ALERT = "AI_BUDGET_ALERT"
PROVIDER_CIRCUIT_OPENED = "AI_PROVIDER_CIRCUIT_OPENED"


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_type: str = "DOMAIN_EVENT"
    occurred_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


# ── Attempt telemetry ────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class AttemptRecordedEvent(DomainEvent):
    event_type: str = ATTEMPT_RECORDED
    record: dict[str, Any] = field(default_factory=dict)


# ── Budget ───────────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class BudgetAlertEvent(DomainEvent):
    event_type: str = BUDGET_ALERT
    period: str = ""
    consumed: int = 0
    reserved: int = 0
    limit: int = 0
    threshold: float = 0.0
    usage_pct: float = 0.0


# ── Provider health ──────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class ProviderCircuitOpenedEvent(DomainEvent):
    event_type: str = PROVIDER_CIRCUIT_OPENED
    provider: str = ""
    consecutive_failures: int = 0
