"""Event consumers for gateway events.

Bridge the in-process event bus to the cache backend's pub/sub channels,
where log viewers and admin notification surfaces subscribe.
"""

from __future__ import annotations

import orjson
import structlog

from ai_gateway.domain.events import (
    ATTEMPT_RECORDED,
    BUDGET_ALERT,
    AttemptRecordedEvent,
    BudgetAlertEvent,
)
from ai_gateway.ports.outbound import CachePort, EventBusPort

logger = structlog.get_logger(__name__)

ATTEMPTS_CHANNEL = "ai_attempts"
BUDGET_ALERTS_CHANNEL = "ai_budget_alerts"


class AttemptLogConsumer:
    """Publishes every AttemptRecordedEvent to the ``ai_attempts`` channel."""

    def __init__(self, cache: CachePort) -> None:
        self._cache = cache

    async def handle_attempt_recorded(self, event: AttemptRecordedEvent) -> None:
        message = {
            "type": "ai_attempt",
            "record": event.record,
            "occurred_at": event.occurred_at.isoformat(),
        }
        await self._cache.publish(ATTEMPTS_CHANNEL, orjson.dumps(message).decode())
        logger.debug(
            "ai_attempt_broadcast",
            provider=event.record.get("provider"),
            outcome=event.record.get("outcome"),
        )


class BudgetAlertConsumer:
    """Publishes BudgetAlertEvent to the ``ai_budget_alerts`` channel."""

    def __init__(self, cache: CachePort) -> None:
        self._cache = cache

    async def handle_budget_alert(self, event: BudgetAlertEvent) -> None:
        message = {
            "type": "ai_budget_alert",
            "period": event.period,
            "consumed": event.consumed,
            "reserved": event.reserved,
            "limit": event.limit,
            "threshold": event.threshold,
            "usage_pct": event.usage_pct,
            "occurred_at": event.occurred_at.isoformat(),
        }
        await self._cache.publish(BUDGET_ALERTS_CHANNEL, orjson.dumps(message).decode())
        logger.info("ai_budget_alert_broadcast", period=event.period, usage_pct=event.usage_pct)


def register_consumers(event_bus: EventBusPort, cache: CachePort) -> None:
    attempts = AttemptLogConsumer(cache)
    alerts = BudgetAlertConsumer(cache)
    event_bus.subscribe(ATTEMPT_RECORDED, attempts.handle_attempt_recorded)
    event_bus.subscribe(BUDGET_ALERT, alerts.handle_budget_alert)
