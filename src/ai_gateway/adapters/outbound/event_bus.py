"""In-process event bus for gateway events.

The gateway publishes attempt records, budget alerts and circuit events
here without knowing who listens.  ``publish_nowait`` is used from the
synchronous hot path: handlers run as background tasks so a slow
subscriber never delays a generation call.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Callable, Coroutine

import structlog

from ai_gateway.domain.events import DomainEvent
from ai_gateway.ports.outbound import EventBusPort

logger = structlog.get_logger(__name__)

EventHandler = Callable[[DomainEvent], Coroutine[Any, Any, None]]


class InProcessEventBus(EventBusPort):
    """Async in-memory event bus with fan-out to multiple subscribers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    async def publish(self, event: DomainEvent) -> None:
        handlers = self._handlers.get(event.event_type, [])
        if not handlers:
            logger.debug("event_no_handlers", event_type=event.event_type)
            return

        logger.debug(
            "event_published",
            event_type=event.event_type,
            handler_count=len(handlers),
        )

        # Handlers run concurrently; one failing never affects the others
        results = await asyncio.gather(
            *(h(event) for h in handlers),
            return_exceptions=True,
        )
        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(
                    "event_handler_error",
                    event_type=event.event_type,
                    handler_index=i,
                    error=str(result),
                )

    def publish_nowait(self, event: DomainEvent) -> None:
        if not self._handlers.get(event.event_type):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("event_dropped_no_running_loop", event_type=event.event_type)
            return
        task = loop.create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every in-flight ``publish_nowait`` delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def subscribe(self, event_type: str, handler: Any) -> None:
        self._handlers[event_type].append(handler)
        logger.debug("event_handler_registered", event_type=event_type)
