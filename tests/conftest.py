"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from ai_gateway.adapters.outbound.cache import MemoryCacheAdapter
from ai_gateway.adapters.outbound.event_bus import InProcessEventBus
from ai_gateway.ports.outbound import ProviderClient
from ai_gateway.shared.providers.gateway import AIRequestGateway
from ai_gateway.shared.providers.types import GatewayConfig, ProviderConfig

from fakes import FakeClock, RecordingSleep


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeClock:
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def budget_now() -> dict[str, datetime]:
    """Mutable holder so tests can move the budget clock across months."""
    return {"now": datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)}


@pytest.fixture
def event_bus() -> InProcessEventBus:
    return InProcessEventBus()


@pytest.fixture
def gateway_factory(
    clock: FakeClock,
    wall_clock: FakeClock,
    sleeper: RecordingSleep,
    budget_now: dict[str, datetime],
    event_bus: InProcessEventBus,
) -> Callable[..., AIRequestGateway]:
    def _build(
        providers: list[ProviderConfig],
        clients: dict[str, ProviderClient],
        **overrides: Any,
    ) -> AIRequestGateway:
        overrides.setdefault("fallback_order", tuple(p.name for p in providers))
        overrides.setdefault("retry_jitter_s", 0.0)
        cache_backend = overrides.pop("cache_backend", None) or MemoryCacheAdapter(clock=wall_clock)
        config = GatewayConfig(providers=tuple(providers), **overrides)
        return AIRequestGateway(
            config,
            clients,
            cache_backend=cache_backend,
            event_bus=event_bus,
            sleep=sleeper,
            clock=clock,
            wall_clock=wall_clock,
            budget_clock=lambda: budget_now["now"],
        )

    return _build
