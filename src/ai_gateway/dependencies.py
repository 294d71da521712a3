"""Dependency injection container — wires adapters to ports.

The application factory builds one gateway per app instance and keeps it
on ``app.state``; FastAPI's ``Depends()`` reads it back from there so tests
can inject a gateway built from fakes.
"""

from __future__ import annotations

from functools import lru_cache

import httpx
from fastapi import Request

from ai_gateway.adapters.outbound.cache import MemoryCacheAdapter, RedisCacheAdapter
from ai_gateway.adapters.outbound.event_bus import InProcessEventBus
from ai_gateway.adapters.outbound.llm import build_provider_clients
from ai_gateway.config import Settings, build_gateway_config, get_settings
from ai_gateway.domain.enums import CacheBackend
from ai_gateway.ports.outbound import CachePort, EventBusPort
from ai_gateway.shared.providers.gateway import AIRequestGateway


# ── Settings ─────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_cached_settings() -> Settings:
    return get_settings()


# ── Builders ─────────────────────────────────────────────────
def build_cache_backend(settings: Settings) -> CachePort:
    if settings.cache_backend == CacheBackend.REDIS:
        return RedisCacheAdapter(settings.redis_url, settings.redis_max_connections)
    return MemoryCacheAdapter(max_entries=settings.cache_max_entries)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    # Per-attempt timeouts come from each provider's config
    return httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        headers={"User-Agent": f"{settings.app_name}/0.1.0"},
    )


def build_gateway(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient,
    cache: CachePort,
    event_bus: EventBusPort,
) -> AIRequestGateway:
    config = build_gateway_config(settings)
    clients = build_provider_clients(config.providers, http_client)
    return AIRequestGateway(config, clients, cache_backend=cache, event_bus=event_bus)


def build_event_bus() -> InProcessEventBus:
    return InProcessEventBus()


# ── Request-scoped accessors ─────────────────────────────────
def get_gateway(request: Request) -> AIRequestGateway:
    return request.app.state.gateway  # type: ignore[no-any-return]


def get_cache(request: Request) -> CachePort:
    return request.app.state.cache  # type: ignore[no-any-return]


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]
