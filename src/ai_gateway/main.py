"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from ai_gateway import __version__
from ai_gateway.adapters.inbound.rest.routers import ai_router, health_router, providers_router
from ai_gateway.application.consumers import register_consumers
from ai_gateway.config import Settings
from ai_gateway.dependencies import (
    build_cache_backend,
    build_event_bus,
    build_gateway,
    build_http_client,
    get_cached_settings,
)
from ai_gateway.ports.outbound import CachePort, EventBusPort
from ai_gateway.shared.errors import register_exception_handlers
from ai_gateway.shared.middleware import LoggingMiddleware, MetricsMiddleware, RequestIdMiddleware
from ai_gateway.shared.observability import configure_logging
from ai_gateway.shared.providers.gateway import AIRequestGateway

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    gateway: AIRequestGateway = app.state.gateway
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        providers=list(gateway.registry.names()),
        cache_backend=settings.cache_backend.value,
    )

    yield

    # Shutdown: let pending event deliveries finish, then close connections
    drain = getattr(app.state.event_bus, "drain", None)
    if drain is not None:
        await drain()
    await gateway.close()
    http_client: httpx.AsyncClient | None = app.state.http_client
    if http_client is not None:
        await http_client.aclose()
    await app.state.cache.close()
    logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    gateway: AIRequestGateway | None = None,
    cache: CachePort | None = None,
    event_bus: EventBusPort | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance.

    A pre-built ``gateway`` (with its ``cache`` and ``event_bus``) may be
    injected; otherwise one is built from ``settings``.
    """
    settings = settings or get_cached_settings()

    app = FastAPI(
        title="AI Request Gateway",
        description=(
            "Multi-provider AI generation gateway with per-provider rate limiting, "
            "a monthly token budget, response caching, retries and ordered fallback."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # ── Gateway wiring ───────────────────────────────────────
    cache = cache or build_cache_backend(settings)
    event_bus = event_bus or build_event_bus()
    http_client: httpx.AsyncClient | None = None
    if gateway is None:
        http_client = build_http_client(settings)
        gateway = build_gateway(settings, http_client=http_client, cache=cache, event_bus=event_bus)
    register_consumers(event_bus, cache)

    app.state.settings = settings
    app.state.gateway = gateway
    app.state.cache = cache
    app.state.event_bus = event_bus
    app.state.http_client = http_client

    # ── Middleware (order matters: last added = outermost) ───
    cors_origins = settings.cors_origins
    allow_all_origins = "*" in cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if allow_all_origins else cors_origins,
        allow_origin_regex=".*" if allow_all_origins else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.prometheus_enabled:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(ai_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "message": "AI Request Gateway is running",
            "docs": "/docs",
            "health": "/api/v1/health",
        }

    return app


# Uvicorn entry-point
app = create_app()
