"""Health, AI generation, telemetry and provider admin — REST routers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import ORJSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from ai_gateway import __version__
from ai_gateway.application.dtos import (
    AttemptRecordResponse,
    BudgetResponse,
    CacheEntryResponse,
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    ProviderHealthResponse,
    ProviderInfoResponse,
)
from ai_gateway.config import Settings
from ai_gateway.dependencies import get_cache, get_gateway, get_settings_from_app
from ai_gateway.domain.entities import GenerationRequest
from ai_gateway.domain.enums import AttemptOutcome
from ai_gateway.domain.exceptions import ValidationError
from ai_gateway.ports.outbound import CachePort
from ai_gateway.shared.providers.gateway import AIRequestGateway


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings_from_app),
    gateway: AIRequestGateway = Depends(get_gateway),
    cache: CachePort = Depends(get_cache),
) -> ORJSONResponse:
    cache_ok = await cache.health_check()
    providers = gateway.registry.names()
    overall = "ok" if cache_ok and providers else "degraded"
    body = HealthResponse(
        status=overall,
        version=__version__,
        environment=settings.app_env.value,
        services={
            "cache": f"{settings.cache_backend.value} ({'connected' if cache_ok else 'disconnected'})",
            "providers": ",".join(providers) or "none configured",
        },
    )
    return ORJSONResponse(
        content=body.model_dump(),
        status_code=200 if overall == "ok" else 503,
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  AI generation & telemetry
# ═══════════════════════════════════════════════════════════════
ai_router = APIRouter(prefix="/ai", tags=["AI"])


@ai_router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def generate(
    body: GenerateRequest,
    gateway: AIRequestGateway = Depends(get_gateway),
) -> GenerateResponse:
    """Generate a reply through the provider fallback chain."""
    request = GenerationRequest(
        prompt=body.prompt,
        session_id=body.session_id,
        context_rule_id=body.context_rule_id,
        knowledge_base_ids=tuple(body.knowledge_base_ids),
        provider=body.provider,
        model=body.model,
        system_prompt=body.system_prompt,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        metadata=body.metadata,
    )
    result = await gateway.execute(request)
    return GenerateResponse.from_result(result)


@ai_router.get("/logs", response_model=list[AttemptRecordResponse])
async def attempt_logs(
    provider: str | None = Query(None, max_length=50),
    outcome: AttemptOutcome | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    gateway: AIRequestGateway = Depends(get_gateway),
) -> list[AttemptRecordResponse]:
    records = gateway.request_logger.records(
        provider=provider.lower() if provider else None,
        outcome=outcome,
        limit=limit,
    )
    return [AttemptRecordResponse.from_record(r) for r in records]


@ai_router.get("/logs/{record_id}", response_model=AttemptRecordResponse, responses={404: {"model": ErrorResponse}})
async def attempt_log(record_id: str, gateway: AIRequestGateway = Depends(get_gateway)) -> AttemptRecordResponse:
    return AttemptRecordResponse.from_record(gateway.request_logger.get(record_id))


_WINDOWS = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


@ai_router.get("/performance")
async def performance(
    since: datetime | None = Query(None),
    window: Literal["1h", "24h", "7d", "30d"] | None = Query(None),
    gateway: AIRequestGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Attempt summary, optionally limited to a recent window or an explicit start time."""
    if since is not None and window is not None:
        raise ValidationError("Pass either since or window, not both")
    if window is not None:
        since = datetime.now(timezone.utc) - _WINDOWS[window]
    elif since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return gateway.request_logger.summary(since=since)


@ai_router.get("/cache")
async def cache_stats(gateway: AIRequestGateway = Depends(get_gateway)) -> dict[str, Any]:
    return gateway.cache_stats()


@ai_router.get("/cache/{fingerprint}", response_model=CacheEntryResponse, responses={404: {"model": ErrorResponse}})
async def cache_entry(fingerprint: str, gateway: AIRequestGateway = Depends(get_gateway)) -> CacheEntryResponse:
    entry, hits = await gateway.cache_entry(fingerprint)
    return CacheEntryResponse.from_entry(entry, hits)


@ai_router.delete("/cache")
async def clear_cache(gateway: AIRequestGateway = Depends(get_gateway)) -> dict[str, Any]:
    removed = await gateway.clear_cache()
    return {"status": "cleared", "removed": removed}


@ai_router.get("/budget", response_model=BudgetResponse)
async def budget(gateway: AIRequestGateway = Depends(get_gateway)) -> BudgetResponse:
    return BudgetResponse.from_snapshot(
        gateway.budget_snapshot(),
        enabled=gateway.config.token_budget_enabled,
    )


# ═══════════════════════════════════════════════════════════════
#  Provider admin
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Health"])


@providers_router.get("", response_model=list[ProviderInfoResponse])
async def list_providers(gateway: AIRequestGateway = Depends(get_gateway)) -> list[ProviderInfoResponse]:
    """Registered providers, in fallback order first."""
    order = gateway.registry.fallback_order()
    ranked = sorted(
        gateway.registry,
        key=lambda cfg: order.index(cfg.name) if cfg.name in order else len(order),
    )
    return [ProviderInfoResponse.from_config(cfg) for cfg in ranked]


@providers_router.get("/health", response_model=list[ProviderHealthResponse])
async def provider_health(gateway: AIRequestGateway = Depends(get_gateway)) -> list[ProviderHealthResponse]:
    """Circuit and failure counters for all configured providers."""
    return [ProviderHealthResponse.from_health(h) for h in gateway.get_all_health().values()]


@providers_router.post("/{provider}/reset", response_model=ProviderHealthResponse)
async def reset_provider(
    provider: str,
    gateway: AIRequestGateway = Depends(get_gateway),
) -> ProviderHealthResponse:
    """Admin: force a provider's circuit closed."""
    gateway.reset_provider(provider)
    return ProviderHealthResponse.from_health(gateway.get_health(provider))
