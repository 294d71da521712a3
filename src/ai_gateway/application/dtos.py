"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.  Payloads are camelCase on the wire;
snake_case input is accepted too.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ai_gateway.domain.entities import AttemptRecord, CacheEntry, GenerationResult
from ai_gateway.domain.value_objects import BudgetSnapshot
from ai_gateway.shared.providers.types import ProviderConfig, ProviderHealth


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════
class GenerateRequest(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    prompt: str = Field(..., min_length=1, max_length=100_000)
    session_id: str = Field(..., min_length=1, max_length=255)
    context_rule_id: str | None = None
    knowledge_base_ids: list[str] = Field(default_factory=list)
    provider: str | None = Field(None, max_length=50)
    model: str | None = Field(None, max_length=200)
    system_prompt: str | None = None
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(1000, gt=0, le=200_000)
    metadata: dict[str, Any] = Field(default_factory=dict)


class GenerateResponse(CamelModel):
    content: str
    provider: str
    model: str
    tokens: int
    prompt_tokens: int
    completion_tokens: int
    processing_time_ms: float
    cached: bool
    fingerprint: str

    @classmethod
    def from_result(cls, result: GenerationResult) -> GenerateResponse:
        return cls(
            content=result.content,
            provider=result.provider,
            model=result.model,
            tokens=result.tokens,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            processing_time_ms=result.processing_time_ms,
            cached=result.cached,
            fingerprint=result.fingerprint,
        )


# ═══════════════════════════════════════════════════════════════
#  Telemetry
# ═══════════════════════════════════════════════════════════════
class AttemptRecordResponse(CamelModel):
    id: str
    provider: str
    model: str
    outcome: str
    latency_ms: float
    fingerprint: str
    session_id: str
    attempt: int
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    error: str | None = None
    timestamp: datetime

    @classmethod
    def from_record(cls, record: AttemptRecord) -> AttemptRecordResponse:
        return cls(
            id=record.id,
            provider=record.provider,
            model=record.model,
            outcome=record.outcome.value,
            latency_ms=record.latency_ms,
            fingerprint=record.fingerprint,
            session_id=record.session_id,
            attempt=record.attempt,
            prompt_tokens=record.prompt_tokens,
            completion_tokens=record.completion_tokens,
            total_tokens=record.total_tokens,
            error=record.error,
            timestamp=record.timestamp,
        )


class CacheEntryResponse(CamelModel):
    fingerprint: str
    content: str
    provider: str
    model: str
    tokens: int
    hits: int
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_entry(cls, entry: CacheEntry, hits: int) -> CacheEntryResponse:
        return cls(
            fingerprint=entry.fingerprint,
            content=entry.result.content,
            provider=entry.result.provider,
            model=entry.result.model,
            tokens=entry.result.tokens,
            hits=hits,
            created_at=datetime.fromtimestamp(entry.created_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(entry.expires_at, tz=timezone.utc),
        )


class BudgetResponse(CamelModel):
    enabled: bool
    period: str
    consumed: int
    reserved: int
    limit: int
    remaining: int
    alert_threshold: float
    alert_emitted: bool
    usage_pct: float

    @classmethod
    def from_snapshot(cls, snapshot: BudgetSnapshot, *, enabled: bool) -> BudgetResponse:
        return cls(
            enabled=enabled,
            period=snapshot.period,
            consumed=snapshot.consumed,
            reserved=snapshot.reserved,
            limit=snapshot.limit,
            remaining=snapshot.remaining,
            alert_threshold=snapshot.alert_threshold,
            alert_emitted=snapshot.alert_emitted,
            usage_pct=round(snapshot.usage_fraction * 100, 2),
        )


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class ProviderInfoResponse(CamelModel):
    name: str
    base_url: str
    default_model: str
    timeout_seconds: float
    retry_attempts: int
    retry_delay_ms: int
    requests_per_minute: int

    @classmethod
    def from_config(cls, cfg: ProviderConfig) -> ProviderInfoResponse:
        return cls(
            name=cfg.name,
            base_url=cfg.base_url,
            default_model=cfg.default_model,
            timeout_seconds=cfg.timeout_s,
            retry_attempts=cfg.max_attempts,
            retry_delay_ms=int(cfg.retry_base_delay_s * 1000),
            requests_per_minute=cfg.requests_per_minute,
        )


class ProviderHealthResponse(CamelModel):
    provider: str
    circuit_state: str
    consecutive_failures: int
    last_failure_at: float | None = None
    total_successes: int
    total_failures: int
    last_error: str | None = None
    rate_limit_available: int | None = None

    @classmethod
    def from_health(cls, health: ProviderHealth) -> ProviderHealthResponse:
        return cls(
            provider=health.provider,
            circuit_state=health.circuit_state.value,
            consecutive_failures=health.consecutive_failures,
            last_failure_at=health.last_failure_at,
            total_successes=health.total_successes,
            total_failures=health.total_failures,
            last_error=health.last_error,
            rate_limit_available=health.rate_limit_available,
        )
