"""Domain entities — the records that flow through the gateway.

Requests, results, attempt records and cache entries are all immutable once
built: a request is frozen at submission, attempt records are append-only,
and cache entries expire rather than being mutated.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ai_gateway.domain.enums import AttemptOutcome
from ai_gateway.domain.exceptions import ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════
#  GenerationRequest
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """A fully resolved prompt handed to the gateway by chat handling code.

    ``provider`` pins the request to a single provider (no fallback);
    ``model`` overrides the provider's default model.
    """

    prompt: str
    session_id: str
    context_rule_id: str | None = None
    knowledge_base_ids: tuple[str, ...] = ()
    provider: str | None = None
    model: str | None = None
    system_prompt: str | None = None
    temperature: float = 0.7
    max_tokens: int = 1000
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    request_id: str = field(default_factory=_new_id, compare=False)

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValidationError("prompt must not be empty")
        if not self.session_id:
            raise ValidationError("session_id is required")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValidationError(f"temperature must be within [0, 2], got {self.temperature}")
        if self.max_tokens <= 0:
            raise ValidationError(f"max_tokens must be positive, got {self.max_tokens}")
        # Accept any iterable of ids but store a tuple so the request stays hashable
        object.__setattr__(self, "knowledge_base_ids", tuple(str(i) for i in self.knowledge_base_ids))
        if self.provider is not None:
            object.__setattr__(self, "provider", self.provider.strip().lower() or None)
        if self.model is not None:
            object.__setattr__(self, "model", self.model.strip() or None)

    @property
    def is_pinned(self) -> bool:
        return self.provider is not None


# ═══════════════════════════════════════════════════════════════
#  GenerationResult
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Normalized reply returned to the chat handling collaborator."""

    content: str
    provider: str
    model: str
    tokens: int
    prompt_tokens: int = 0
    completion_tokens: int = 0
    processing_time_ms: float = 0.0
    cached: bool = False
    fingerprint: str = ""
    session_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "tokens": self.tokens,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "processing_time_ms": self.processing_time_ms,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationResult:
        """Rebuild a result from ``to_dict`` output.

        Raises ``KeyError`` / ``TypeError`` / ``ValueError`` on malformed input.
        """
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError("content must be a string")
        return cls(
            content=content,
            provider=str(data["provider"]),
            model=str(data["model"]),
            tokens=int(data["tokens"]),
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            processing_time_ms=float(data.get("processing_time_ms", 0.0)),
            fingerprint=str(data.get("fingerprint", "")),
        )


# ═══════════════════════════════════════════════════════════════
#  AttemptRecord
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One upstream attempt, as kept by the request logger."""

    provider: str
    model: str
    outcome: AttemptOutcome
    latency_ms: float
    fingerprint: str = ""
    session_id: str = ""
    attempt: int = 1
    prompt_tokens: int = 0
    completion_tokens: int = 0
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_new_id)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def succeeded(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "model": self.model,
            "outcome": self.outcome.value,
            "latency_ms": self.latency_ms,
            "fingerprint": self.fingerprint,
            "session_id": self.session_id,
            "attempt": self.attempt,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════
#  CacheEntry
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached result. Expires by TTL, never mutated."""

    fingerprint: str
    result: GenerationResult
    created_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
