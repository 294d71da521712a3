"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.

Provider errors carry a ``retryable`` flag: the retry executor retries the
retryable ones locally and hands the fatal ones straight back to the
fallback router.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


# ── Gateway ──────────────────────────────────────────────────
class GatewayError(DomainError):
    """Base for errors raised by the AI request gateway."""


class ResourceNotFoundError(GatewayError):
    """A looked-up gateway resource does not exist."""


class ProviderNotFoundError(ResourceNotFoundError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Provider {provider!r} is not configured", code="PROVIDER_NOT_FOUND")


class AttemptRecordNotFoundError(ResourceNotFoundError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Attempt record {record_id!r} not found", code="ATTEMPT_NOT_FOUND")


class CacheEntryNotFoundError(ResourceNotFoundError):
    def __init__(self, fingerprint: str) -> None:
        self.fingerprint = fingerprint
        super().__init__(f"No live cache entry for {fingerprint[:12]}", code="CACHE_ENTRY_NOT_FOUND")


# ── Upstream provider failures ───────────────────────────────
class ProviderError(GatewayError):
    """A single upstream call failed.

    Unclassified failures default to fatal so they are never retried blindly.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
        code: str = "PROVIDER_ERROR",
    ) -> None:
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}", code=code)


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(
            provider,
            f"Timeout after {timeout_s}s",
            retryable=True,
            code="PROVIDER_TIMEOUT",
        )


class ProviderRateLimitedError(ProviderError):
    """The provider itself answered 429 — retryable after backoff."""

    def __init__(self, provider: str, *, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f" (retry after {retry_after}s)" if retry_after is not None else ""
        super().__init__(
            provider,
            f"Rate limited by provider{detail}",
            retryable=True,
            status_code=429,
            code="PROVIDER_RATE_LIMITED",
        )


class ProviderServerError(ProviderError):
    """5xx responses and transient network failures."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(
            provider,
            message,
            retryable=True,
            status_code=status_code,
            code="PROVIDER_SERVER_ERROR",
        )


class ProviderRejectedError(ProviderError):
    """Bad request, authentication failure or a malformed payload."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(
            provider,
            message,
            retryable=False,
            status_code=status_code,
            code="PROVIDER_REJECTED",
        )


# ── Admission / budget ───────────────────────────────────────
class LocalRateLimitExceededError(GatewayError):
    """Local admission denial. Only ever used as a routing signal."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Local rate limit exhausted for {provider!r}",
            code="LOCAL_RATE_LIMIT_EXCEEDED",
        )


class BudgetExceededError(GatewayError):
    def __init__(self, *, period: str, consumed: int, requested: int, limit: int) -> None:
        self.period = period
        self.consumed = consumed
        self.requested = requested
        self.limit = limit
        super().__init__(
            f"Monthly token budget exceeded for {period}: "
            f"{consumed} used + {requested} requested > {limit}",
            code="BUDGET_EXCEEDED",
        )


class AllProvidersFailedError(GatewayError):
    """Raised when every candidate provider failed or was skipped."""

    def __init__(
        self,
        errors: Mapping[str, ProviderError],
        *,
        skipped: Sequence[str] = (),
    ) -> None:
        self.errors = dict(errors)
        self.skipped = tuple(skipped)
        providers = ", ".join(self.errors) or "none attempted"
        message = f"All providers failed: {providers}"
        if self.skipped:
            message += f" (rate-limited: {', '.join(self.skipped)})"
        super().__init__(message, code="ALL_PROVIDERS_FAILED")

    def details(self) -> dict[str, str]:
        return {name: err.message for name, err in self.errors.items()}


# ── Cache ────────────────────────────────────────────────────
class CacheCorruptionError(GatewayError):
    """A stored cache payload could not be decoded. Always treated as a miss."""

    def __init__(self, fingerprint: str, reason: str) -> None:
        self.fingerprint = fingerprint
        super().__init__(f"Corrupt cache entry {fingerprint[:12]}: {reason}", code="CACHE_CORRUPTION")
