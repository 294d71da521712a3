"""Retry executor — bounded retries with backoff against a single provider.

Built on tenacity's ``AsyncRetrying``: only errors classified retryable
(timeouts, 5xx, upstream 429, transport failures) are retried, with
exponential backoff capped at ``max_delay_s`` plus random jitter.  Every
attempt is bounded by the provider's timeout and yields one
``AttemptRecord``.  Cancellation is never retried.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ai_gateway.domain.entities import AttemptRecord, GenerationRequest
from ai_gateway.domain.enums import AttemptOutcome
from ai_gateway.domain.exceptions import (
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
)
from ai_gateway.ports.outbound import ProviderClient
from ai_gateway.shared.providers.types import ProviderConfig, ProviderResponse

logger = structlog.get_logger(__name__)

AttemptCallback = Callable[[AttemptRecord], None]
SleepFn = Callable[[float], Awaitable[None]]


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class RetryExecutor:
    def __init__(
        self,
        clients: Mapping[str, ProviderClient],
        *,
        max_delay_s: float = 8.0,
        jitter_s: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
        on_attempt: AttemptCallback | None = None,
    ) -> None:
        self._clients = clients
        self._max_delay = max_delay_s
        self._jitter = jitter_s
        self._sleep = sleep
        self._on_attempt = on_attempt

    async def call(
        self,
        provider: ProviderConfig,
        request: GenerationRequest,
        *,
        model: str,
        fingerprint: str = "",
    ) -> ProviderResponse:
        """Call ``provider`` until it succeeds, fails fatally, or runs out of attempts.

        Raises the last ``ProviderError`` on failure.
        """
        client = self._clients.get(provider.name)
        if client is None:
            raise ProviderNotFoundError(provider.name)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(provider.max_attempts),
            wait=wait_exponential(multiplier=provider.retry_base_delay_s, max=self._max_delay)
            + wait_random(0, self._jitter),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_backoff,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await self._attempt(
                    client,
                    provider,
                    request,
                    model=model,
                    fingerprint=fingerprint,
                    number=attempt.retry_state.attempt_number,
                )

    async def _attempt(
        self,
        client: ProviderClient,
        provider: ProviderConfig,
        request: GenerationRequest,
        *,
        model: str,
        fingerprint: str,
        number: int,
    ) -> ProviderResponse:
        log = logger.bind(provider=provider.name, model=model, attempt=number)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                client.generate(provider, request, model=model),
                timeout=provider.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            error: ProviderError = ProviderTimeoutError(provider.name, provider.timeout_s)
            self._record_failure(provider, request, model, fingerprint, number, start, error)
            log.warning("provider_timeout", timeout_s=provider.timeout_s)
            raise error from exc
        except ProviderError as exc:
            self._record_failure(provider, request, model, fingerprint, number, start, exc)
            log.warning(
                "provider_request_failed",
                error=exc.message,
                retryable=exc.retryable,
                status_code=exc.status_code,
            )
            raise
        except Exception as exc:
            # Unclassified client failures are fatal for this provider
            error = ProviderError(provider.name, f"{type(exc).__name__}: {exc}")
            self._record_failure(provider, request, model, fingerprint, number, start, error)
            log.error("provider_request_unexpected_error", error=error.message)
            raise error from exc

        latency_ms = (time.monotonic() - start) * 1000
        self._emit(
            AttemptRecord(
                provider=provider.name,
                model=response.model or model,
                outcome=AttemptOutcome.SUCCESS,
                latency_ms=round(latency_ms, 1),
                fingerprint=fingerprint,
                session_id=request.session_id,
                attempt=number,
                prompt_tokens=response.prompt_tokens or 0,
                completion_tokens=response.completion_tokens or 0,
            )
        )
        log.info("provider_request_success", latency_ms=float(f"{latency_ms:.1f}"))
        return response

    def _record_failure(
        self,
        provider: ProviderConfig,
        request: GenerationRequest,
        model: str,
        fingerprint: str,
        number: int,
        start: float,
        error: ProviderError,
    ) -> None:
        if not error.retryable:
            outcome = AttemptOutcome.FATAL_ERROR
        elif number >= provider.max_attempts:
            outcome = AttemptOutcome.RETRYABLE_EXHAUSTED
        else:
            outcome = AttemptOutcome.RETRYABLE_ERROR
        self._emit(
            AttemptRecord(
                provider=provider.name,
                model=model,
                outcome=outcome,
                latency_ms=round((time.monotonic() - start) * 1000, 1),
                fingerprint=fingerprint,
                session_id=request.session_id,
                attempt=number,
                error=error.message,
            )
        )

    def _emit(self, record: AttemptRecord) -> None:
        if self._on_attempt is not None:
            self._on_attempt(record)

    @staticmethod
    def _log_backoff(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "provider_retry_backoff",
            attempt=retry_state.attempt_number,
            delay_s=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error=str(exc) if exc else None,
        )
