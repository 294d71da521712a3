"""Fakes and builders shared by the test suite."""

from __future__ import annotations

import asyncio
from typing import Any

from ai_gateway.domain.entities import GenerationRequest
from ai_gateway.ports.outbound import ProviderClient
from ai_gateway.shared.providers.types import ProviderConfig, ProviderResponse

HANG = "hang"


def ok(content: str = "ok", *, prompt_tokens: int = 5, completion_tokens: int = 5) -> ProviderResponse:
    return ProviderResponse(
        content=content,
        model="",
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def make_provider(name: str, **kwargs: Any) -> ProviderConfig:
    kwargs.setdefault("base_url", f"https://{name}.example.com/v1")
    kwargs.setdefault("default_model", f"{name}-model")
    kwargs.setdefault("api_key", f"{name}-key")
    kwargs.setdefault("requests_per_minute", 0)
    return ProviderConfig(name=name, **kwargs)


def make_request(prompt: str = "hello", **kwargs: Any) -> GenerationRequest:
    kwargs.setdefault("session_id", "session-1")
    return GenerationRequest(prompt=prompt, **kwargs)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeProviderClient(ProviderClient):
    """Scripted provider: each call consumes the next outcome.

    An outcome is a ``ProviderResponse``, an exception to raise, or ``HANG``
    to block until cancelled.  Once the script runs out ``default`` is used.
    With a ``gate`` every call waits for the event before resolving.
    """

    def __init__(self, *outcomes: Any, default: Any = None, gate: asyncio.Event | None = None) -> None:
        self._outcomes = list(outcomes)
        self._default = default
        self._gate = gate
        self.calls: list[tuple[str, str, str]] = []
        self.started = asyncio.Event()
        self.closed = False

    async def generate(self, config, request, *, model):  # type: ignore[no-untyped-def]
        self.calls.append((config.name, model, request.prompt))
        self.started.set()
        if self._gate is not None:
            await self._gate.wait()
        outcome = self._outcomes.pop(0) if self._outcomes else self._default
        if outcome is None:
            outcome = ok(f"{config.name} says hi")
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == HANG:
            await asyncio.sleep(3600)
        return outcome

    async def close(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.calls)
