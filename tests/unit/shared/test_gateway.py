"""End-to-end behaviour of AIRequestGateway against scripted providers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from ai_gateway.adapters.outbound.cache import MemoryCacheAdapter
from ai_gateway.domain.entities import AttemptRecord
from ai_gateway.domain.enums import AttemptOutcome
from ai_gateway.domain.events import ATTEMPT_RECORDED, BUDGET_ALERT, PROVIDER_CIRCUIT_OPENED
from ai_gateway.domain.exceptions import (
    AllProvidersFailedError,
    AttemptRecordNotFoundError,
    BudgetExceededError,
    CacheEntryNotFoundError,
    ProviderNotFoundError,
    ProviderRejectedError,
    ProviderServerError,
)
from ai_gateway.shared.providers.cache import KEY_PREFIX, fingerprint
from ai_gateway.shared.providers.gateway import AIRequestGateway
from ai_gateway.shared.providers.request_log import RequestLogger
from ai_gateway.shared.providers.types import CircuitState, GatewayConfig, ProviderResponse

from fakes import HANG, FakeProviderClient, make_provider, make_request, ok


def _collect(bus, event_type):
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe(event_type, handler)
    return received


# ═══════════════════════════════════════════════════════════════
#  Construction
# ═══════════════════════════════════════════════════════════════
class TestConstruction:
    def test_every_provider_needs_a_client(self) -> None:
        config = GatewayConfig(providers=(make_provider("a"), make_provider("b")), fallback_order=("a", "b"))
        with pytest.raises(ValueError, match="b"):
            AIRequestGateway(config, {"a": FakeProviderClient()})

    def test_defaults_to_memory_cache(self) -> None:
        config = GatewayConfig(providers=(make_provider("a"),), fallback_order=("a",))
        gateway = AIRequestGateway(config, {"a": FakeProviderClient()})
        assert gateway.cache_stats()["enabled"] is True


# ═══════════════════════════════════════════════════════════════
#  Fallback and retries
# ═══════════════════════════════════════════════════════════════
class TestFallback:
    @pytest.mark.asyncio
    async def test_exhausted_provider_falls_back_and_later_ones_are_untouched(self, gateway_factory) -> None:
        a = FakeProviderClient(default=ProviderServerError("a", "HTTP 503", status_code=503))
        b = FakeProviderClient(ok("from b"))
        c = FakeProviderClient()
        gateway = gateway_factory(
            [make_provider("a", max_attempts=2), make_provider("b"), make_provider("c")],
            {"a": a, "b": b, "c": c},
        )

        result = await gateway.generate("hello", session_id="s-1")

        assert result.content == "from b"
        assert result.provider == "b"
        assert result.cached is False
        assert a.call_count == 2
        assert c.call_count == 0
        outcomes = [(r.provider, r.outcome) for r in reversed(gateway.request_logger.records())]
        assert outcomes == [
            ("a", AttemptOutcome.RETRYABLE_ERROR),
            ("a", AttemptOutcome.RETRYABLE_EXHAUSTED),
            ("b", AttemptOutcome.SUCCESS),
        ]

    @pytest.mark.asyncio
    async def test_timeout_then_fallback_records_one_attempt_each(self, gateway_factory) -> None:
        a = FakeProviderClient(HANG)
        b = FakeProviderClient(ok("ok", prompt_tokens=4, completion_tokens=6))
        gateway = gateway_factory(
            [make_provider("a", max_attempts=1, timeout_s=0.01), make_provider("b")],
            {"a": a, "b": b},
        )

        result = await gateway.generate("hello", session_id="s-1")

        assert (result.content, result.provider, result.tokens) == ("ok", "b", 10)
        records = gateway.request_logger.records()
        assert len(records) == 2
        by_provider = {r.provider: r for r in records}
        assert by_provider["a"].outcome is AttemptOutcome.RETRYABLE_EXHAUSTED
        assert by_provider["b"].outcome is AttemptOutcome.SUCCESS
        assert by_provider["b"].total_tokens == 10

    @pytest.mark.asyncio
    async def test_all_fatal_raises_and_releases_reservation(self, gateway_factory) -> None:
        a = FakeProviderClient(default=ProviderRejectedError("a", "HTTP 401", status_code=401))
        b = FakeProviderClient(default=ProviderRejectedError("b", "HTTP 400", status_code=400))
        gateway = gateway_factory([make_provider("a"), make_provider("b")], {"a": a, "b": b})

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await gateway.generate("hello", session_id="s-1")

        assert set(exc_info.value.errors) == {"a", "b"}
        assert a.call_count == 1
        assert b.call_count == 1
        snap = gateway.budget_snapshot()
        assert snap.reserved == 0
        assert snap.consumed == 0

    @pytest.mark.asyncio
    async def test_pinned_provider_never_tries_others(self, gateway_factory) -> None:
        a = FakeProviderClient()
        b = FakeProviderClient(default=ProviderRejectedError("b", "HTTP 400"))
        gateway = gateway_factory([make_provider("a"), make_provider("b")], {"a": a, "b": b})

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await gateway.generate("hello", session_id="s-1", provider="B")

        assert set(exc_info.value.errors) == {"b"}
        assert a.call_count == 0

    @pytest.mark.asyncio
    async def test_unknown_pinned_provider_reserves_nothing(self, gateway_factory) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a")], {"a": a})

        with pytest.raises(ProviderNotFoundError):
            await gateway.generate("hello", session_id="s-1", provider="nope")

        assert gateway.budget_snapshot().reserved == 0
        assert a.call_count == 0

    @pytest.mark.asyncio
    async def test_rate_limited_provider_is_skipped_without_circuit_penalty(self, gateway_factory) -> None:
        a = FakeProviderClient()
        b = FakeProviderClient()
        gateway = gateway_factory(
            [make_provider("a", requests_per_minute=1), make_provider("b")],
            {"a": a, "b": b},
            circuit_failure_threshold=1,
        )

        first = await gateway.generate("first", session_id="s-1")
        second = await gateway.generate("second", session_id="s-1")

        assert (first.provider, second.provider) == ("a", "b")
        health = gateway.get_health("a")
        assert health.circuit_state is CircuitState.CLOSED
        assert health.consecutive_failures == 0
        assert health.rate_limit_available == 0

    @pytest.mark.asyncio
    async def test_circuit_opens_and_provider_is_excluded(self, gateway_factory, event_bus) -> None:
        opened = _collect(event_bus, PROVIDER_CIRCUIT_OPENED)
        a = FakeProviderClient(default=ProviderRejectedError("a", "HTTP 403"))
        b = FakeProviderClient()
        gateway = gateway_factory(
            [make_provider("a"), make_provider("b")],
            {"a": a, "b": b},
            circuit_failure_threshold=2,
        )

        await gateway.generate("one", session_id="s-1")
        await gateway.generate("two", session_id="s-1")
        assert gateway.get_health("a").circuit_state is CircuitState.OPEN

        await gateway.generate("three", session_id="s-1")
        assert a.call_count == 2
        assert b.call_count == 3

        await event_bus.drain()
        assert [(e.provider, e.consecutive_failures) for e in opened] == [("a", 2)]

        gateway.reset_provider("A")
        assert gateway.get_health("a").circuit_state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancellation_releases_reservation(self, gateway_factory) -> None:
        a = FakeProviderClient(HANG)
        gateway = gateway_factory([make_provider("a", timeout_s=30)], {"a": a})

        task = asyncio.create_task(gateway.generate("hello", session_id="s-1"))
        await a.started.wait()
        assert gateway.budget_snapshot().reserved > 0
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert gateway.budget_snapshot().reserved == 0
        assert a.call_count == 1


# ═══════════════════════════════════════════════════════════════
#  Token accounting
# ═══════════════════════════════════════════════════════════════
class TestTokenAccounting:
    @pytest.mark.asyncio
    async def test_reported_usage_is_committed(self, gateway_factory) -> None:
        a = FakeProviderClient(ok(prompt_tokens=7, completion_tokens=13))
        gateway = gateway_factory([make_provider("a")], {"a": a})

        result = await gateway.generate("hello", session_id="s-1")

        assert (result.prompt_tokens, result.completion_tokens, result.tokens) == (7, 13, 20)
        assert gateway.budget_snapshot().consumed == 20

    @pytest.mark.asyncio
    async def test_missing_usage_is_estimated_from_text(self, gateway_factory) -> None:
        a = FakeProviderClient(ProviderResponse(content="x" * 10, model=""))
        gateway = gateway_factory([make_provider("a")], {"a": a})

        result = await gateway.generate("a" * 40, session_id="s-1")

        assert result.prompt_tokens == 10
        assert result.completion_tokens == 3
        assert result.tokens == 13
        assert result.model == "a-model"

    @pytest.mark.asyncio
    async def test_budget_boundary(self, gateway_factory) -> None:
        a = FakeProviderClient(default=ok(prompt_tokens=10, completion_tokens=0))
        gateway = gateway_factory([make_provider("a")], {"a": a}, token_budget_monthly_limit=20, cache_enabled=False)

        # 40 chars estimates to 10 tokens; 10 consumed + 10 reserved lands exactly on the limit
        await gateway.generate("a" * 40, session_id="s-1")
        await gateway.generate("b" * 40, session_id="s-1")
        assert gateway.budget_snapshot().consumed == 20

        with pytest.raises(BudgetExceededError):
            await gateway.generate("c" * 40, session_id="s-1")
        assert a.call_count == 2

    @pytest.mark.asyncio
    async def test_budget_disabled_never_rejects(self, gateway_factory) -> None:
        a = FakeProviderClient(default=ok(prompt_tokens=50, completion_tokens=50))
        gateway = gateway_factory(
            [make_provider("a")],
            {"a": a},
            token_budget_enabled=False,
            token_budget_monthly_limit=10,
        )
        await gateway.generate("one", session_id="s-1")
        await gateway.generate("two", session_id="s-1")
        assert gateway.budget_snapshot().consumed == 200

    @pytest.mark.asyncio
    async def test_budget_alert_published_once(self, gateway_factory, event_bus) -> None:
        alerts = _collect(event_bus, BUDGET_ALERT)
        a = FakeProviderClient(default=ok(prompt_tokens=30, completion_tokens=0))
        gateway = gateway_factory(
            [make_provider("a")],
            {"a": a},
            token_budget_monthly_limit=100,
            token_budget_alert_threshold=0.5,
        )

        for prompt in ("one", "two", "three"):
            await gateway.generate(prompt, session_id="s-1")
        await event_bus.drain()

        assert len(alerts) == 1
        assert alerts[0].period == "2024-05"
        assert len(gateway.request_logger.budget_alerts()) == 1


# ═══════════════════════════════════════════════════════════════
#  Caching
# ═══════════════════════════════════════════════════════════════
class TestCaching:
    @pytest.mark.asyncio
    async def test_repeat_within_ttl_is_served_from_cache(self, gateway_factory, wall_clock) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a")], {"a": a}, cache_ttl_seconds=60)

        first = await gateway.generate("hello", session_id="s-1")
        second = await gateway.generate("hello", session_id="s-2")

        assert a.call_count == 1
        assert second.cached is True
        assert second.content == first.content
        assert second.session_id == "s-2"
        assert second.fingerprint == first.fingerprint
        assert gateway.budget_snapshot().consumed == first.tokens

        wall_clock.advance(61)
        third = await gateway.generate("hello", session_id="s-1")
        assert third.cached is False
        assert a.call_count == 2

    @pytest.mark.asyncio
    async def test_cache_hit_spends_no_rate_limit_token(self, gateway_factory) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a", requests_per_minute=1)], {"a": a})

        await gateway.generate("hello", session_id="s-1")
        before = gateway.get_health("a").rate_limit_available
        second = await gateway.generate("hello", session_id="s-1")

        assert second.cached is True
        assert a.call_count == 1
        assert before == 0
        assert gateway.get_health("a").rate_limit_available == before

    @pytest.mark.asyncio
    async def test_cache_entry_lookup(self, gateway_factory) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a")], {"a": a})
        first = await gateway.generate("hello", session_id="s-1")
        await gateway.generate("hello", session_id="s-1")

        entry, hits = await gateway.cache_entry(first.fingerprint)

        assert entry.result.content == first.content
        assert hits == 1
        with pytest.raises(CacheEntryNotFoundError):
            await gateway.cache_entry("0" * 64)

    @pytest.mark.asyncio
    async def test_cache_disabled_always_calls_provider(self, gateway_factory) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a")], {"a": a}, cache_enabled=False)
        await gateway.generate("hello", session_id="s-1")
        await gateway.generate("hello", session_id="s-1")
        assert a.call_count == 2
        assert gateway.cache_stats()["enabled"] is False

    @pytest.mark.asyncio
    async def test_corrupt_entry_falls_through_to_provider(self, wall_clock) -> None:
        backend = MemoryCacheAdapter(clock=wall_clock)
        a = FakeProviderClient()
        config = GatewayConfig(providers=(make_provider("a"),), fallback_order=("a",))
        gateway = AIRequestGateway(config, {"a": a}, cache_backend=backend, wall_clock=wall_clock)
        request = make_request("hello")
        await backend.set(KEY_PREFIX + fingerprint(request, gateway.registry), "\x00garbage")

        result = await gateway.execute(request)

        assert result.cached is False
        assert a.call_count == 1
        assert gateway.cache_stats()["corruptions"] == 1

    @pytest.mark.asyncio
    async def test_clear_cache(self, gateway_factory) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a")], {"a": a})
        await gateway.generate("hello", session_id="s-1")

        assert await gateway.clear_cache() == 1
        await gateway.generate("hello", session_id="s-1")
        assert a.call_count == 2


# ═══════════════════════════════════════════════════════════════
#  Telemetry
# ═══════════════════════════════════════════════════════════════
class TestTelemetry:
    @pytest.mark.asyncio
    async def test_attempt_events_are_published(self, gateway_factory, event_bus) -> None:
        events = _collect(event_bus, ATTEMPT_RECORDED)
        a = FakeProviderClient(ProviderServerError("a", "HTTP 502"), ok())
        gateway = gateway_factory([make_provider("a", max_attempts=2)], {"a": a})

        await gateway.generate("hello", session_id="s-9")
        await event_bus.drain()

        assert [e.record["outcome"] for e in events] == ["retryable_error", "success"]
        assert all(e.record["session_id"] == "s-9" for e in events)

    @pytest.mark.asyncio
    async def test_summary_per_provider(self, gateway_factory) -> None:
        a = FakeProviderClient(default=ProviderRejectedError("a", "HTTP 400"))
        b = FakeProviderClient(default=ok(prompt_tokens=3, completion_tokens=4))
        gateway = gateway_factory([make_provider("a"), make_provider("b")], {"a": a, "b": b})

        await gateway.generate("one", session_id="s-1")
        summary = gateway.request_logger.summary()

        assert summary["total_attempts"] == 2
        assert summary["successful_attempts"] == 1
        assert summary["total_tokens"] == 7
        assert summary["providers"]["a"]["success_rate"] == 0.0
        assert summary["providers"]["b"]["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_records_filter_and_order(self, gateway_factory) -> None:
        a = FakeProviderClient(default=ProviderRejectedError("a", "HTTP 400"))
        b = FakeProviderClient()
        gateway = gateway_factory([make_provider("a"), make_provider("b")], {"a": a, "b": b})
        await gateway.generate("one", session_id="s-1")
        await gateway.generate("two", session_id="s-1")

        log = gateway.request_logger
        assert [r.provider for r in log.records(limit=2)] == ["b", "a"]
        assert len(log.records(provider="a")) == 2
        assert all(r.outcome is AttemptOutcome.FATAL_ERROR for r in log.records(outcome=AttemptOutcome.FATAL_ERROR))

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, gateway_factory) -> None:
        a = FakeProviderClient()
        gateway = gateway_factory([make_provider("a")], {"a": a})
        await gateway.close()
        assert a.closed is True

    def test_record_lookup_by_id(self) -> None:
        log = RequestLogger()
        record = AttemptRecord(provider="a", model="a-model", outcome=AttemptOutcome.SUCCESS, latency_ms=12.0)
        log.record(record)

        assert log.get(record.id) is record
        with pytest.raises(AttemptRecordNotFoundError):
            log.get("missing")

    def test_summary_since_skips_older_records(self) -> None:
        log = RequestLogger()
        now = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
        for age_h, outcome in ((48, AttemptOutcome.FATAL_ERROR), (2, AttemptOutcome.SUCCESS), (0, AttemptOutcome.SUCCESS)):
            log.record(
                AttemptRecord(
                    provider="a",
                    model="a-model",
                    outcome=outcome,
                    latency_ms=10.0,
                    prompt_tokens=3,
                    completion_tokens=2,
                    timestamp=now - timedelta(hours=age_h),
                )
            )

        day = log.summary(since=now - timedelta(hours=24))
        everything = log.summary()

        assert day["total_attempts"] == 2
        assert day["failed_attempts"] == 0
        assert day["total_tokens"] == 10
        assert day["since"] == (now - timedelta(hours=24)).isoformat()
        assert everything["total_attempts"] == 3
        assert everything["since"] is None
        assert log.summary(since=now + timedelta(seconds=1))["providers"] == {}


# ═══════════════════════════════════════════════════════════════
#  Concurrency
# ═══════════════════════════════════════════════════════════════
async def _until(predicate) -> None:
    async def wait() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(wait(), timeout=5)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_parallel_requests_settle_the_budget_ledger(self, gateway_factory) -> None:
        gate = asyncio.Event()
        a = FakeProviderClient(default=ok(prompt_tokens=4, completion_tokens=6), gate=gate)
        gateway = gateway_factory([make_provider("a")], {"a": a})

        tasks = [asyncio.create_task(gateway.generate(f"prompt {i}", session_id="s-1")) for i in range(8)]
        await _until(lambda: a.call_count == 8)
        assert gateway.budget_snapshot().reserved > 0
        gate.set()
        results = await asyncio.gather(*tasks)

        snapshot = gateway.budget_snapshot()
        assert all(r.tokens == 10 for r in results)
        assert snapshot.consumed == 80
        assert snapshot.reserved == 0

    @pytest.mark.asyncio
    async def test_parallel_requests_respect_rate_limit_capacity(self, gateway_factory) -> None:
        gate = asyncio.Event()
        a = FakeProviderClient(gate=gate)
        b = FakeProviderClient(gate=gate)
        gateway = gateway_factory(
            [make_provider("a", requests_per_minute=3), make_provider("b")],
            {"a": a, "b": b},
        )

        tasks = [asyncio.create_task(gateway.generate(f"prompt {i}", session_id="s-1")) for i in range(8)]
        await _until(lambda: a.call_count + b.call_count == 8)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert a.call_count == 3
        assert b.call_count == 5
        assert sorted(r.provider for r in results) == ["a"] * 3 + ["b"] * 5
        assert gateway.get_health("a").rate_limit_available == 0
        assert gateway.get_health("a").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_parallel_failures_are_all_counted(self, gateway_factory, event_bus) -> None:
        opened = _collect(event_bus, PROVIDER_CIRCUIT_OPENED)
        gate = asyncio.Event()
        a = FakeProviderClient(default=ProviderRejectedError("a", "HTTP 400"), gate=gate)
        gateway = gateway_factory([make_provider("a")], {"a": a}, circuit_failure_threshold=3)

        tasks = [asyncio.create_task(gateway.generate(f"prompt {i}", session_id="s-1")) for i in range(6)]
        await _until(lambda: a.call_count == 6)
        gate.set()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(o, AllProvidersFailedError) for o in outcomes)
        health = gateway.get_health("a")
        assert health.consecutive_failures == 6
        assert health.total_failures == 6
        assert health.circuit_state is CircuitState.OPEN
        assert gateway.budget_snapshot().reserved == 0
        await event_bus.drain()
        assert [(e.provider, e.consecutive_failures) for e in opened] == [("a", 3)]
