"""Prometheus metrics for the AI request gateway."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Provider attempts ────────────────────────────────────────
AI_ATTEMPTS_TOTAL = Counter(
    "ai_provider_attempts_total",
    "Upstream provider attempts by outcome",
    ["provider", "outcome"],
)

AI_ATTEMPT_LATENCY = Histogram(
    "ai_provider_attempt_latency_seconds",
    "Latency of individual upstream attempts",
    ["provider"],
    buckets=(0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

AI_TOKENS_TOTAL = Counter(
    "ai_tokens_total",
    "Tokens consumed by successful attempts",
    ["provider", "kind"],  # prompt / completion
)

AI_RATE_LIMIT_SKIPS = Counter(
    "ai_rate_limit_skips_total",
    "Providers skipped because their local bucket was empty",
    ["provider"],
)

# ── Cache ────────────────────────────────────────────────────
AI_CACHE_LOOKUPS = Counter(
    "ai_cache_lookups_total",
    "Response cache lookups",
    ["result"],  # hit / miss
)

# ── Budget ───────────────────────────────────────────────────
AI_BUDGET_USAGE_RATIO = Gauge(
    "ai_token_budget_usage_ratio",
    "Committed plus reserved tokens over the monthly limit",
)

AI_BUDGET_ALERTS = Counter(
    "ai_token_budget_alerts_total",
    "Budget threshold alerts emitted",
)
