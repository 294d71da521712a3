"""Domain enumerations for the AI request gateway."""

from __future__ import annotations

import enum


class LLMProvider(str, enum.Enum):
    """Upstream providers the gateway ships defaults and clients for."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    OPENROUTER = "openrouter"
    COHERE = "cohere"
    DEEPSEEK = "deepseek"
    HUGGINGFACE = "huggingface"
    GROK = "grok"


# Default fallback chain, most preferred first.
DEFAULT_FALLBACK_ORDER: tuple[str, ...] = tuple(p.value for p in LLMProvider)


class AttemptOutcome(str, enum.Enum):
    """Outcome of one upstream attempt."""

    SUCCESS = "success"
    RETRYABLE_ERROR = "retryable_error"
    RETRYABLE_EXHAUSTED = "retryable_exhausted"
    FATAL_ERROR = "fatal_error"

    @property
    def is_failure(self) -> bool:
        return self is not AttemptOutcome.SUCCESS


class CacheBackend(str, enum.Enum):
    MEMORY = "memory"
    REDIS = "redis"
