"""LLM provider adapters.

One ``ProviderClient`` per upstream wire format, selected by provider name.
Retries, fallback and health tracking live in the gateway, never here.
"""

from ai_gateway.adapters.outbound.llm.clients import (
    CLIENT_TYPES,
    AnthropicClient,
    CohereClient,
    GeminiClient,
    HTTPProviderClient,
    HuggingFaceClient,
    OpenAICompatibleClient,
    build_provider_clients,
)

__all__ = [
    "CLIENT_TYPES",
    "AnthropicClient",
    "CohereClient",
    "GeminiClient",
    "HTTPProviderClient",
    "HuggingFaceClient",
    "OpenAICompatibleClient",
    "build_provider_clients",
]
