"""HTTP provider clients — one upstream generation call each, no retries.

Every client shares one ``httpx.AsyncClient`` and maps transport and HTTP
failures onto the gateway's error taxonomy:

* 429                 → ``ProviderRateLimitedError`` (retryable)
* 408, timeouts       → ``ProviderTimeoutError`` (retryable)
* 5xx, network errors → ``ProviderServerError`` (retryable)
* other 4xx           → ``ProviderRejectedError`` (fatal)
* unparseable body    → ``ProviderRejectedError`` (fatal)
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

import httpx
import structlog

from ai_gateway.domain.entities import GenerationRequest
from ai_gateway.domain.exceptions import (
    ProviderRateLimitedError,
    ProviderRejectedError,
    ProviderServerError,
    ProviderTimeoutError,
)
from ai_gateway.ports.outbound import ProviderClient
from ai_gateway.shared.providers.types import ProviderConfig, ProviderResponse

logger = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
ANTHROPIC_API_VERSION = "2023-06-01"


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        err = body.get("error", body.get("message"))
        if isinstance(err, dict):
            return str(err.get("message", err))
        if err:
            return str(err)
    return str(body)[:200]


def _int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


class HTTPProviderClient(ProviderClient):
    """Base class: request building and response parsing are per provider."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def generate(
        self,
        config: ProviderConfig,
        request: GenerationRequest,
        *,
        model: str,
    ) -> ProviderResponse:
        url, headers, params, body = self.build_request(config, request, model)
        try:
            response = await self._http.post(
                url,
                headers=headers,
                params=params or None,
                json=body,
                timeout=config.timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(config.name, config.timeout_s) from exc
        except httpx.TransportError as exc:
            raise ProviderServerError(config.name, f"Transport error: {type(exc).__name__}") from exc

        self._raise_for_status(config, response)

        try:
            return self.parse_response(response.json(), model)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("provider_malformed_response", provider=config.name, error=str(exc))
            raise ProviderRejectedError(
                config.name,
                f"Malformed response: {exc!r}",
                status_code=response.status_code,
            ) from exc

    @abstractmethod
    def build_request(
        self,
        config: ProviderConfig,
        request: GenerationRequest,
        model: str,
    ) -> tuple[str, dict[str, str], dict[str, str], dict[str, Any]]: ...

    @abstractmethod
    def parse_response(self, data: Any, model: str) -> ProviderResponse: ...

    @staticmethod
    def _raise_for_status(config: ProviderConfig, response: httpx.Response) -> None:
        provider = config.name
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise ProviderRateLimitedError(provider, retry_after=_retry_after(response))
        detail = _error_detail(response)
        if status >= 500:
            raise ProviderServerError(provider, f"HTTP {status}: {detail}", status_code=status)
        if status == 408:
            raise ProviderTimeoutError(provider, config.timeout_s)
        raise ProviderRejectedError(provider, f"HTTP {status}: {detail}", status_code=status)


# ── OpenAI-compatible (openai, openrouter, mistral, deepseek, grok) ──
class OpenAICompatibleClient(HTTPProviderClient):
    def build_request(self, config, request, model):  # type: ignore[no-untyped-def]
        messages = [
            {"role": "system", "content": request.system_prompt or DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": request.prompt},
        ]
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(config.metadata.get("headers", {}))
        body = {
            "model": model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        return f"{config.base_url}/chat/completions", headers, {}, body

    def parse_response(self, data, model):  # type: ignore[no-untyped-def]
        content = data["choices"][0]["message"]["content"]
        if not isinstance(content, str):
            raise TypeError("message content is not a string")
        usage = data.get("usage") or {}
        return ProviderResponse(
            content=content,
            model=data.get("model") or model,
            prompt_tokens=_int_or_none(usage.get("prompt_tokens")),
            completion_tokens=_int_or_none(usage.get("completion_tokens")),
            total_tokens=_int_or_none(usage.get("total_tokens")),
            raw={"id": data.get("id")},
        )


# ── Anthropic ────────────────────────────────────────────────
class AnthropicClient(HTTPProviderClient):
    def build_request(self, config, request, model):  # type: ignore[no-untyped-def]
        headers = {
            "x-api-key": config.api_key,
            "anthropic-version": config.metadata.get("api_version", ANTHROPIC_API_VERSION),
            "content-type": "application/json",
        }
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        return f"{config.base_url}/messages", headers, {}, body

    def parse_response(self, data, model):  # type: ignore[no-untyped-def]
        text_blocks = [b["text"] for b in data["content"] if b.get("type", "text") == "text"]
        if not text_blocks:
            raise ValueError("no text content blocks")
        usage = data.get("usage") or {}
        prompt = _int_or_none(usage.get("input_tokens"))
        completion = _int_or_none(usage.get("output_tokens"))
        return ProviderResponse(
            content="".join(text_blocks),
            model=data.get("model") or model,
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion if prompt is not None and completion is not None else None,
            raw={"id": data.get("id"), "stop_reason": data.get("stop_reason")},
        )


# ── Google Gemini ────────────────────────────────────────────
class GeminiClient(HTTPProviderClient):
    def build_request(self, config, request, model):  # type: ignore[no-untyped-def]
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }
        if request.system_prompt:
            body["system_instruction"] = {"parts": [{"text": request.system_prompt}]}
        url = f"{config.base_url}/models/{model}:generateContent"
        return url, {"Content-Type": "application/json"}, {"key": config.api_key}, body

    def parse_response(self, data, model):  # type: ignore[no-untyped-def]
        parts = data["candidates"][0]["content"]["parts"]
        content = "".join(p.get("text", "") for p in parts)
        usage = data.get("usageMetadata") or {}
        prompt = _int_or_none(usage.get("promptTokenCount"))
        completion = _int_or_none(usage.get("candidatesTokenCount"))
        return ProviderResponse(
            content=content,
            model=data.get("modelVersion") or model,
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=_int_or_none(usage.get("totalTokenCount")),
            raw={"finish_reason": data["candidates"][0].get("finishReason")},
        )


# ── Cohere ───────────────────────────────────────────────────
class CohereClient(HTTPProviderClient):
    def build_request(self, config, request, model):  # type: ignore[no-untyped-def]
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }
        body: dict[str, Any] = {
            "model": model,
            "message": request.prompt,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.system_prompt:
            body["preamble"] = request.system_prompt
        return f"{config.base_url}/chat", headers, {}, body

    def parse_response(self, data, model):  # type: ignore[no-untyped-def]
        content = data["text"]
        if not isinstance(content, str):
            raise TypeError("text is not a string")
        billed = (data.get("meta") or {}).get("billed_units") or {}
        prompt = _int_or_none(billed.get("input_tokens"))
        completion = _int_or_none(billed.get("output_tokens"))
        return ProviderResponse(
            content=content,
            model=model,
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion if prompt is not None and completion is not None else None,
            raw={"generation_id": data.get("generation_id")},
        )


# ── HuggingFace inference API ────────────────────────────────
class HuggingFaceClient(HTTPProviderClient):
    def build_request(self, config, request, model):  # type: ignore[no-untyped-def]
        prompt = request.prompt
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\n{prompt}"
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "inputs": prompt,
            "parameters": {
                "temperature": request.temperature,
                "max_new_tokens": request.max_tokens,
                "return_full_text": False,
            },
        }
        return f"{config.base_url}/{model}", headers, {}, body

    def parse_response(self, data, model):  # type: ignore[no-untyped-def]
        # No usage reported; the gateway estimates tokens from text length
        if isinstance(data, list):
            content = data[0]["generated_text"]
        elif isinstance(data, dict):
            content = data["generated_text"]
        else:
            raise TypeError(f"unexpected payload type {type(data).__name__}")
        if not isinstance(content, str):
            raise TypeError("generated_text is not a string")
        return ProviderResponse(content=content, model=model)


# ── Strategy map ─────────────────────────────────────────────
CLIENT_TYPES: dict[str, type[HTTPProviderClient]] = {
    "openai": OpenAICompatibleClient,
    "openrouter": OpenAICompatibleClient,
    "mistral": OpenAICompatibleClient,
    "deepseek": OpenAICompatibleClient,
    "grok": OpenAICompatibleClient,
    "anthropic": AnthropicClient,
    "gemini": GeminiClient,
    "cohere": CohereClient,
    "huggingface": HuggingFaceClient,
}


def build_provider_clients(
    providers: list[ProviderConfig] | tuple[ProviderConfig, ...],
    http: httpx.AsyncClient,
) -> dict[str, ProviderClient]:
    """Build the name → client map. Unknown providers speak the OpenAI wire format."""
    clients: dict[str, ProviderClient] = {}
    for cfg in providers:
        kind = cfg.metadata.get("client", cfg.name)
        client_type = CLIENT_TYPES.get(kind, OpenAICompatibleClient)
        clients[cfg.name] = client_type(http)
        logger.debug("provider_client_registered", provider=cfg.name, client=client_type.__name__)
    return clients
