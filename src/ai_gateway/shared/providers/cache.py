"""Response cache — fingerprint → previously generated result.

Entries live in a ``CachePort`` backend as orjson payloads and are checked
against their TTL on every lookup.  Expired entries are deleted lazily;
payloads that cannot be decoded are deleted and reported as a miss.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections import Counter
from collections.abc import Callable
from typing import Any

import orjson
import structlog

from ai_gateway.domain.entities import CacheEntry, GenerationRequest, GenerationResult
from ai_gateway.domain.exceptions import CacheCorruptionError, ProviderNotFoundError
from ai_gateway.ports.outbound import CachePort
from ai_gateway.shared.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)

KEY_PREFIX = "ai_cache:"
AUTO_ROUTE = "auto"


def _normalize(text: str | None) -> str:
    return " ".join((text or "").split())


def resolve_route(request: GenerationRequest, registry: ProviderRegistry) -> tuple[str, str]:
    """Provider/model pair that identifies the request for caching.

    Pinned requests resolve to the named provider and its default model
    unless a model override is given.  Unpinned requests use the ``auto``
    routing key since the serving provider is not known before routing.
    """
    if request.provider is not None:
        try:
            cfg = registry.get(request.provider)
            default_model = cfg.default_model
        except ProviderNotFoundError:
            default_model = AUTO_ROUTE
        return request.provider, request.model or default_model
    return AUTO_ROUTE, request.model or AUTO_ROUTE


def fingerprint(request: GenerationRequest, registry: ProviderRegistry) -> str:
    provider, model = resolve_route(request, registry)
    material = {
        "prompt": _normalize(request.prompt),
        "system_prompt": _normalize(request.system_prompt),
        "provider": provider,
        "model": model,
        "context_rule_id": request.context_rule_id,
        "knowledge_base_ids": sorted(set(request.knowledge_base_ids)),
        "temperature": request.temperature,
        "max_tokens": request.max_tokens,
    }
    return hashlib.sha256(orjson.dumps(material, option=orjson.OPT_SORT_KEYS)).hexdigest()


class ResponseCache:
    def __init__(
        self,
        backend: CachePort,
        *,
        ttl_seconds: float = 3600.0,
        max_tracked: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_tracked <= 0:
            raise ValueError("max_tracked must be positive")
        self._backend = backend
        self._ttl = ttl_seconds
        self._max_tracked = max_tracked
        self._clock = clock

        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stores = 0
        self._corruptions = 0
        # Per-fingerprint hit counts; entries leave with their cache entry
        self._hit_counts: Counter[str] = Counter()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    async def get(self, fp: str) -> CacheEntry | None:
        entry = await self._load(fp)
        with self._lock:
            if entry is None:
                self._misses += 1
                self._hit_counts.pop(fp, None)
                return None
            self._hits += 1
            self._hit_counts[fp] += 1
            if len(self._hit_counts) > self._max_tracked:
                for cold, _ in self._hit_counts.most_common()[self._max_tracked:]:
                    del self._hit_counts[cold]
        return entry

    async def peek(self, fp: str) -> tuple[CacheEntry, int] | None:
        """Live entry and its hit count, without touching the lookup stats."""
        entry = await self._load(fp)
        with self._lock:
            if entry is None:
                self._hit_counts.pop(fp, None)
                return None
            return entry, self._hit_counts.get(fp, 0)

    async def put(
        self,
        fp: str,
        result: GenerationResult,
        *,
        ttl_seconds: float | None = None,
    ) -> CacheEntry:
        ttl = ttl_seconds if ttl_seconds is not None else self._ttl
        entry = CacheEntry(fingerprint=fp, result=result, created_at=self._clock(), ttl_seconds=ttl)
        payload = orjson.dumps(
            {
                "fingerprint": fp,
                "result": result.to_dict(),
                "created_at": entry.created_at,
                "ttl_seconds": ttl,
            }
        ).decode()
        # Backend expiry is only a memory bound; lookups enforce the TTL themselves
        await self._backend.set(KEY_PREFIX + fp, payload, ttl_seconds=max(1, int(ttl) + 1))
        with self._lock:
            self._stores += 1
        return entry

    async def clear(self) -> int:
        removed = await self._backend.clear(KEY_PREFIX)
        with self._lock:
            self._hit_counts.clear()
        logger.info("ai_cache_cleared", removed=removed)
        return removed

    def stats(self, *, top: int = 10) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "stores": self._stores,
                "corruptions": self._corruptions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "ttl_seconds": self._ttl,
                "top_entries": [
                    {"fingerprint": fp, "hits": count}
                    for fp, count in self._hit_counts.most_common(top)
                ],
            }

    # ── Internals ────────────────────────────────────────────
    async def _load(self, fp: str) -> CacheEntry | None:
        """Decode the live entry for ``fp``; expired or corrupt entries are deleted."""
        raw = await self._backend.get(KEY_PREFIX + fp)
        if raw is None:
            return None

        try:
            entry = self._decode(fp, raw)
        except CacheCorruptionError as exc:
            logger.warning("ai_cache_corrupt_entry", fingerprint=fp[:12], error=exc.message)
            with self._lock:
                self._corruptions += 1
            await self._backend.delete(KEY_PREFIX + fp)
            return None

        if entry.is_expired(self._clock()):
            logger.debug("ai_cache_expired", fingerprint=fp[:12])
            await self._backend.delete(KEY_PREFIX + fp)
            return None
        return entry

    @staticmethod
    def _decode(fp: str, raw: str | bytes) -> CacheEntry:
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise CacheCorruptionError(fp, f"invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CacheCorruptionError(fp, "payload is not an object")
        if data.get("fingerprint") != fp:
            raise CacheCorruptionError(fp, "fingerprint mismatch")
        try:
            result = GenerationResult.from_dict(data["result"])
            created_at = float(data["created_at"])
            ttl = float(data["ttl_seconds"])
        except (KeyError, TypeError, ValueError) as exc:
            raise CacheCorruptionError(fp, f"malformed entry: {exc!r}") from exc
        return CacheEntry(fingerprint=fp, result=result, created_at=created_at, ttl_seconds=ttl)
