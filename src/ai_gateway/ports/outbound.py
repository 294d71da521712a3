"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The gateway
depends only on these abstractions, never on concrete implementations
(HTTP clients, Redis drivers, etc.).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ai_gateway.domain.entities import GenerationRequest
from ai_gateway.domain.events import DomainEvent

if TYPE_CHECKING:
    from ai_gateway.shared.providers.types import ProviderConfig, ProviderResponse


# ═══════════════════════════════════════════════════════════════
#  Provider client port
# ═══════════════════════════════════════════════════════════════
class ProviderClient(ABC):
    """Issues exactly one generation call against one upstream provider.

    Implementations raise a classified ``ProviderError`` subclass on failure
    and never retry on their own.
    """

    @abstractmethod
    async def generate(
        self,
        config: ProviderConfig,
        request: GenerationRequest,
        *,
        model: str,
    ) -> ProviderResponse: ...

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
#  Cache port
# ═══════════════════════════════════════════════════════════════
class CachePort(ABC):
    """Key-value cache with TTL and pub/sub."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear(self, prefix: str = "") -> int: ...

    @abstractmethod
    async def publish(self, channel: str, message: str) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool: ...


# ═══════════════════════════════════════════════════════════════
#  Event bus port
# ═══════════════════════════════════════════════════════════════
class EventBusPort(ABC):
    @abstractmethod
    async def publish(self, event: DomainEvent) -> None: ...

    @abstractmethod
    def publish_nowait(self, event: DomainEvent) -> None: ...

    @abstractmethod
    def subscribe(self, event_type: str, handler: Any) -> None: ...
