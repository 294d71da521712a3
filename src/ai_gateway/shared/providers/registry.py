"""Provider registry — static per-provider configuration.

Built once from ``GatewayConfig`` and read-only afterwards.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

import structlog

from ai_gateway.domain.enums import DEFAULT_FALLBACK_ORDER
from ai_gateway.domain.exceptions import ProviderNotFoundError
from ai_gateway.shared.providers.types import ProviderConfig

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """Name → ``ProviderConfig`` lookup plus the configured fallback order."""

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        *,
        fallback_order: Sequence[str] = DEFAULT_FALLBACK_ORDER,
    ) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        for cfg in providers:
            if cfg.name in self._providers:
                raise ValueError(f"Duplicate provider configuration: {cfg.name!r}")
            self._providers[cfg.name] = cfg

        order: list[str] = []
        for name in fallback_order:
            key = name.strip().lower()
            if key in self._providers and key not in order:
                order.append(key)
            elif key not in self._providers:
                logger.debug("fallback_provider_not_configured", provider=key)
        # Registered providers left out of the order still serve, after the listed ones
        unlisted = [name for name in self._providers if name not in order]
        if unlisted:
            logger.info("fallback_order_appended_unlisted", providers=unlisted)
        self._fallback_order = tuple(order + unlisted)

    def get(self, name: str) -> ProviderConfig:
        try:
            return self._providers[name.strip().lower()]
        except KeyError:
            raise ProviderNotFoundError(name) from None

    def fallback_order(self) -> tuple[str, ...]:
        return self._fallback_order

    def names(self) -> tuple[str, ...]:
        return tuple(self._providers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._providers

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)
