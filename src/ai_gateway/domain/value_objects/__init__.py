"""Domain value objects — immutable, self-validating types.

Value objects have *no identity*; two instances with equal fields are equal.
They enforce invariants at construction time so the rest of the domain can
trust their contents without re-checking.
"""

from __future__ import annotations

from dataclasses import dataclass

from ai_gateway.domain.exceptions import ValidationError


# ═══════════════════════════════════════════════════════════════
#  TokenUsage
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Prompt / completion token counts for one generation."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    def __post_init__(self) -> None:
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValidationError("Token counts cannot be negative")

    @property
    def total(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
        )


# ═══════════════════════════════════════════════════════════════
#  Budget
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class BudgetReservation:
    """Handle returned by a budget reservation.

    Commit and release always apply to the period the tokens were reserved
    in, even when the calendar month rolls over mid-request.
    """

    period: str
    tokens: int


@dataclass(frozen=True, slots=True)
class BudgetSnapshot:
    """Read-only view of one billing period's ledger."""

    period: str
    consumed: int
    reserved: int
    limit: int
    alert_threshold: float
    alert_emitted: bool = False

    @property
    def committed_and_reserved(self) -> int:
        return self.consumed + self.reserved

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.committed_and_reserved)

    @property
    def usage_fraction(self) -> float:
        if self.limit <= 0:
            return 1.0
        return self.committed_and_reserved / self.limit


@dataclass(frozen=True, slots=True)
class BudgetAlert:
    """Emitted once per period when usage crosses the alert threshold."""

    period: str
    consumed: int
    reserved: int
    limit: int
    threshold: float

    @property
    def usage_pct(self) -> float:
        return float(f"{((self.consumed + self.reserved) / self.limit * 100):.1f}") if self.limit else 100.0
