"""Position sizing based on available capital and a fixed percentage."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from scalper.infrastructure.utils.decimals import ZERO, percent


@dataclass(frozen=True)
class SizeDecision:
    allowed: bool
    size: Decimal
    reason: str


class PositionSizer:
    """Compute the quote-asset amount to commit to a new position.

    Notes:
    - size = available capital x position_size_percent, optionally capped.
    - No martingale. Size depends only on capital, never on previous outcomes.
    """

    def __init__(self, *, position_size_percent: Decimal, min_trade_size: Decimal = ZERO) -> None:
        self.position_size_percent = Decimal(position_size_percent)
        self.min_trade_size = Decimal(min_trade_size)

    def compute(self, *, available: Decimal, cap: Optional[Decimal] = None) -> SizeDecision:
        if available <= 0:
            return SizeDecision(False, ZERO, "no_available_capital")

        size = available * percent(self.position_size_percent)
        if cap is not None and size > cap:
            size = cap

        if size < self.min_trade_size:
            return SizeDecision(False, size, f"below_min_trade_size size={size:.2f} min={self.min_trade_size}")

        return SizeDecision(True, size, "ok")
