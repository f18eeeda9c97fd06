from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from scalper.models.market_models import Instrument

_ZERO = Decimal("0")


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    EMERGENCY_CLOSE = "EMERGENCY_CLOSE"


@dataclass(frozen=True)
class Quote:
    input_instrument: Instrument
    output_instrument: Instrument
    in_amount: Decimal
    out_amount: Decimal
    slippage_bps: int
    price_impact_pct: Decimal = _ZERO
    route: str = ""


@dataclass(frozen=True)
class SwapResult:
    input_amount: Decimal
    output_amount: Decimal
    settlement_reference: str


@dataclass
class Position:
    id: str
    instrument: Instrument
    entry_price: Decimal
    entry_quantity: Decimal
    capital_committed: Decimal
    target_price: Decimal
    stop_price: Decimal
    opened_at: datetime
    status: PositionStatus = PositionStatus.OPEN

    initial_stop_price: Optional[Decimal] = None
    exit_price: Optional[Decimal] = None
    exit_quantity: Optional[Decimal] = None
    proceeds: Optional[Decimal] = None
    realized_pnl: Optional[Decimal] = None
    closed_at: Optional[datetime] = None
    close_reason: Optional[CloseReason] = None
    last_close_error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.initial_stop_price is None:
            self.initial_stop_price = self.stop_price

    @property
    def trailing(self) -> bool:
        return self.initial_stop_price is not None and self.stop_price > self.initial_stop_price

    def unrealized_pnl_percent(self, price: Decimal) -> Decimal:
        return (price - self.entry_price) / self.entry_price * 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instrument": self.instrument.symbol,
            "status": self.status.value,
            "entry_price": str(self.entry_price),
            "entry_quantity": str(self.entry_quantity),
            "capital_committed": str(self.capital_committed),
            "target_price": str(self.target_price),
            "stop_price": str(self.stop_price),
            "opened_at": self.opened_at.isoformat(),
            "exit_price": None if self.exit_price is None else str(self.exit_price),
            "exit_quantity": None if self.exit_quantity is None else str(self.exit_quantity),
            "proceeds": None if self.proceeds is None else str(self.proceeds),
            "realized_pnl": None if self.realized_pnl is None else str(self.realized_pnl),
            "closed_at": None if self.closed_at is None else self.closed_at.isoformat(),
            "close_reason": None if self.close_reason is None else self.close_reason.value,
            "last_close_error": self.last_close_error,
        }


@dataclass
class TradeStatistics:
    """Aggregate counters, updated on every close and never reset."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_profit: Decimal = field(default_factory=lambda: _ZERO)
    total_loss: Decimal = field(default_factory=lambda: _ZERO)
    net_pnl: Decimal = field(default_factory=lambda: _ZERO)
    win_rate: float = 0.0
    avg_profit: Decimal = field(default_factory=lambda: _ZERO)
    avg_loss: Decimal = field(default_factory=lambda: _ZERO)
    max_drawdown: Decimal = field(default_factory=lambda: _ZERO)   # most negative net_pnl seen
    volume: Decimal = field(default_factory=lambda: _ZERO)

    def add_volume(self, amount: Decimal) -> None:
        self.volume += amount

    def record_close(self, pnl: Decimal, proceeds: Decimal) -> None:
        self.total_trades += 1
        self.volume += proceeds

        if pnl > 0:
            self.winning_trades += 1
            self.total_profit += pnl
        else:
            self.losing_trades += 1
            self.total_loss += abs(pnl)

        self.net_pnl = self.total_profit - self.total_loss
        self.win_rate = self.winning_trades / self.total_trades if self.total_trades else 0.0
        self.avg_profit = self.total_profit / self.winning_trades if self.winning_trades else _ZERO
        self.avg_loss = self.total_loss / self.losing_trades if self.losing_trades else _ZERO

        if self.net_pnl < self.max_drawdown:
            self.max_drawdown = self.net_pnl

    def copy(self) -> "TradeStatistics":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "total_profit": str(self.total_profit),
            "total_loss": str(self.total_loss),
            "net_pnl": str(self.net_pnl),
            "win_rate": self.win_rate,
            "avg_profit": str(self.avg_profit),
            "avg_loss": str(self.avg_loss),
            "max_drawdown": str(self.max_drawdown),
            "volume": str(self.volume),
        }
