"""In-memory metrics snapshot for the API + console."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass
class MetricsSnapshot:
    running: bool = False
    paused: bool = False
    cycles: int = 0
    skipped_ticks: int = 0
    last_cycle_at: Optional[datetime] = None
    last_prices: Dict[str, str] = field(default_factory=dict)
    open_positions: int = 0
    current_capital: Optional[str] = None
    available_capital: Optional[str] = None
    net_pnl: str = "0"
    win_rate: float = 0.0
    total_trades: int = 0
    last_risk_reason: str = ""

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "paused": self.paused,
            "cycles": self.cycles,
            "skipped_ticks": self.skipped_ticks,
            "last_cycle_at": None if self.last_cycle_at is None else self.last_cycle_at.isoformat(),
            "last_prices": dict(self.last_prices),
            "open_positions": self.open_positions,
            "current_capital": self.current_capital,
            "available_capital": self.available_capital,
            "net_pnl": self.net_pnl,
            "win_rate": self.win_rate,
            "total_trades": self.total_trades,
            "last_risk_reason": self.last_risk_reason,
        }
