"""Risk gate. Decides whether a new position may open; never raises for a breach."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Deque, Dict, Optional

from scalper.infrastructure.logging.logging import get_logger
from scalper.infrastructure.utils.config import RiskLimits, apply_update
from scalper.infrastructure.utils.decimals import HUNDRED, ZERO, percent
from scalper.infrastructure.utils.timeutils import Clock, utc_now
from scalper.models.market_models import USDC, Instrument
from scalper.models.trade_models import CloseReason, Position
from scalper.services.execution.venue import BalanceProvider
from scalper.services.trading.position_ledger import PositionLedger

RATE_WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class RiskSnapshot:
    liquid_balance: Decimal
    position_value: Decimal
    net_pnl: Decimal
    committed: Decimal
    at: datetime

    @property
    def current_capital(self) -> Decimal:
        return self.liquid_balance + self.position_value


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str
    cooldown_remaining_sec: int = 0


@dataclass(frozen=True)
class RiskStatus:
    decision: RiskDecision
    current_capital: Decimal
    total_pnl: Decimal
    drawdown_pct: Decimal
    daily_pnl: Decimal
    trades_this_hour: int
    paused: bool

    @property
    def allowed(self) -> bool:
        return self.decision.allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.decision.allowed,
            "reason": self.decision.reason,
            "cooldown_remaining_sec": self.decision.cooldown_remaining_sec,
            "current_capital": str(self.current_capital),
            "total_pnl": str(self.total_pnl),
            "drawdown_pct": str(self.drawdown_pct),
            "daily_pnl": str(self.daily_pnl),
            "trades_this_hour": self.trades_this_hour,
            "paused": self.paused,
        }


class RiskGate:
    """Ordered checks, first failure wins:

    1) manual pause
    2) drawdown from initial capital
    3) daily loss (accumulator resets when the UTC date changes)
    4) liquid balance below the minimum reserve
    5) trades in the trailing hour
    6) cooldown after a losing close
    """

    def __init__(
        self,
        limits: RiskLimits,
        ledger: PositionLedger,
        balances: BalanceProvider,
        *,
        clock: Clock = utc_now,
        quote_asset: Instrument = USDC,
    ) -> None:
        self.limits = limits
        self.ledger = ledger
        self.balances = balances
        self.clock = clock
        self.quote_asset = quote_asset

        self._paused = False
        self._pause_reason = ""
        self._trade_times: Deque[datetime] = deque()
        self._daily_pnl = ZERO
        self._day: date = clock().date()
        self._last_loss_at: Optional[datetime] = None
        self.log = get_logger("risk_gate")

    # ---- state ----
    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def daily_pnl(self) -> Decimal:
        self._roll_day(self.clock())
        return self._daily_pnl

    def _roll_day(self, now: datetime) -> None:
        today = now.date()
        if today != self._day:
            self.log.info("daily_reset", previous_day=self._day.isoformat(), daily_pnl=self._daily_pnl)
            self._day = today
            self._daily_pnl = ZERO

    def _prune(self, now: datetime) -> None:
        while self._trade_times and now - self._trade_times[0] >= RATE_WINDOW:
            self._trade_times.popleft()

    def trades_this_hour(self) -> int:
        self._prune(self.clock())
        return len(self._trade_times)

    def record_trade(self, pnl: Decimal) -> None:
        now = self.clock()
        self._roll_day(now)
        self._trade_times.append(now)
        self._daily_pnl += pnl
        if pnl < 0:
            self._last_loss_at = now
        self.log.info("trade_recorded", pnl=pnl, daily_pnl=self._daily_pnl, trades_this_hour=self.trades_this_hour())

    def on_position_closed(self, position: Position) -> None:
        if position.realized_pnl is not None:
            self.record_trade(position.realized_pnl)

    # ---- decision ----
    async def snapshot(self) -> RiskSnapshot:
        return RiskSnapshot(
            liquid_balance=await self.balances.balance(self.quote_asset),
            position_value=self.ledger.position_value(),
            net_pnl=self.ledger.stats().net_pnl,
            committed=self.ledger.committed_capital(),
            at=self.clock(),
        )

    def drawdown_pct(self, current_capital: Decimal) -> Decimal:
        initial = self.limits.initial_capital
        return (initial - current_capital) / initial * HUNDRED

    def check(self, snapshot: RiskSnapshot) -> RiskDecision:
        now = snapshot.at
        self._roll_day(now)
        self._prune(now)
        limits = self.limits

        if self._paused:
            return RiskDecision(False, f"paused {self._pause_reason}".strip())

        dd = self.drawdown_pct(snapshot.current_capital)
        if dd >= limits.max_drawdown_percent:
            return RiskDecision(False, f"max_drawdown_reached drawdown={dd:.2f}%")

        if self._daily_pnl < 0:
            daily_loss = abs(self._daily_pnl) / limits.initial_capital * HUNDRED
            if daily_loss >= limits.max_daily_loss_percent:
                return RiskDecision(False, f"max_daily_loss_reached loss={daily_loss:.2f}%")

        if snapshot.liquid_balance < limits.min_capital_reserve:
            return RiskDecision(
                False,
                f"below_capital_reserve balance={snapshot.liquid_balance:.2f} reserve={limits.min_capital_reserve}",
            )

        if len(self._trade_times) >= limits.max_trades_per_hour:
            return RiskDecision(False, f"max_trades_per_hour_reached count={len(self._trade_times)}")

        if self._last_loss_at is not None and limits.cooldown_after_loss_seconds > 0:
            elapsed = (now - self._last_loss_at).total_seconds()
            remaining = limits.cooldown_after_loss_seconds - elapsed
            if remaining > 0:
                return RiskDecision(False, "cooldown_after_loss", math.ceil(remaining))

        return RiskDecision(True, "ok")

    async def evaluate(self) -> RiskStatus:
        snap = await self.snapshot()
        decision = self.check(snap)
        status = RiskStatus(
            decision=decision,
            current_capital=snap.current_capital,
            total_pnl=snap.net_pnl,
            drawdown_pct=self.drawdown_pct(snap.current_capital),
            daily_pnl=self._daily_pnl,
            trades_this_hour=len(self._trade_times),
            paused=self._paused,
        )
        if decision.allowed:
            self.log.debug("risk_check", allowed=True, current_capital=status.current_capital)
        else:
            self.log.warning(
                "risk_check",
                allowed=False,
                reason=decision.reason,
                cooldown_remaining_sec=decision.cooldown_remaining_sec,
                current_capital=status.current_capital,
                drawdown_pct=status.drawdown_pct,
                daily_pnl=status.daily_pnl,
            )
        return status

    # ---- capital ----
    def available_capital(self) -> Decimal:
        stats = self.ledger.stats()
        available = (
            self.limits.initial_capital
            + stats.net_pnl
            - self.ledger.committed_capital()
            - self.limits.min_capital_reserve
        )
        return max(ZERO, available)

    def max_position_size(self) -> Decimal:
        cap = self.limits.initial_capital * percent(self.limits.max_position_size_percent)
        return min(self.available_capital(), cap)

    # ---- administration ----
    def pause(self, reason: str = "manual") -> None:
        self._paused = True
        self._pause_reason = reason
        self.log.warning("trading_paused", reason=reason)

    def resume(self) -> None:
        self._paused = False
        self._pause_reason = ""
        self.log.info("trading_resumed")

    def update_limits(self, changes: Dict[str, Any]) -> RiskLimits:
        """Validate and swap the whole limit set. Raises ValueError, leaving the old one."""
        self.limits = apply_update(self.limits, changes)
        self.log.info("risk_limits_updated", **{k: str(v) for k, v in changes.items()})
        return self.limits

    async def emergency_stop(self, reason: str = "emergency_stop") -> None:
        self.pause(reason)
        await self.ledger.close_all_positions(CloseReason.EMERGENCY_CLOSE)
