"""Position lifecycle: open from a BUY signal, manage brackets, close, account.

The ledger is the only writer of Position objects and TradeStatistics. Every
state change goes through the OrderExecutor, and a position changes state only
after the executor returned a settled SwapResult.
"""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from scalper.infrastructure.errors import ExecutionError
from scalper.infrastructure.logging.logging import get_logger
from scalper.infrastructure.utils.config import StrategyParameters, apply_update
from scalper.infrastructure.utils.decimals import HUNDRED, ONE, ZERO, dsum
from scalper.infrastructure.utils.timeutils import Clock, utc_now
from scalper.models.market_models import USDC, Instrument
from scalper.models.trade_models import CloseReason, Position, PositionStatus, TradeStatistics
from scalper.services.execution.order_executor import OrderExecutor
from scalper.services.risk.position_sizer import PositionSizer
from scalper.services.strategy.signal_generator import Signal, Verdict

PriceLookup = Callable[[Instrument], Optional[Decimal]]
CloseListener = Callable[[Position], None]


class PositionLedger:
    def __init__(
        self,
        executor: OrderExecutor,
        price_of: PriceLookup,
        params: Optional[StrategyParameters] = None,
        *,
        clock: Clock = utc_now,
        quote_asset: Instrument = USDC,
    ) -> None:
        self.executor = executor
        self.price_of = price_of
        self.params = params or StrategyParameters()
        self.clock = clock
        self.quote_asset = quote_asset

        self._open: Dict[str, Position] = {}
        self._closed: List[Position] = []
        self._stats = TradeStatistics()
        self._listeners: List[CloseListener] = []
        self._lock = asyncio.Lock()
        self.log = get_logger("position_ledger")

    # ---- configuration ----
    def update_parameters(self, changes: Dict[str, Any]) -> StrategyParameters:
        """Validate and swap the whole parameter set. Raises ValueError, leaving the old one."""
        self.params = apply_update(self.params, changes)
        self.executor.max_slippage_bps = self.params.max_slippage_bps
        self.executor.max_price_impact_pct = self.params.max_price_impact_pct
        self.log.info("strategy_parameters_updated", **{k: str(v) for k, v in changes.items()})
        return self.params

    def add_close_listener(self, listener: CloseListener) -> None:
        self._listeners.append(listener)

    # ---- opening ----
    async def execute_signal(
        self,
        signal: Signal,
        available_capital: Decimal,
        max_size: Optional[Decimal] = None,
    ) -> Optional[Position]:
        """Open a position for a BUY signal. Returns None when nothing was opened."""
        if signal.verdict != Verdict.BUY:
            if signal.verdict == Verdict.SELL:
                self.log.debug("sell_signal_ignored", instrument=signal.instrument.symbol)
            return None

        async with self._lock:
            inst = signal.instrument
            if len(self._open) >= self.params.max_positions:
                self.log.info("open_rejected", instrument=inst.symbol, reason="max_positions_reached",
                              open_positions=len(self._open), max_positions=self.params.max_positions)
                return None

            if self.open_position_for(inst) is not None:
                self.log.info("open_rejected", instrument=inst.symbol, reason="position_exists")
                return None

            sizer = PositionSizer(
                position_size_percent=self.params.position_size_percent,
                min_trade_size=self.params.min_trade_size,
            )
            size = sizer.compute(available=available_capital, cap=max_size)
            if not size.allowed:
                self.log.info("open_rejected", instrument=inst.symbol, reason=size.reason,
                              available=available_capital)
                return None

            try:
                result = await self.executor.swap(sell=self.quote_asset, buy=inst, amount=size.size)
            except ExecutionError as e:
                self.log.error("swap_failed", side="BUY", instrument=inst.symbol, amount=size.size, error=str(e))
                return None

            # entry values come from the settled fill, not the signal's estimate
            capital = result.input_amount
            quantity = result.output_amount
            entry = capital / quantity
            position = Position(
                id=f"{inst.symbol}-{uuid.uuid4().hex[:8]}",
                instrument=inst,
                entry_price=entry,
                entry_quantity=quantity,
                capital_committed=capital,
                target_price=entry * (ONE + self.params.take_profit_percent / HUNDRED),
                stop_price=entry * (ONE - self.params.stop_loss_percent / HUNDRED),
                opened_at=self.clock(),
            )
            self._open[position.id] = position
            self._stats.add_volume(capital)

            self.log.info(
                "position_opened",
                position_id=position.id,
                instrument=inst.symbol,
                entry_price=entry,
                quantity=quantity,
                capital=capital,
                target=position.target_price,
                stop=position.stop_price,
                confidence=signal.confidence,
                settlement=result.settlement_reference,
            )
            return position

    # ---- management ----
    async def manage_positions(self) -> List[Position]:
        """One management pass over every open position. Returns the positions closed."""
        closed: List[Position] = []
        async with self._lock:
            for position in list(self._open.values()):
                price = self.price_of(position.instrument)
                if price is None:
                    continue

                if price >= position.target_price:
                    if await self._close(position, CloseReason.TAKE_PROFIT, price):
                        closed.append(position)
                    continue

                if price <= position.stop_price:
                    reason = CloseReason.TRAILING_STOP if position.trailing else CloseReason.STOP_LOSS
                    if await self._close(position, reason, price):
                        closed.append(position)
                    continue

                if position.unrealized_pnl_percent(price) > self.params.trailing_activation_percent:
                    self._ratchet_stop(position, price)
        return closed

    def _ratchet_stop(self, position: Position, price: Decimal) -> None:
        candidate = price * (ONE - self.params.stop_loss_percent / HUNDRED)
        if candidate <= position.stop_price:
            return
        previous = position.stop_price
        position.stop_price = candidate
        self.log.info(
            "trailing_stop_adjusted",
            position_id=position.id,
            instrument=position.instrument.symbol,
            price=price,
            old_stop=previous,
            new_stop=candidate,
        )

    async def close_all_positions(self, reason: CloseReason = CloseReason.EMERGENCY_CLOSE) -> List[Position]:
        closed: List[Position] = []
        async with self._lock:
            for position in list(self._open.values()):
                price = self.price_of(position.instrument) or position.entry_price
                if await self._close(position, reason, price):
                    closed.append(position)
        self.log.warning("all_positions_closed", reason=reason.value, closed=len(closed), still_open=len(self._open))
        return closed

    async def _close(self, position: Position, reason: CloseReason, price: Decimal) -> bool:
        try:
            result = await self.executor.swap(
                sell=position.instrument,
                buy=self.quote_asset,
                amount=position.entry_quantity,
            )
        except ExecutionError as e:
            # the buy leg already settled; the position stays OPEN until a close succeeds
            position.last_close_error = str(e)
            self.log.critical(
                "unresolved_exposure",
                position_id=position.id,
                instrument=position.instrument.symbol,
                quantity=position.entry_quantity,
                reason=reason.value,
                trigger_price=price,
                error=str(e),
            )
            return False

        proceeds = result.output_amount
        pnl = proceeds - position.capital_committed

        position.status = PositionStatus.CLOSED
        position.exit_quantity = result.input_amount
        position.exit_price = proceeds / result.input_amount
        position.proceeds = proceeds
        position.realized_pnl = pnl
        position.closed_at = self.clock()
        position.close_reason = reason
        position.last_close_error = None

        del self._open[position.id]
        self._closed.append(position)
        self._stats.record_close(pnl, proceeds)

        self.log.info(
            "position_closed",
            position_id=position.id,
            instrument=position.instrument.symbol,
            reason=reason.value,
            entry_price=position.entry_price,
            exit_price=position.exit_price,
            pnl=pnl,
            net_pnl=self._stats.net_pnl,
            settlement=result.settlement_reference,
        )

        for listener in self._listeners:
            listener(position)
        return True

    # ---- read accessors ----
    def open_positions(self) -> List[Position]:
        return list(self._open.values())

    def closed_positions(self) -> List[Position]:
        return list(self._closed)

    def open_position_for(self, instrument: Instrument) -> Optional[Position]:
        for position in self._open.values():
            if position.instrument.id == instrument.id:
                return position
        return None

    def stats(self) -> TradeStatistics:
        return self._stats.copy()

    def committed_capital(self) -> Decimal:
        return dsum(p.capital_committed for p in self._open.values())

    def position_value(self) -> Decimal:
        """Open positions marked to the last known price (entry price when none)."""
        total = ZERO
        for p in self._open.values():
            price = self.price_of(p.instrument)
            total += p.entry_quantity * (price if price is not None else p.entry_price)
        return total
