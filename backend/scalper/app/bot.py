"""Trading bot: wires market data, signals, ledger and risk gate into one decision cycle."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from scalper.app.scheduler import CycleScheduler
from scalper.infrastructure.logging.logging import get_logger
from scalper.infrastructure.utils.config import TradingBotConfig
from scalper.infrastructure.utils.timeutils import Clock, utc_now
from scalper.models.market_models import Instrument, instrument_by_symbol
from scalper.models.trade_models import CloseReason, Position
from scalper.services.execution.order_executor import OrderExecutor
from scalper.services.execution.venue import BalanceProvider, PriceFeed, SwapVenue
from scalper.services.market.indicators import IndicatorEngine
from scalper.services.market.market_data import MarketDataService
from scalper.services.monitoring.metrics import MetricsSnapshot
from scalper.services.risk.risk_gate import RiskGate, RiskStatus
from scalper.services.strategy.signal_generator import SignalGenerator, Verdict
from scalper.services.trading.position_ledger import PositionLedger

STATS_EVERY_N_CYCLES = 10


class TradingBot:
    def __init__(
        self,
        config: TradingBotConfig,
        *,
        feed: PriceFeed,
        venue: SwapVenue,
        balances: BalanceProvider,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.clock = clock
        self.instruments: List[Instrument] = [instrument_by_symbol(s) for s in config.trading.instruments]

        self.indicators = IndicatorEngine(config.trading.price_history_length)
        self.market = MarketDataService(feed, self.instruments, self.indicators)
        self.signals = SignalGenerator(self.indicators, self.instruments, config.signals)
        self.executor = OrderExecutor(
            venue,
            max_slippage_bps=config.strategy.max_slippage_bps,
            max_price_impact_pct=config.strategy.max_price_impact_pct,
        )
        self.ledger = PositionLedger(self.executor, self._last_price, config.strategy, clock=clock)
        self.risk = RiskGate(config.risk, self.ledger, balances, clock=clock)
        self.ledger.add_close_listener(self.risk.on_position_closed)

        self.metrics = MetricsSnapshot()
        self.scheduler = CycleScheduler("trading", config.trading.interval_seconds, self.run_cycle)
        self.cycle_count = 0
        self.log = get_logger("trading_bot")

    def _last_price(self, instrument: Instrument) -> Optional[Decimal]:
        obs = self.market.last_price(instrument)
        return obs.price if obs is not None else None

    # ---- one decision cycle ----
    async def run_cycle(self) -> None:
        """fetch prices -> manage open positions -> risk gate -> at most one new position."""
        self.cycle_count += 1
        self.log.debug("cycle_start", cycle=self.cycle_count)

        await self.market.fetch_prices()
        await self.ledger.manage_positions()

        status = await self.risk.evaluate()
        opened: Optional[Position] = None
        if status.allowed:
            for signal in self.signals.high_probability_signals():
                if signal.verdict != Verdict.BUY:
                    continue
                opened = await self.ledger.execute_signal(
                    signal,
                    self.risk.available_capital(),
                    self.risk.max_position_size(),
                )
                if opened is not None:
                    break

        self._refresh_metrics(status)
        if self.cycle_count % STATS_EVERY_N_CYCLES == 0:
            self._log_stats()

    def _refresh_metrics(self, status: RiskStatus) -> None:
        stats = self.ledger.stats()
        m = self.metrics
        m.running = self.scheduler.running
        m.paused = self.risk.paused
        m.cycles = self.cycle_count
        m.skipped_ticks = self.scheduler.ticks_skipped
        m.last_cycle_at = self.clock()
        for inst in self.instruments:
            price = self._last_price(inst)
            if price is not None:
                m.last_prices[inst.symbol] = str(price)
        m.open_positions = len(self.ledger.open_positions())
        m.current_capital = str(status.current_capital)
        m.available_capital = str(self.risk.available_capital())
        m.net_pnl = str(stats.net_pnl)
        m.win_rate = stats.win_rate
        m.total_trades = stats.total_trades
        m.last_risk_reason = status.decision.reason

    def _log_stats(self) -> None:
        stats = self.ledger.stats()
        self.log.info(
            "bot_stats",
            cycle=self.cycle_count,
            open_positions=len(self.ledger.open_positions()),
            total_trades=stats.total_trades,
            win_rate=round(stats.win_rate * 100, 2),
            net_pnl=stats.net_pnl,
            volume=stats.volume,
            available_capital=self.risk.available_capital(),
        )

    # ---- lifecycle ----
    def start(self) -> None:
        self.log.info(
            "bot_started",
            instruments=[i.symbol for i in self.instruments],
            interval_seconds=self.config.trading.interval_seconds,
            dry_run=self.config.development.dry_run,
        )
        self.scheduler.start()
        self.metrics.running = True

    async def stop(self) -> None:
        await self.scheduler.stop()
        self.metrics.running = False
        self.log.info("bot_stopped", cycles=self.cycle_count, open_positions=len(self.ledger.open_positions()))

    def pause(self, reason: str = "manual") -> None:
        self.risk.pause(reason)
        self.metrics.paused = True

    def resume(self) -> None:
        self.risk.resume()
        self.metrics.paused = False

    async def emergency_stop(self, reason: str = "emergency_stop") -> List[Position]:
        """Stop scheduling, block new positions, then liquidate everything still open."""
        self.log.critical("emergency_stop", reason=reason, open_positions=len(self.ledger.open_positions()))
        await self.stop()
        self.metrics.paused = True
        before = {p.id for p in self.ledger.open_positions()}
        await self.risk.emergency_stop(reason)
        return [p for p in self.ledger.closed_positions() if p.id in before]

    async def shutdown(self) -> None:
        await self.stop()
        if self.ledger.open_positions():
            await self.ledger.close_all_positions(CloseReason.EMERGENCY_CLOSE)

    def status(self) -> Dict[str, Any]:
        stats = self.ledger.stats()
        return {
            "running": self.scheduler.running,
            "paused": self.risk.paused,
            "dry_run": self.config.development.dry_run,
            "environment": self.config.environment,
            "cycles": self.cycle_count,
            "instruments": [i.symbol for i in self.instruments],
            "open_positions": [p.to_dict() for p in self.ledger.open_positions()],
            "statistics": stats.to_dict(),
            "risk": {
                "available_capital": str(self.risk.available_capital()),
                "max_position_size": str(self.risk.max_position_size()),
                "daily_pnl": str(self.risk.daily_pnl),
                "trades_this_hour": self.risk.trades_this_hour(),
                "limits": self.risk.limits.model_dump(mode="json"),
            },
            "strategy": self.ledger.params.model_dump(mode="json"),
            "metrics": self.metrics.to_dict(),
        }
