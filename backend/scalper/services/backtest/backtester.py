"""Candle replay of the live signal logic with simulated fills, fees and slippage.

The simulator never touches live state: it keeps its own price window, its own
single simulated position and its own TradeStatistics.
"""

from __future__ import annotations

import csv
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from scalper.infrastructure.errors import InsufficientDataError
from scalper.infrastructure.logging.logging import get_logger
from scalper.infrastructure.utils.config import BacktestSettings, SignalConfig, TradingBotConfig
from scalper.infrastructure.utils.decimals import HUNDRED, ONE, ZERO, dsum, display, mean, percent, quantize_to, stdev, to_decimal
from scalper.infrastructure.utils.timeutils import utc_now
from scalper.models.market_models import Candle, Instrument
from scalper.models.trade_models import TradeStatistics
from scalper.services.market.indicators import PriceWindow, compute_indicators
from scalper.services.strategy.signal_generator import Verdict, decide

log = get_logger("backtest")

MIN_CANDLES = 50
WARMUP_CANDLES = 30
PROFIT_FACTOR_NO_LOSSES = Decimal(999)
_PRICE_PLACES = 8


class BacktestConfig(BaseModel):
    initial_capital: Decimal = Field(default=Decimal("1000"), gt=0)
    position_size_percent: Decimal = Field(default=Decimal("30"), gt=0, le=100)
    take_profit_percent: Decimal = Field(default=Decimal("0.5"), gt=0)
    stop_loss_percent: Decimal = Field(default=Decimal("0.3"), gt=0)
    slippage_percent: Decimal = Field(default=Decimal("0.1"), ge=0)
    trading_fee_percent: Decimal = Field(default=Decimal("0.1"), ge=0)
    history_length: int = Field(default=60, ge=35)
    signals: SignalConfig = Field(default_factory=SignalConfig)

    @classmethod
    def from_settings(cls, config: TradingBotConfig) -> "BacktestConfig":
        return cls(
            initial_capital=config.trading.initial_capital,
            position_size_percent=config.strategy.position_size_percent,
            take_profit_percent=config.strategy.take_profit_percent,
            stop_loss_percent=config.strategy.stop_loss_percent,
            slippage_percent=config.backtest.slippage_percent,
            trading_fee_percent=config.backtest.trading_fee_percent,
            history_length=config.trading.price_history_length,
            signals=config.signals,
        )


@dataclass(frozen=True)
class BacktestTrade:
    timestamp: datetime
    instrument: Instrument
    entry_price: Decimal
    exit_price: Decimal
    size: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    holding_period: int     # candles


@dataclass
class BacktestResult:
    instrument: Instrument
    start: datetime
    end: datetime
    initial_capital: Decimal
    final_capital: Decimal
    statistics: TradeStatistics
    profit_factor: Decimal
    max_drawdown_percent: Decimal
    sharpe_ratio: Decimal
    trades: List[BacktestTrade] = field(default_factory=list)

    @property
    def total_return(self) -> Decimal:
        return self.final_capital - self.initial_capital

    @property
    def total_return_percent(self) -> Decimal:
        return self.total_return / self.initial_capital * HUNDRED

    @property
    def win_rate_percent(self) -> Decimal:
        return to_decimal(self.statistics.win_rate) * HUNDRED


@dataclass
class _SimPosition:
    entry_price: Decimal
    size: Decimal
    entry_index: int


# ---------------- candles ----------------

def generate_synthetic_candles(
    days: int,
    interval_minutes: int = 5,
    base_price: Decimal = Decimal(100),
    volatility: float = 0.02,
    seed: Optional[int] = None,
    start: Optional[datetime] = None,
) -> List[Candle]:
    """Random walk with a 1% pull toward base_price, noisy high/low, random volume."""
    rng = random.Random(seed)
    base = to_decimal(base_price)
    vol = to_decimal(volatility)
    total = days * (24 * 60 // interval_minutes)
    step = timedelta(minutes=interval_minutes)
    t0 = start or (utc_now() - timedelta(days=days))

    candles: List[Candle] = []
    price = base
    for i in range(total):
        random_return = to_decimal((rng.random() - 0.5) * 2) * vol
        reversion = (base - price) / base * Decimal("0.01")
        open_ = price
        price = quantize_to(price + price * random_return + price * reversion, _PRICE_PLACES, ROUND_HALF_EVEN)
        close = price

        spread = price * vol * Decimal("0.5")
        high = max(open_, close) + spread * to_decimal(rng.random())
        low = min(open_, close) - spread * to_decimal(rng.random())
        volume = Decimal(1_000_000) * (Decimal("0.5") + to_decimal(rng.random()))

        candles.append(
            Candle(
                timestamp=t0 + i * step,
                open=open_,
                high=quantize_to(high, _PRICE_PLACES, ROUND_HALF_EVEN),
                low=quantize_to(low, _PRICE_PLACES, ROUND_HALF_EVEN),
                close=close,
                volume=quantize_to(volume, 2, ROUND_HALF_EVEN),
            )
        )
    return candles


def _parse_timestamp(raw: str) -> datetime:
    raw = raw.strip()
    if raw.isdigit():
        value = int(raw)
        # epoch milliseconds vs seconds
        return datetime.fromtimestamp(value / 1000 if value > 10**11 else value, tz=timezone.utc)
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def load_candles_csv(path: Path) -> List[Candle]:
    """Read `timestamp,open,high,low,close[,volume]` rows, sorted chronologically."""
    candles: List[Candle] = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            try:
                candles.append(
                    Candle(
                        timestamp=_parse_timestamp(row["timestamp"]),
                        open=to_decimal(row["open"]),
                        high=to_decimal(row["high"]),
                        low=to_decimal(row["low"]),
                        close=to_decimal(row["close"]),
                        volume=to_decimal(row.get("volume") or "0"),
                    )
                )
            except (KeyError, ValueError) as e:
                raise ValueError(f"bad candle row {reader.line_num} in {path}: {e}") from e
    candles.sort(key=lambda c: c.timestamp)
    return candles


# ---------------- simulation ----------------

class Backtester:
    def __init__(self, config: Optional[BacktestConfig] = None) -> None:
        self.config = config or BacktestConfig()

    def run(self, instrument: Instrument, candles: Sequence[Candle]) -> BacktestResult:
        if len(candles) < MIN_CANDLES:
            raise InsufficientDataError(
                f"{instrument.symbol}: {len(candles)} candles, need at least {MIN_CANDLES}"
            )

        cfg = self.config
        slip = percent(cfg.slippage_percent)
        fee_rate = percent(cfg.trading_fee_percent)

        capital = cfg.initial_capital
        peak = capital
        max_dd = ZERO
        stats = TradeStatistics()
        trades: List[BacktestTrade] = []
        position: Optional[_SimPosition] = None

        window = PriceWindow(cfg.history_length)
        for c in candles[:WARMUP_CANDLES]:
            window.append(c.close, c.timestamp)

        def close_position(pos: _SimPosition, index: int) -> Decimal:
            candle = candles[index]
            exit_price = candle.close * (ONE - slip)
            gross = pos.size * (exit_price - pos.entry_price) / pos.entry_price
            net = gross - pos.size * fee_rate
            trades.append(
                BacktestTrade(
                    timestamp=candle.timestamp,
                    instrument=instrument,
                    entry_price=pos.entry_price,
                    exit_price=exit_price,
                    size=pos.size,
                    pnl=net,
                    pnl_percent=net / pos.size * HUNDRED,
                    holding_period=index - pos.entry_index,
                )
            )
            stats.record_close(net, pos.size + net)
            return net

        for i in range(WARMUP_CANDLES, len(candles)):
            candle = candles[i]
            price = candle.close
            window.append(price, candle.timestamp)

            if position is not None:
                move = (price - position.entry_price) / position.entry_price * HUNDRED
                if move >= cfg.take_profit_percent or move <= -cfg.stop_loss_percent:
                    capital += close_position(position, i)
                    position = None

            if position is None:
                signal = decide(instrument, compute_indicators(window.prices()), cfg.signals)
                if signal.verdict == Verdict.BUY and to_decimal(signal.confidence) >= cfg.signals.min_confidence:
                    size = capital * percent(cfg.position_size_percent)
                    capital -= size * fee_rate
                    stats.add_volume(size)
                    position = _SimPosition(entry_price=price * (ONE + slip), size=size, entry_index=i)

            if capital > peak:
                peak = capital
            drawdown = (peak - capital) / peak * HUNDRED if peak > 0 else ZERO
            if drawdown > max_dd:
                max_dd = drawdown

        if position is not None:
            capital += close_position(position, len(candles) - 1)

        result = BacktestResult(
            instrument=instrument,
            start=candles[0].timestamp,
            end=candles[-1].timestamp,
            initial_capital=cfg.initial_capital,
            final_capital=capital,
            statistics=stats,
            profit_factor=profit_factor(trades),
            max_drawdown_percent=max_dd,
            sharpe_ratio=sharpe_ratio(trades),
            trades=trades,
        )
        log.info(
            "backtest_complete",
            instrument=instrument.symbol,
            candles=len(candles),
            trades=stats.total_trades,
            final_capital=capital,
            return_pct=result.total_return_percent,
        )
        return result


def profit_factor(trades: Sequence[BacktestTrade]) -> Decimal:
    wins = dsum(t.pnl for t in trades if t.pnl > 0)
    losses = dsum(abs(t.pnl) for t in trades if t.pnl <= 0)
    if losses == 0:
        return PROFIT_FACTOR_NO_LOSSES
    return wins / losses


def sharpe_ratio(trades: Sequence[BacktestTrade]) -> Decimal:
    """mean(return %) / sample stddev(return %), risk-free rate 0. stddev = 1 below 2 trades."""
    returns = [t.pnl_percent for t in trades]
    avg = mean(returns) or ZERO
    sd = stdev(returns)
    if sd is None:
        sd = ONE
    if sd == 0:
        return ZERO
    return avg / sd


def format_report(result: BacktestResult) -> str:
    s = result.statistics
    lines = [
        "=" * 60,
        f"BACKTEST REPORT - {result.instrument.symbol}",
        "=" * 60,
        f"  Period:          {result.start.date().isoformat()} to {result.end.date().isoformat()}",
        "-" * 60,
        f"  Initial capital: ${display(result.initial_capital)}",
        f"  Final capital:   ${display(result.final_capital)}",
        f"  Total return:    ${display(result.total_return)} ({display(result.total_return_percent)}%)",
        "-" * 60,
        f"  Total trades:    {s.total_trades}",
        f"  Winning trades:  {s.winning_trades} ({display(result.win_rate_percent, 1)}%)",
        f"  Losing trades:   {s.losing_trades}",
        f"  Average win:     ${display(s.avg_profit)}",
        f"  Average loss:    ${display(s.avg_loss)}",
        f"  Profit factor:   {display(result.profit_factor)}",
        "-" * 60,
        f"  Max drawdown:    {display(result.max_drawdown_percent)}%",
        f"  Sharpe ratio:    {display(result.sharpe_ratio)}",
        "=" * 60,
    ]
    return "\n".join(lines)


def base_price_for(instrument: Instrument) -> Decimal:
    return Decimal(1) if instrument.symbol == "JUP" else Decimal(100)


def run_backtest_suite(
    instruments: Sequence[Instrument],
    config: BacktestConfig,
    settings: Optional[BacktestSettings] = None,
    echo: bool = True,
) -> List[BacktestResult]:
    """Backtest every instrument on synthetic candles and log a summary."""
    settings = settings or BacktestSettings()
    log.info("backtest_suite_start", instruments=[i.symbol for i in instruments], days=settings.days)

    bt = Backtester(config)
    results: List[BacktestResult] = []
    for n, inst in enumerate(instruments):
        seed = None if settings.seed is None else settings.seed + n
        candles = generate_synthetic_candles(
            settings.days,
            settings.interval_minutes,
            base_price=base_price_for(inst),
            volatility=settings.volatility,
            seed=seed,
        )
        result = bt.run(inst, candles)
        results.append(result)
        if echo:
            print(format_report(result))

    if results:
        log.info(
            "backtest_summary",
            instruments=len(results),
            avg_return_pct=display(mean([r.total_return_percent for r in results])),
            avg_win_rate_pct=display(mean([r.win_rate_percent for r in results])),
            total_trades=sum(r.statistics.total_trades for r in results),
        )
    return results
