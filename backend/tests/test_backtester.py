from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import JUP, SOL
from scalper.infrastructure.errors import InsufficientDataError
from scalper.infrastructure.utils.config import BacktestSettings
from scalper.models.market_models import LIQUID_INSTRUMENTS, Candle
from scalper.services.backtest.backtester import (
    PROFIT_FACTOR_NO_LOSSES,
    BacktestConfig,
    Backtester,
    BacktestTrade,
    base_price_for,
    format_report,
    generate_synthetic_candles,
    load_candles_csv,
    profit_factor,
    run_backtest_suite,
    sharpe_ratio,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def candles_from_closes(closes):
    out = []
    for i, c in enumerate(closes):
        c = Decimal(str(c))
        out.append(Candle(timestamp=T0 + timedelta(minutes=5 * i), open=c, high=c, low=c, close=c))
    return out


def trade(pnl_percent, size="100"):
    size = Decimal(size)
    pnl = size * Decimal(str(pnl_percent)) / 100
    return BacktestTrade(
        timestamp=T0,
        instrument=SOL,
        entry_price=Decimal(100),
        exit_price=Decimal(100),
        size=size,
        pnl=pnl,
        pnl_percent=Decimal(str(pnl_percent)),
        holding_period=1,
    )


def test_flat_series_produces_no_trades():
    candles = candles_from_closes([100] * 200)
    result = Backtester(BacktestConfig(initial_capital=Decimal(1000))).run(SOL, candles)

    assert result.statistics.total_trades == 0
    assert result.trades == []
    assert result.final_capital == Decimal(1000)
    assert result.max_drawdown_percent == 0
    assert result.profit_factor == PROFIT_FACTOR_NO_LOSSES
    assert result.sharpe_ratio == 0


def test_requires_minimum_candles():
    with pytest.raises(InsufficientDataError):
        Backtester().run(SOL, candles_from_closes([100] * 49))


def _selloff_then_recovery():
    return [100] * 50 + list(range(99, 89, -1)) + [90.5, 91, 91.5, 92, 93, 94, 95, 96, 97, 98]


@pytest.mark.parametrize("fee", ["0", "0.1"])
def test_capital_accounting_matches_trades(fee):
    cfg = BacktestConfig(
        initial_capital=Decimal(1000),
        slippage_percent=Decimal("0.1"),
        trading_fee_percent=Decimal(fee),
    )
    result = Backtester(cfg).run(SOL, candles_from_closes(_selloff_then_recovery()))

    assert result.statistics.total_trades == len(result.trades) >= 1
    entry_fees = sum((t.size * Decimal(fee) / 100 for t in result.trades), Decimal(0))
    realized = sum((t.pnl for t in result.trades), Decimal(0))
    eps = Decimal("1e-18")
    assert abs(result.final_capital - (cfg.initial_capital + realized - entry_fees)) < eps

    stats = result.statistics
    assert stats.winning_trades + stats.losing_trades == stats.total_trades
    assert abs(stats.net_pnl - realized) < eps
    assert all(t.holding_period >= 0 for t in result.trades)
    assert result.max_drawdown_percent >= 0


def test_open_position_is_force_closed_at_end():
    # signal fires on the last candle of the slide, then the series ends
    closes = [100] * 50 + list(range(99, 89, -1))
    result = Backtester(BacktestConfig(slippage_percent=Decimal(0), trading_fee_percent=Decimal(0))).run(
        SOL, candles_from_closes(closes)
    )
    assert len(result.trades) >= 1
    assert result.trades[-1].timestamp == T0 + timedelta(minutes=5 * (len(closes) - 1))


def test_profit_factor_and_sharpe():
    assert profit_factor([trade(1), trade(2)]) == PROFIT_FACTOR_NO_LOSSES
    assert profit_factor([trade(2), trade(-1)]) == Decimal(2)

    # one trade: stddev is taken as 1, so the ratio is the mean
    assert sharpe_ratio([trade("0.4")]) == Decimal("0.4")
    assert sharpe_ratio([]) == 0
    # identical returns: zero stddev
    assert sharpe_ratio([trade(1), trade(1)]) == 0
    # mean 2, sample stddev of (1, 3) = sqrt(2)
    value = sharpe_ratio([trade(1), trade(3)])
    assert abs(value - Decimal(2) / Decimal(2).sqrt()) < Decimal("1e-20")


def test_synthetic_candles_are_seeded_and_sized():
    a = generate_synthetic_candles(1, 5, base_price=Decimal(100), volatility=0.03, seed=7, start=T0)
    b = generate_synthetic_candles(1, 5, base_price=Decimal(100), volatility=0.03, seed=7, start=T0)

    assert len(a) == 288
    assert a == b
    assert a[1].timestamp - a[0].timestamp == timedelta(minutes=5)
    for c in a:
        assert c.low <= min(c.open, c.close)
        assert c.high >= max(c.open, c.close)
        assert c.volume > 0


def test_base_prices():
    assert base_price_for(JUP) == Decimal(1)
    assert base_price_for(SOL) == Decimal(100)


def test_load_candles_csv(tmp_path):
    path = tmp_path / "candles.csv"
    path.write_text(
        "timestamp,open,high,low,close,volume\n"
        "2024-01-01T00:05:00Z,101,102,100,101.5,10\n"
        "1704067200000,100,101,99,100.5,12\n",
        encoding="utf-8",
    )
    candles = load_candles_csv(path)

    assert [c.close for c in candles] == [Decimal("100.5"), Decimal("101.5")]
    assert candles[0].timestamp == T0


def test_load_candles_csv_rejects_bad_rows(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("timestamp,open,high,low,close\n2024-01-01T00:00:00Z,1,2,x,1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_candles_csv(path)


def test_format_report():
    result = Backtester().run(SOL, candles_from_closes([100] * 60))
    report = format_report(result)
    assert "BACKTEST REPORT - SOL" in report
    assert "Total trades:    0" in report
    assert "Final capital:   $1000.00" in report


def test_suite_runs_every_instrument():
    settings = BacktestSettings(days=1, seed=3)
    results = run_backtest_suite(LIQUID_INSTRUMENTS, BacktestConfig(), settings, echo=False)

    assert [r.instrument.symbol for r in results] == [i.symbol for i in LIQUID_INSTRUMENTS]
    for r in results:
        assert r.statistics.total_trades == len(r.trades)
        assert r.final_capital > 0
