"""
Backtest of the signal logic over synthetic or CSV candles.

Usage:
  python -m scalper.app.backtest [--symbols SOL JUP] [--days 30] [--seed 7]
  python -m scalper.app.backtest --csv candles.csv --symbols SOL

Runs the same indicator + vote logic as the engine over each candle series and
simulates fills with the configured slippage and trading fee.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from scalper.infrastructure.errors import ConfigurationError, InsufficientDataError
from scalper.infrastructure.logging.logging import configure_logging, get_logger
from scalper.infrastructure.utils.config import BacktestSettings, TradingBotConfig, load_config
from scalper.models.market_models import LIQUID_INSTRUMENTS, Instrument, instrument_by_symbol
from scalper.services.backtest.backtester import (
    BacktestConfig,
    BacktestResult,
    Backtester,
    format_report,
    load_candles_csv,
    run_backtest_suite,
)

log = get_logger("backtest")


def _load(config_path: Optional[Path]) -> TradingBotConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        if config_path is not None:
            raise
        # no config file: defaults are enough for an offline backtest
        log.warning("config_defaults_used", reason=str(e))
        return TradingBotConfig()


def run_backtest(
    config_path: Optional[Path] = None,
    symbols_override: Optional[List[str]] = None,
    days: Optional[int] = None,
    seed: Optional[int] = None,
    csv_path: Optional[Path] = None,
) -> List[BacktestResult]:
    config = _load(config_path)
    configure_logging(config.log_level)

    instruments: List[Instrument] = (
        [instrument_by_symbol(s) for s in symbols_override] if symbols_override else list(LIQUID_INSTRUMENTS)
    )
    bt_config = BacktestConfig.from_settings(config)

    if csv_path is not None:
        candles = load_candles_csv(csv_path)
        results: List[BacktestResult] = []
        for inst in instruments[:1]:
            try:
                result = Backtester(bt_config).run(inst, candles)
            except InsufficientDataError as e:
                log.error("backtest_insufficient_data", instrument=inst.symbol, error=str(e))
                print(f"Error: {e}")
                return []
            print(format_report(result))
            results.append(result)
        return results

    updates = {}
    if days is not None:
        updates["days"] = days
    if seed is not None:
        updates["seed"] = seed
    settings = BacktestSettings.model_validate({**config.backtest.model_dump(), **updates})
    return run_backtest_suite(instruments, bt_config, settings)


def main() -> None:
    parser = argparse.ArgumentParser(description="Backtest the signal logic on synthetic or CSV candles")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    parser.add_argument("--symbols", nargs="+", default=None, help="Instruments (e.g. SOL JUP). Defaults to all.")
    parser.add_argument("--days", type=int, default=None, help="Days of synthetic candles")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for synthetic candles")
    parser.add_argument("--csv", type=Path, default=None, help="CSV with timestamp,open,high,low,close,volume")
    args = parser.parse_args()
    run_backtest(
        config_path=args.config,
        symbols_override=args.symbols,
        days=args.days,
        seed=args.seed,
        csv_path=args.csv,
    )


if __name__ == "__main__":
    main()
