"""Entrypoint.

Usage:
  python -m scalper.app.main engine     # run trading engine (paper venue when dry_run)
  python -m scalper.app.main api        # run engine + FastAPI status/control server
  python -m scalper.app.main backtest   # backtest on synthetic candles (or: python -m scalper.app.backtest)
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from scalper.app.engine import run_engine


def main() -> None:
    parser = argparse.ArgumentParser("scalper")
    parser.add_argument("command", choices=["engine", "api", "backtest"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    if args.command == "engine":
        asyncio.run(run_engine(args.config))
        return

    if args.command == "api":
        asyncio.run(run_engine(args.config, serve_api=True))
        return

    if args.command == "backtest":
        from scalper.app.backtest import run_backtest
        run_backtest(config_path=args.config)
        return


if __name__ == "__main__":
    main()
