"""Engine bootstrap: config -> logging -> collaborators -> bot (+ optional API)."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import uvicorn

from scalper.api.server import build_app
from scalper.api.state import AppState, set_state
from scalper.app.bot import TradingBot
from scalper.infrastructure.errors import ConfigurationError
from scalper.infrastructure.logging.logging import configure_logging, get_logger
from scalper.infrastructure.utils.config import TradingBotConfig, load_config
from scalper.models.market_models import LIQUID_INSTRUMENTS, instrument_by_symbol
from scalper.services.backtest.backtester import BacktestConfig, run_backtest_suite
from scalper.services.execution.venue import PaperVenue

log = get_logger("engine")


def build_bot(config: TradingBotConfig) -> TradingBot:
    """Fails fast with ConfigurationError before any cycle runs."""
    if not config.development.dry_run:
        raise ConfigurationError(
            "development.dry_run is false but no live settlement collaborator is installed; "
            "set development.dry_run: true to trade against the paper venue"
        )

    venue = PaperVenue(
        [instrument_by_symbol(s) for s in config.trading.instruments],
        starting_balance=config.trading.initial_capital,
        volatility=config.development.paper_volatility,
        seed=config.development.paper_seed,
    )
    return TradingBot(config, feed=venue, venue=venue, balances=venue)


async def run_engine(config_path: Optional[Path] = None, serve_api: bool = False) -> None:
    config = load_config(config_path)
    configure_logging(config.log_level)
    log.info(
        "config_loaded",
        environment=config.environment,
        dry_run=config.development.dry_run,
        instruments=config.trading.instruments,
        initial_capital=config.trading.initial_capital,
    )

    if config.backtest.run_on_start:
        run_backtest_suite(LIQUID_INSTRUMENTS, BacktestConfig.from_settings(config), config.backtest)

    bot = build_bot(config)
    set_state(AppState(bot=bot))
    bot.start()

    try:
        if serve_api:
            server = uvicorn.Server(
                uvicorn.Config(
                    build_app(config.api.cors_origins),
                    host=config.api.host,
                    port=config.api.port,
                    log_level=config.log_level.lower(),
                )
            )
            await server.serve()
        else:
            await asyncio.Event().wait()
    except asyncio.CancelledError:
        log.info("engine_cancelled")
    finally:
        await bot.shutdown()
        set_state(None)
        log.info("engine_stopped")
