from decimal import Decimal
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from scalper.infrastructure.errors import ConfigurationError
from scalper.infrastructure.utils.config import RiskLimits, StrategyParameters, apply_update, load_config

DEFAULT_YAML = Path(__file__).resolve().parents[2] / "config" / "default.yaml"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    # no stray .env or overrides from the developer's shell
    monkeypatch.chdir(tmp_path)
    for var in (
        "ENVIRONMENT",
        "LOG_LEVEL",
        "WALLET__RPC_ENDPOINT",
        "WALLET__PRIVATE_KEY",
        "DEVELOPMENT__DRY_RUN",
        "TRADING__INITIAL_CAPITAL",
        "TRADING__INTERVAL_SECONDS",
        "RISK__MAX_DRAWDOWN_PERCENT",
        "RISK__MAX_DAILY_LOSS_PERCENT",
    ):
        monkeypatch.delenv(var, raising=False)


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_default_yaml_loads():
    config = load_config(DEFAULT_YAML)
    assert config.environment == "PAPER"
    assert config.development.dry_run is True
    assert config.trading.instruments == ["SOL", "mSOL", "JitoSOL", "bSOL", "JUP"]
    assert config.strategy.take_profit_percent == Decimal("0.5")
    assert config.risk.max_drawdown_percent == Decimal(10)
    assert config.signals.min_confidence == Decimal("0.6")


def test_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "nope.yaml")


def test_no_config_found_is_configuration_error():
    with pytest.raises(ConfigurationError):
        load_config()


def test_invalid_yaml_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, "trading: [unclosed\n"))


@pytest.mark.parametrize("text", [
    "risk:\n  max_drawdown_percent: 150\n",
    "risk:\n  max_trades_per_hour: 0\n",
    "strategy:\n  position_size_percent: 0\n",
    "trading:\n  instruments: [DOGE]\n",
    "trading:\n  price_history_length: 20\n",
    "environment: STAGING\n",
    "trading:\n  initial_capital: 0\n",
    "risk:\n  initial_capital: 0\n",
])
def test_invalid_values_fail_fast(tmp_path, text):
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, text))


def test_live_mode_requires_private_key(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, "development:\n  dry_run: false\n"))


def test_env_overrides_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("DEVELOPMENT__DRY_RUN", "0")
    monkeypatch.setenv("WALLET__PRIVATE_KEY", "secret")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("TRADING__INITIAL_CAPITAL", "250")

    config = load_config(write(tmp_path, "trading:\n  initial_capital: 100\n"))

    assert config.development.dry_run is False
    assert config.wallet.private_key == "secret"
    assert config.log_level == "DEBUG"
    assert config.trading.initial_capital == Decimal(250)


def test_risk_capital_follows_trading_capital(tmp_path):
    config = load_config(write(tmp_path, "trading:\n  initial_capital: 500\n  slippage_bps: 30\n"))
    assert config.risk.initial_capital == Decimal(500)
    assert config.strategy.max_slippage_bps == 30


def test_conflicting_explicit_values_are_overridden_with_warning(tmp_path):
    text = "trading:\n  initial_capital: 500\n  slippage_bps: 30\nrisk:\n  initial_capital: 200\nstrategy:\n  max_slippage_bps: 80\n"
    with capture_logs() as logs:
        config = load_config(write(tmp_path, text))

    assert config.risk.initial_capital == Decimal(500)
    assert config.strategy.max_slippage_bps == 30
    overridden = {e["field"] for e in logs if e["event"] == "config_value_overridden"}
    assert overridden == {"risk.initial_capital", "strategy.max_slippage_bps"}


def test_matching_defaults_are_followed_silently(tmp_path):
    with capture_logs() as logs:
        load_config(write(tmp_path, "trading:\n  initial_capital: 500\n"))
    assert not [e for e in logs if e["event"] == "config_value_overridden"]


def test_duplicate_instruments_are_collapsed_in_order(tmp_path):
    config = load_config(write(tmp_path, "trading:\n  instruments: [JUP, SOL, JUP, SOL]\n"))
    assert config.trading.instruments == ["JUP", "SOL"]


def test_apply_update_is_all_or_nothing():
    limits = RiskLimits()
    with pytest.raises(ValueError):
        apply_update(limits, {"max_drawdown_percent": 5, "max_daily_loss_percent": -1})
    assert limits.max_drawdown_percent == Decimal(10)

    updated = apply_update(limits, {"max_drawdown_percent": 5})
    assert updated.max_drawdown_percent == Decimal(5)
    assert updated is not limits


def test_sections_are_frozen():
    params = StrategyParameters()
    with pytest.raises(Exception):
        params.max_positions = 9
