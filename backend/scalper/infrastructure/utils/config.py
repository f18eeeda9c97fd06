"""Configuration management for the trading engine.

Rules:
- YAML provides defaults for non-secret config.
- Secrets (wallet key, RPC endpoint) come from .env / environment variables and override YAML.
- Every section is a typed pydantic model; runtime updates replace a whole section
  after validation so a bad update never leaves a half-applied configuration.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scalper.infrastructure.errors import ConfigurationError
from scalper.infrastructure.logging.logging import get_logger
from scalper.models.market_models import known_symbols

M = TypeVar("M", bound=BaseModel)


class WalletConfig(BaseModel):
    """Settlement collaborator credentials. Only required for live runs."""

    rpc_endpoint: str = Field(default="https://api.mainnet-beta.solana.com")
    private_key: str = Field(default="")


class TradingConfig(BaseModel):
    instruments: List[str] = Field(default_factory=known_symbols)
    initial_capital: Decimal = Field(default=Decimal("100"), gt=0)
    slippage_bps: int = Field(default=50, ge=0, le=1000)
    interval_seconds: float = Field(default=5.0, ge=1.0, le=3600.0)
    price_history_length: int = Field(default=60, ge=35, le=10_000)

    @field_validator("instruments")
    @classmethod
    def validate_instruments(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for x in v:
            symbol = str(x).strip() if x else ""
            if symbol and symbol not in out:
                out.append(symbol)
        if not out:
            raise ValueError("at least one instrument is required")
        unknown = sorted(set(out) - set(known_symbols()))
        if unknown:
            raise ValueError(f"unknown instruments: {unknown}")
        return out


class StrategyParameters(BaseModel):
    """Position sizing and bracket parameters used by the position ledger."""

    model_config = ConfigDict(frozen=True)

    max_positions: int = Field(default=3, ge=1, le=50)
    position_size_percent: Decimal = Field(default=Decimal("30"), gt=0, le=100)
    min_trade_size: Decimal = Field(default=Decimal("5"), gt=0)
    take_profit_percent: Decimal = Field(default=Decimal("0.5"), gt=0, le=100)
    stop_loss_percent: Decimal = Field(default=Decimal("0.3"), gt=0, lt=100)
    trailing_activation_percent: Decimal = Field(default=Decimal("0.3"), ge=0)
    max_slippage_bps: int = Field(default=50, ge=0, le=1000)
    max_price_impact_pct: Decimal = Field(default=Decimal("0.5"), ge=0)


class RiskLimits(BaseModel):
    """Thresholds enforced by the risk gate."""

    model_config = ConfigDict(frozen=True)

    initial_capital: Decimal = Field(default=Decimal("100"), gt=0)
    max_drawdown_percent: Decimal = Field(default=Decimal("10"), gt=0, le=100)
    max_daily_loss_percent: Decimal = Field(default=Decimal("5"), gt=0, le=100)
    max_position_size_percent: Decimal = Field(default=Decimal("30"), gt=0, le=100)
    min_capital_reserve: Decimal = Field(default=Decimal("10"), ge=0)
    max_trades_per_hour: int = Field(default=20, ge=1, le=10_000)
    cooldown_after_loss_seconds: int = Field(default=300, ge=0, le=86_400)


class SignalConfig(BaseModel):
    min_confidence: Decimal = Field(default=Decimal("0.6"), ge=0, le=1)
    atr_target_multiplier: Decimal = Field(default=Decimal("0.5"), gt=0)
    atr_stop_multiplier: Decimal = Field(default=Decimal("0.3"), gt=0)
    min_target_percent: Decimal = Field(default=Decimal("0.5"), ge=0)
    min_stop_percent: Decimal = Field(default=Decimal("0.3"), ge=0)


class BacktestSettings(BaseModel):
    run_on_start: bool = Field(default=False)
    days: int = Field(default=30, ge=1, le=365)
    interval_minutes: int = Field(default=5, ge=1, le=1440)
    volatility: float = Field(default=0.03, gt=0, le=0.5)
    slippage_percent: Decimal = Field(default=Decimal("0.1"), ge=0, le=10)
    trading_fee_percent: Decimal = Field(default=Decimal("0.1"), ge=0, le=10)
    seed: Optional[int] = Field(default=None)


class APIConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])


class DevelopmentConfig(BaseModel):
    dry_run: bool = Field(default=True)
    paper_seed: Optional[int] = Field(default=None)
    paper_volatility: float = Field(default=0.002, gt=0, le=0.2)


class TradingBotConfig(BaseSettings):
    """Main configuration class.

    YAML is parsed as the base config, then env overrides for secrets and
    key settings are applied on top.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="PAPER")
    log_level: str = Field(default="INFO")

    wallet: WalletConfig = Field(default_factory=WalletConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    strategy: StrategyParameters = Field(default_factory=StrategyParameters)
    risk: RiskLimits = Field(default_factory=RiskLimits)
    signals: SignalConfig = Field(default_factory=SignalConfig)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    api: APIConfig = Field(default_factory=APIConfig)
    development: DevelopmentConfig = Field(default_factory=DevelopmentConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if str(v).upper() not in {"PAPER", "LIVE"}:
            raise ValueError("Environment must be 'PAPER' or 'LIVE'")
        return str(v).upper()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ValueError(f"Log level must be one of: {sorted(valid)}")
        return str(v).upper()

    @model_validator(mode="after")
    def validate_credentials(self) -> "TradingBotConfig":
        if not self.development.dry_run:
            if not self.wallet.private_key:
                raise ValueError("wallet.private_key is required when development.dry_run is false")
            if not self.wallet.rpc_endpoint:
                raise ValueError("wallet.rpc_endpoint is required when development.dry_run is false")
        return self

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "TradingBotConfig":
        """Load configuration from YAML without polluting the environment.

        Steps:
        1) Parse YAML -> base config dict
        2) Merge env overrides (WALLET__PRIVATE_KEY, etc.)
        3) Validate into model
        """
        if not yaml_path.exists():
            raise ConfigurationError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        _apply_env_overrides(data)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation error: {e}") from e


_ENV_OVERRIDES = {
    "WALLET__RPC_ENDPOINT": ("wallet", "rpc_endpoint"),
    "WALLET__PRIVATE_KEY": ("wallet", "private_key"),
    "TRADING__INITIAL_CAPITAL": ("trading", "initial_capital"),
    "TRADING__INTERVAL_SECONDS": ("trading", "interval_seconds"),
    "RISK__MAX_DRAWDOWN_PERCENT": ("risk", "max_drawdown_percent"),
    "RISK__MAX_DAILY_LOSS_PERCENT": ("risk", "max_daily_loss_percent"),
}


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            data.setdefault(section, {})[key] = value

    if os.getenv("ENVIRONMENT"):
        data["environment"] = os.getenv("ENVIRONMENT")

    if os.getenv("LOG_LEVEL"):
        data["log_level"] = os.getenv("LOG_LEVEL")

    # development.dry_run: false = real settlement collaborator required
    dry_run_env = os.getenv("DEVELOPMENT__DRY_RUN")
    if dry_run_env is not None:
        data.setdefault("development", {})["dry_run"] = str(dry_run_env).lower() in ("1", "true", "yes")


def load_config(config_path: Optional[Path] = None) -> TradingBotConfig:
    """Load configuration from YAML + .env (env wins for secrets)."""

    load_dotenv(dotenv_path=Path(".env"))

    if config_path is None:
        possible_paths = [Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            raise ConfigurationError("No configuration file found. Create config/default.yaml or specify config path.")

    config = TradingBotConfig.from_yaml(config_path)
    _check_consistency(config)
    return config


def _check_consistency(config: TradingBotConfig) -> None:
    """Cross-section rules that no single section can validate alone.

    trading.* is the operator-facing value; risk and strategy follow it. An
    explicitly configured value that disagrees is overridden with a warning.
    """
    log = get_logger("config")
    if config.trading.initial_capital != config.risk.initial_capital:
        if "initial_capital" in config.risk.model_fields_set:
            log.warning(
                "config_value_overridden",
                field="risk.initial_capital",
                configured=config.risk.initial_capital,
                effective=config.trading.initial_capital,
            )
        config.risk = config.risk.model_copy(update={"initial_capital": config.trading.initial_capital})
    if config.strategy.max_slippage_bps != config.trading.slippage_bps:
        if "max_slippage_bps" in config.strategy.model_fields_set:
            log.warning(
                "config_value_overridden",
                field="strategy.max_slippage_bps",
                configured=config.strategy.max_slippage_bps,
                effective=config.trading.slippage_bps,
            )
        config.strategy = config.strategy.model_copy(update={"max_slippage_bps": config.trading.slippage_bps})


def apply_update(current: M, changes: Dict[str, Any]) -> M:
    """Return a new validated model with `changes` applied, or raise ValueError.

    The current object is never mutated, so a rejected update leaves it intact.
    """
    unknown = sorted(set(changes) - set(type(current).model_fields))
    if unknown:
        raise ValueError(f"unknown fields: {unknown}")
    merged = {**current.model_dump(), **changes}
    try:
        return type(current).model_validate(merged)
    except ValidationError as e:
        raise ValueError(str(e)) from e
