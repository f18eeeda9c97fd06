"""Market domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Instrument:
    id: str           # on-chain mint address
    symbol: str
    decimals: int


USDC = Instrument(id="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", symbol="USDC", decimals=6)

# Liquid tokens tracked by the engine
LIQUID_INSTRUMENTS: List[Instrument] = [
    Instrument(id="So11111111111111111111111111111111111111112", symbol="SOL", decimals=9),
    Instrument(id="mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So", symbol="mSOL", decimals=9),
    Instrument(id="J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn", symbol="JitoSOL", decimals=9),
    Instrument(id="bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP3piy1", symbol="bSOL", decimals=9),
    Instrument(id="JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", symbol="JUP", decimals=6),
]

_BY_SYMBOL: Dict[str, Instrument] = {i.symbol: i for i in LIQUID_INSTRUMENTS}


def instrument_by_symbol(symbol: str) -> Instrument:
    try:
        return _BY_SYMBOL[symbol]
    except KeyError:
        raise KeyError(f"unknown instrument symbol: {symbol}") from None


def known_symbols() -> List[str]:
    return list(_BY_SYMBOL)


@dataclass(frozen=True)
class PriceObservation:
    instrument: Instrument
    price: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class Candle:
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal("0")


@dataclass(frozen=True)
class MacdValue:
    macd: Decimal
    signal: Decimal
    histogram: Decimal


@dataclass(frozen=True)
class BollingerValue:
    upper: Decimal
    middle: Decimal
    lower: Decimal
    percent_b: Decimal


@dataclass(frozen=True)
class StochasticValue:
    k: Decimal
    d: Decimal    # same as k, no smoothing applied


@dataclass
class Indicators:
    """All indicator outputs for one instrument at one point in time.

    None means "not computable yet", never zero.
    """

    price: Optional[Decimal] = None
    sma5: Optional[Decimal] = None
    sma20: Optional[Decimal] = None
    rsi: Optional[Decimal] = None
    macd: Optional[MacdValue] = None
    bollinger: Optional[BollingerValue] = None
    stochastic: Optional[StochasticValue] = None
    atr: Optional[Decimal] = None
    momentum: Optional[Decimal] = None
    volatility: Optional[Decimal] = None
