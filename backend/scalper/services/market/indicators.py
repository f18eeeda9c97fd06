"""Rolling price windows and technical indicators.

Every indicator is a pure function over a chronological price sequence and
returns None when the sequence is too short or a division by zero would occur.
The IndicatorEngine applies the same functions to its bounded per-instrument
windows, and the backtester applies them to its replay window, so live and
simulated values are identical for identical prices.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from scalper.infrastructure.utils.decimals import HUNDRED, ONE, ZERO, dsum, mean, pstdev
from scalper.models.market_models import (
    BollingerValue,
    Indicators,
    Instrument,
    MacdValue,
    StochasticValue,
)

DEFAULT_WINDOW = 60

# ±0.5% synthetic spread around each close, used in place of real high/low
ATR_SYNTHETIC_SPREAD = Decimal("0.005")

MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
MACD_MIN_POINTS = 35


def sma(prices: Sequence[Decimal], period: int) -> Optional[Decimal]:
    if period <= 0 or len(prices) < period:
        return None
    return dsum(prices[-period:]) / period


def _ema_series(prices: Sequence[Decimal], period: int) -> List[Decimal]:
    """EMA at every point from index period-1 onward, seeded with the first SMA."""
    if period <= 0 or len(prices) < period:
        return []
    k = Decimal(2) / (period + 1)
    value = dsum(prices[:period]) / period
    out = [value]
    for p in prices[period:]:
        value = p * k + value * (ONE - k)
        out.append(value)
    return out


def ema(prices: Sequence[Decimal], period: int) -> Optional[Decimal]:
    series = _ema_series(prices, period)
    return series[-1] if series else None


def rsi(prices: Sequence[Decimal], period: int = 14) -> Optional[Decimal]:
    if period <= 0 or len(prices) < period + 1:
        return None
    recent = prices[-(period + 1):]
    gains = ZERO
    losses = ZERO
    for prev, cur in zip(recent, recent[1:]):
        change = cur - prev
        if change > 0:
            gains += change
        else:
            losses += -change
    if losses == 0:
        return HUNDRED
    rs = (gains / period) / (losses / period)
    return HUNDRED - HUNDRED / (ONE + rs)


def macd(prices: Sequence[Decimal]) -> Optional[MacdValue]:
    if len(prices) < MACD_MIN_POINTS:
        return None
    fast = _ema_series(prices, MACD_FAST)
    slow = _ema_series(prices, MACD_SLOW)
    # fast[i + offset] and slow[i] describe the same price index
    offset = MACD_SLOW - MACD_FAST
    line = [fast[i + offset] - s for i, s in enumerate(slow)]
    signal = ema(line, MACD_SIGNAL)
    if signal is None:
        return None
    return MacdValue(macd=line[-1], signal=signal, histogram=line[-1] - signal)


def bollinger(prices: Sequence[Decimal], period: int = 20, k: Decimal = Decimal(2)) -> Optional[BollingerValue]:
    if period <= 0 or len(prices) < period:
        return None
    window = prices[-period:]
    middle = mean(window)
    sd = pstdev(window)
    assert middle is not None and sd is not None
    upper = middle + k * sd
    lower = middle - k * sd
    price = prices[-1]
    if upper == lower:
        pct_b = Decimal("0.5")
    else:
        pct_b = (price - lower) / (upper - lower)
    return BollingerValue(upper=upper, middle=middle, lower=lower, percent_b=pct_b)


def stochastic(prices: Sequence[Decimal], period: int = 14) -> Optional[StochasticValue]:
    if period <= 0 or len(prices) < period:
        return None
    window = prices[-period:]
    lo = min(window)
    hi = max(window)
    if hi == lo:
        k = Decimal(50)
    else:
        k = (prices[-1] - lo) / (hi - lo) * HUNDRED
    return StochasticValue(k=k, d=k)


def atr(prices: Sequence[Decimal], period: int = 14) -> Optional[Decimal]:
    """Close-only approximation of the average true range.

    High and low are synthesized as close ± ATR_SYNTHETIC_SPREAD, so this is not
    an OHLC-accurate ATR.
    """
    if period <= 0 or len(prices) < period + 1:
        return None
    recent = prices[-(period + 1):]
    ranges: List[Decimal] = []
    for prev, close in zip(recent, recent[1:]):
        high = close * (ONE + ATR_SYNTHETIC_SPREAD)
        low = close * (ONE - ATR_SYNTHETIC_SPREAD)
        ranges.append(max(high - low, abs(high - prev), abs(low - prev)))
    return dsum(ranges) / period


def momentum(prices: Sequence[Decimal], period: int = 10) -> Optional[Decimal]:
    if period <= 0 or len(prices) < period + 1:
        return None
    past = prices[-1 - period]
    if past == 0:
        return None
    return (prices[-1] - past) / past * HUNDRED


def volatility(prices: Sequence[Decimal], period: int = 20) -> Optional[Decimal]:
    if period <= 0 or len(prices) < period:
        return None
    window = prices[-period:]
    m = mean(window)
    if m is None or m == 0:
        return None
    sd = pstdev(window)
    assert sd is not None
    return sd / m * HUNDRED


def compute_indicators(prices: Sequence[Decimal]) -> Indicators:
    """Snapshot of every indicator at the last price, with default periods."""
    if not prices:
        return Indicators()
    return Indicators(
        price=prices[-1],
        sma5=sma(prices, 5),
        sma20=sma(prices, 20),
        rsi=rsi(prices, 14),
        macd=macd(prices),
        bollinger=bollinger(prices, 20),
        stochastic=stochastic(prices, 14),
        atr=atr(prices, 14),
        momentum=momentum(prices, 10),
        volatility=volatility(prices, 20),
    )


# name -> (function, default period or None for fixed-period indicators)
_INDICATORS: Dict[str, Tuple[Callable[..., Any], Optional[int]]] = {
    "sma": (sma, None),
    "ema": (ema, None),
    "rsi": (rsi, 14),
    "macd": (macd, None),
    "bollinger": (bollinger, 20),
    "stochastic": (stochastic, 14),
    "atr": (atr, 14),
    "momentum": (momentum, 10),
    "volatility": (volatility, 20),
}


@dataclass
class PriceWindow:
    """Bounded FIFO of (price, timestamp), oldest first."""

    max_length: int = DEFAULT_WINDOW
    _entries: Deque[Tuple[Decimal, datetime]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_length <= 0:
            raise ValueError("max_length must be > 0")
        self._entries = deque(maxlen=self.max_length)

    def append(self, price: Decimal, timestamp: datetime) -> None:
        self._entries.append((price, timestamp))

    def prices(self) -> List[Decimal]:
        return [p for p, _ in self._entries]

    def timestamps(self) -> List[datetime]:
        return [t for _, t in self._entries]

    def latest(self) -> Optional[Tuple[Decimal, datetime]]:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)


class IndicatorEngine:
    """Owns one PriceWindow per instrument and computes indicators on demand."""

    def __init__(self, window_size: int = DEFAULT_WINDOW) -> None:
        if window_size <= 0:
            raise ValueError("window_size must be > 0")
        self.window_size = window_size
        self._windows: Dict[str, PriceWindow] = {}

    def observe(self, instrument: Instrument, price: Decimal, timestamp: datetime) -> None:
        window = self._windows.get(instrument.id)
        if window is None:
            window = PriceWindow(self.window_size)
            self._windows[instrument.id] = window
        window.append(price, timestamp)

    def window(self, instrument: Instrument) -> Optional[PriceWindow]:
        return self._windows.get(instrument.id)

    def prices(self, instrument: Instrument) -> List[Decimal]:
        window = self._windows.get(instrument.id)
        return window.prices() if window else []

    def latest_price(self, instrument: Instrument) -> Optional[Decimal]:
        window = self._windows.get(instrument.id)
        if window is None:
            return None
        latest = window.latest()
        return latest[0] if latest else None

    def compute(self, indicator: str, instrument: Instrument, period: Optional[int] = None, **kwargs: Any) -> Any:
        try:
            fn, default_period = _INDICATORS[indicator]
        except KeyError:
            raise ValueError(f"unknown indicator: {indicator}") from None
        prices = self.prices(instrument)
        if indicator == "macd":
            return fn(prices)
        p = period if period is not None else default_period
        if p is None:
            raise ValueError(f"{indicator} requires a period")
        return fn(prices, p, **kwargs)

    def snapshot(self, instrument: Instrument) -> Indicators:
        return compute_indicators(self.prices(instrument))
