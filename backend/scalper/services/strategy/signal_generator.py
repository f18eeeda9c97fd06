"""Weighted-vote signal generator (BUY / SELL / HOLD with confidence 0..1)."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence

from scalper.infrastructure.utils.config import SignalConfig
from scalper.infrastructure.utils.decimals import HUNDRED, ONE, ZERO
from scalper.models.market_models import Indicators, Instrument
from scalper.services.market.indicators import IndicatorEngine


class Verdict(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


@dataclass(frozen=True)
class Signal:
    instrument: Instrument
    verdict: Verdict
    confidence: float          # 0..1
    reference_price: Decimal
    target_price: Decimal
    stop_price: Decimal
    reason: str

    @property
    def actionable(self) -> bool:
        return self.verdict != Verdict.HOLD


W_RSI = Decimal("0.25")
W_MACD = Decimal("0.2")
W_BOLLINGER = Decimal("0.2")
W_STOCHASTIC = Decimal("0.15")
W_MOMENTUM = Decimal("0.1")
W_LOW_VOL_TREND = Decimal("0.1")

RSI_OVERSOLD = Decimal(30)
RSI_OVERBOUGHT = Decimal(70)
PB_LOW = Decimal("0.1")
PB_HIGH = Decimal("0.9")
STOCH_LOW = Decimal(20)
STOCH_HIGH = Decimal(80)
LOW_VOLATILITY = Decimal(3)
TREND_THRESHOLD = Decimal("0.5")
MIN_SIDE_WEIGHT = Decimal("0.5")
MAX_CONFIDENCE = Decimal("0.9")

_HALF = Decimal("0.5")


@dataclass
class Vote:
    buy: Decimal = ZERO
    sell: Decimal = ZERO
    reasons: List[str] = field(default_factory=list)

    def add(self, side: Verdict, weight: Decimal, reason: str) -> None:
        if side == Verdict.BUY:
            self.buy += weight
        else:
            self.sell += weight
        self.reasons.append(f"{reason} {side.value}+{weight.normalize()}")


def _scaled(max_weight: Decimal, distance: Decimal, span: Decimal) -> Decimal:
    """Half weight right past the threshold, full weight `span` beyond it."""
    return max_weight * min(ONE, _HALF + distance / span)


def trend_strength(ind: Indicators) -> Optional[Decimal]:
    if ind.sma5 is None or ind.sma20 is None or ind.sma20 == 0:
        return None
    return (ind.sma5 - ind.sma20) / ind.sma20 * HUNDRED


def tally(ind: Indicators) -> Vote:
    """Accumulate BUY and SELL weights from an indicator snapshot.

    Missing indicators simply do not vote.
    """
    vote = Vote()
    trend = trend_strength(ind)

    if ind.rsi is not None:
        if ind.rsi < RSI_OVERSOLD:
            vote.add(Verdict.BUY, _scaled(W_RSI, RSI_OVERSOLD - ind.rsi, RSI_OVERSOLD), f"rsi_oversold={ind.rsi:.1f}")
        elif ind.rsi > RSI_OVERBOUGHT:
            vote.add(Verdict.SELL, _scaled(W_RSI, ind.rsi - RSI_OVERBOUGHT, HUNDRED - RSI_OVERBOUGHT), f"rsi_overbought={ind.rsi:.1f}")

    if ind.macd is not None:
        if ind.macd.histogram > 0 and ind.macd.macd > 0:
            vote.add(Verdict.BUY, W_MACD, "macd_bullish")
        elif ind.macd.histogram < 0 and ind.macd.macd < 0:
            vote.add(Verdict.SELL, W_MACD, "macd_bearish")

    if ind.bollinger is not None:
        pb = ind.bollinger.percent_b
        if pb < PB_LOW:
            vote.add(Verdict.BUY, _scaled(W_BOLLINGER, PB_LOW - pb, Decimal("0.2")), f"bb_lower pb={pb:.2f}")
        elif pb > PB_HIGH:
            vote.add(Verdict.SELL, _scaled(W_BOLLINGER, pb - PB_HIGH, Decimal("0.2")), f"bb_upper pb={pb:.2f}")

    if ind.stochastic is not None:
        if ind.stochastic.k < STOCH_LOW:
            vote.add(Verdict.BUY, W_STOCHASTIC, f"stoch_low k={ind.stochastic.k:.1f}")
        elif ind.stochastic.k > STOCH_HIGH:
            vote.add(Verdict.SELL, W_STOCHASTIC, f"stoch_high k={ind.stochastic.k:.1f}")

    if ind.momentum is not None and trend is not None:
        if ind.momentum > 0 and trend > 0:
            vote.add(Verdict.BUY, W_MOMENTUM, "momentum_up")
        elif ind.momentum < 0 and trend < 0:
            vote.add(Verdict.SELL, W_MOMENTUM, "momentum_down")

    if ind.volatility is not None and trend is not None and ind.volatility < LOW_VOLATILITY:
        if trend > TREND_THRESHOLD:
            vote.add(Verdict.BUY, W_LOW_VOL_TREND, f"low_vol_breakout trend={trend:.2f}%")
        elif trend < -TREND_THRESHOLD:
            vote.add(Verdict.SELL, W_LOW_VOL_TREND, f"low_vol_breakdown trend={trend:.2f}%")

    return vote


def decide(instrument: Instrument, ind: Indicators, config: SignalConfig) -> Signal:
    """Turn an indicator snapshot into a Signal. Pure: same inputs, same signal."""
    if ind.price is None:
        return Signal(
            instrument=instrument,
            verdict=Verdict.HOLD,
            confidence=0.0,
            reference_price=ZERO,
            target_price=ZERO,
            stop_price=ZERO,
            reason="no_price_data",
        )

    price = ind.price
    vote = tally(ind)

    verdict = Verdict.HOLD
    weight = ZERO
    if vote.buy > vote.sell and vote.buy > MIN_SIDE_WEIGHT:
        verdict, weight = Verdict.BUY, vote.buy
    elif vote.sell > vote.buy and vote.sell > MIN_SIDE_WEIGHT:
        verdict, weight = Verdict.SELL, vote.sell

    confidence = min(MAX_CONFIDENCE, weight)
    if confidence < config.min_confidence:
        verdict = Verdict.HOLD

    if verdict == Verdict.HOLD:
        reason = "conditions_not_favorable"
        if vote.reasons:
            reason += " " + "; ".join(vote.reasons)
    else:
        reason = "; ".join(vote.reasons)

    target_pct, stop_pct = bracket_percents(price, ind.atr, config)
    if verdict == Verdict.SELL:
        target = price * (ONE - target_pct / HUNDRED)
        stop = price * (ONE + stop_pct / HUNDRED)
    else:
        target = price * (ONE + target_pct / HUNDRED)
        stop = price * (ONE - stop_pct / HUNDRED)

    return Signal(
        instrument=instrument,
        verdict=verdict,
        confidence=float(confidence) if verdict != Verdict.HOLD else 0.0,
        reference_price=price,
        target_price=target,
        stop_price=stop,
        reason=reason,
    )


def bracket_percents(price: Decimal, atr_value: Optional[Decimal], config: SignalConfig) -> tuple[Decimal, Decimal]:
    if atr_value is None or price <= 0:
        return config.min_target_percent, config.min_stop_percent
    atr_pct = atr_value / price * HUNDRED
    return (
        max(config.min_target_percent, atr_pct * config.atr_target_multiplier),
        max(config.min_stop_percent, atr_pct * config.atr_stop_multiplier),
    )


class SignalGenerator:
    def __init__(self, indicators: IndicatorEngine, instruments: Sequence[Instrument], config: Optional[SignalConfig] = None) -> None:
        self.indicators = indicators
        self.instruments = list(instruments)
        self.config = config or SignalConfig()

    def evaluate(self, instrument: Instrument) -> Signal:
        return decide(instrument, self.indicators.snapshot(instrument), self.config)

    def high_probability_signals(self) -> List[Signal]:
        signals = [self.evaluate(i) for i in self.instruments]
        actionable = [
            s for s in signals
            if s.actionable and Decimal(str(s.confidence)) >= self.config.min_confidence
        ]
        actionable.sort(key=lambda s: s.confidence, reverse=True)
        return actionable
