import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# make `scalper` importable without installing the package
BACKEND = Path(__file__).resolve().parents[1]
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from scalper.infrastructure.errors import ExecutionError, PriceFeedError  # noqa: E402
from scalper.models.market_models import USDC, Instrument, PriceObservation, instrument_by_symbol  # noqa: E402
from scalper.models.trade_models import Quote, SwapResult  # noqa: E402
from scalper.services.strategy.signal_generator import Signal, Verdict  # noqa: E402

SOL = instrument_by_symbol("SOL")
JUP = instrument_by_symbol("JUP")


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeVenue:
    """Fills exactly at the set price, no fee. Implements feed, venue and balances."""

    def __init__(self, balance: Decimal = Decimal("1000"), clock: Optional[FakeClock] = None) -> None:
        self.clock = clock or FakeClock()
        self.prices: Dict[str, Decimal] = {}
        self.balances: Dict[str, Decimal] = {USDC.id: Decimal(balance)}
        self.fail_execute = False
        self.fail_quote = False
        self.fail_feed = False
        self.quote_errors: Dict[str, Exception] = {}
        self.price_impact = Decimal("0")
        self.executed: List[Quote] = []

    def set_price(self, instrument: Instrument, price) -> None:
        self.prices[instrument.id] = Decimal(str(price))

    async def fetch_prices(self, instruments: Sequence[Instrument]) -> List[PriceObservation]:
        if self.fail_feed:
            raise PriceFeedError("feed down")
        return [
            PriceObservation(instrument=i, price=self.prices[i.id], timestamp=self.clock())
            for i in instruments
            if i.id in self.prices
        ]

    async def quote(self, input_instrument, output_instrument, amount, max_slippage_bps) -> Optional[Quote]:
        if input_instrument.id in self.quote_errors:
            raise self.quote_errors[input_instrument.id]
        if self.fail_quote:
            return None
        if input_instrument.id == USDC.id:
            out = amount / self.prices[output_instrument.id]
        else:
            out = amount * self.prices[input_instrument.id]
        return Quote(
            input_instrument=input_instrument,
            output_instrument=output_instrument,
            in_amount=amount,
            out_amount=out,
            slippage_bps=max_slippage_bps,
            price_impact_pct=self.price_impact,
            route="fake",
        )

    async def execute(self, quote: Quote) -> SwapResult:
        if self.fail_execute:
            raise ExecutionError("venue rejected transaction")
        self.executed.append(quote)
        self.balances[quote.input_instrument.id] = self.balances.get(quote.input_instrument.id, Decimal("0")) - quote.in_amount
        self.balances[quote.output_instrument.id] = self.balances.get(quote.output_instrument.id, Decimal("0")) + quote.out_amount
        return SwapResult(
            input_amount=quote.in_amount,
            output_amount=quote.out_amount,
            settlement_reference=f"tx-{len(self.executed)}",
        )

    async def balance(self, instrument: Instrument) -> Decimal:
        return self.balances.get(instrument.id, Decimal("0"))


def buy_signal(instrument: Instrument = SOL, price="100", confidence: float = 0.8) -> Signal:
    p = Decimal(price)
    return Signal(
        instrument=instrument,
        verdict=Verdict.BUY,
        confidence=confidence,
        reference_price=p,
        target_price=p * Decimal("1.005"),
        stop_price=p * Decimal("0.997"),
        reason="test",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def venue(clock) -> FakeVenue:
    return FakeVenue(Decimal("1000"), clock)
