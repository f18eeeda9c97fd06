"""External collaborator interfaces and the in-memory paper venue.

The engine talks to the outside world only through three narrow interfaces:
prices, quote/execute, and balances. Live implementations (RPC, swap API) are
outside this repository. PaperVenue implements all three for dry runs.
"""

from __future__ import annotations

import random
import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from scalper.infrastructure.errors import ExecutionError, PriceFeedError
from scalper.infrastructure.logging.logging import get_logger
from scalper.infrastructure.utils.decimals import ZERO, quantize_to, to_decimal
from scalper.infrastructure.utils.timeutils import Clock, utc_now
from scalper.models.market_models import USDC, Instrument, PriceObservation
from scalper.models.trade_models import Quote, SwapResult


class PriceFeed(Protocol):
    async def fetch_prices(self, instruments: Sequence[Instrument]) -> List[PriceObservation]:
        """Batched fetch. Raises PriceFeedError on failure."""
        ...


class SwapVenue(Protocol):
    async def quote(
        self,
        input_instrument: Instrument,
        output_instrument: Instrument,
        amount: Decimal,
        max_slippage_bps: int,
    ) -> Optional[Quote]:
        ...

    async def execute(self, quote: Quote) -> SwapResult:
        """Raises ExecutionError when the swap does not settle."""
        ...


class BalanceProvider(Protocol):
    async def balance(self, instrument: Instrument) -> Decimal:
        ...


class PaperVenue:
    """Dry-run venue: seeded random-walk prices, fee-adjusted fills, tracked balances."""

    def __init__(
        self,
        instruments: Sequence[Instrument],
        *,
        starting_balance: Decimal,
        base_prices: Optional[Dict[str, Decimal]] = None,
        volatility: float = 0.002,
        fee_bps: int = 5,
        seed: Optional[int] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._rng = random.Random(seed)
        self._clock = clock
        self._volatility = float(volatility)
        self._fee = Decimal(fee_bps) / Decimal(10_000)
        self._instruments = {i.id: i for i in instruments}
        base_prices = base_prices or {}
        self._prices: Dict[str, Decimal] = {
            i.id: to_decimal(base_prices.get(i.symbol, Decimal("1" if i.symbol == "JUP" else "100")))
            for i in instruments
        }
        self._balances: Dict[str, Decimal] = {USDC.id: to_decimal(starting_balance)}
        self.log = get_logger("paper_venue")

    # -- PriceFeed --
    async def fetch_prices(self, instruments: Sequence[Instrument]) -> List[PriceObservation]:
        now = self._clock()
        out: List[PriceObservation] = []
        for inst in instruments:
            if inst.id not in self._prices:
                raise PriceFeedError(f"no paper market for {inst.symbol}")
            step = Decimal(repr(self._rng.gauss(0.0, self._volatility)))
            self._prices[inst.id] = self._prices[inst.id] * (1 + step)
            out.append(PriceObservation(instrument=inst, price=self._prices[inst.id], timestamp=now))
        return out

    def set_price(self, instrument: Instrument, price: Decimal) -> None:
        self._prices[instrument.id] = to_decimal(price)

    # -- SwapVenue --
    async def quote(
        self,
        input_instrument: Instrument,
        output_instrument: Instrument,
        amount: Decimal,
        max_slippage_bps: int,
    ) -> Optional[Quote]:
        if amount <= 0:
            return None
        if input_instrument.id == USDC.id:
            price = self._prices.get(output_instrument.id)
            if price is None:
                return None
            out_amount = amount * (1 - self._fee) / price
        elif output_instrument.id == USDC.id:
            price = self._prices.get(input_instrument.id)
            if price is None:
                return None
            out_amount = amount * price * (1 - self._fee)
        else:
            return None
        out_amount = quantize_to(out_amount, output_instrument.decimals)
        return Quote(
            input_instrument=input_instrument,
            output_instrument=output_instrument,
            in_amount=amount,
            out_amount=out_amount,
            slippage_bps=max_slippage_bps,
            price_impact_pct=ZERO,
            route="paper",
        )

    async def execute(self, quote: Quote) -> SwapResult:
        have = self._balances.get(quote.input_instrument.id, ZERO)
        if have < quote.in_amount:
            raise ExecutionError(
                f"insufficient {quote.input_instrument.symbol} balance: have={have} need={quote.in_amount}"
            )
        self._balances[quote.input_instrument.id] = have - quote.in_amount
        self._balances[quote.output_instrument.id] = (
            self._balances.get(quote.output_instrument.id, ZERO) + quote.out_amount
        )
        ref = uuid.uuid4().hex
        self.log.debug(
            "paper_swap",
            input=quote.input_instrument.symbol,
            output=quote.output_instrument.symbol,
            in_amount=quote.in_amount,
            out_amount=quote.out_amount,
            ref=ref,
        )
        return SwapResult(input_amount=quote.in_amount, output_amount=quote.out_amount, settlement_reference=ref)

    # -- BalanceProvider --
    async def balance(self, instrument: Instrument) -> Decimal:
        return self._balances.get(instrument.id, ZERO)
