from __future__ import annotations

from decimal import Decimal

from scalper.infrastructure.errors import ExecutionError
from scalper.models.market_models import Instrument
from scalper.models.trade_models import SwapResult
from scalper.services.execution.venue import SwapVenue


class OrderExecutor:
    """quote -> price impact check -> execute.

    Raises ExecutionError when any step fails, including transport errors
    (timeouts, connection resets) raised by the venue itself. Nothing is
    settled unless execute() returns, so a failure before that leaves no
    side effect.
    """

    def __init__(self, venue: SwapVenue, *, max_slippage_bps: int = 50, max_price_impact_pct: Decimal = Decimal("0.5")) -> None:
        self.venue = venue
        self.max_slippage_bps = int(max_slippage_bps)
        self.max_price_impact_pct = Decimal(max_price_impact_pct)

    async def swap(self, *, sell: Instrument, buy: Instrument, amount: Decimal) -> SwapResult:
        try:
            quote = await self.venue.quote(sell, buy, amount, self.max_slippage_bps)
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"quote_error {sell.symbol}->{buy.symbol}: {type(e).__name__}: {e}") from e
        if quote is None:
            raise ExecutionError(f"quote_failed {sell.symbol}->{buy.symbol} amount={amount}")

        if abs(quote.price_impact_pct) > self.max_price_impact_pct:
            raise ExecutionError(
                f"price_impact_too_high {sell.symbol}->{buy.symbol} impact={quote.price_impact_pct}"
            )

        try:
            result = await self.venue.execute(quote)
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"execute_error {sell.symbol}->{buy.symbol}: {type(e).__name__}: {e}") from e
        if result.output_amount <= 0:
            raise ExecutionError(f"swap_returned_nothing ref={result.settlement_reference}")
        return result
