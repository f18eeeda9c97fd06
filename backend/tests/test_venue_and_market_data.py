from decimal import Decimal

import pytest

from conftest import JUP, SOL, FakeClock
from scalper.infrastructure.errors import ExecutionError, PriceFeedError
from scalper.models.market_models import USDC, PriceObservation
from scalper.services.execution.order_executor import OrderExecutor
from scalper.services.execution.venue import PaperVenue
from scalper.services.market.indicators import IndicatorEngine
from scalper.services.market.market_data import MarketDataService


@pytest.mark.asyncio
async def test_paper_quote_applies_fee_and_instrument_decimals():
    venue = PaperVenue([SOL], starting_balance=Decimal(1000), fee_bps=5, seed=1)
    quote = await venue.quote(USDC, SOL, Decimal(100), 50)

    assert quote.out_amount == Decimal("0.999500000")
    assert quote.out_amount.as_tuple().exponent == -SOL.decimals
    assert await venue.quote(USDC, SOL, Decimal(0), 50) is None
    assert await venue.quote(SOL, JUP, Decimal(1), 50) is None


@pytest.mark.asyncio
async def test_paper_execute_moves_balances():
    venue = PaperVenue([SOL], starting_balance=Decimal(100), fee_bps=0)
    result = await OrderExecutor(venue).swap(sell=USDC, buy=SOL, amount=Decimal(50))

    assert result.output_amount == Decimal("0.5")
    assert await venue.balance(USDC) == Decimal(50)
    assert await venue.balance(SOL) == Decimal("0.5")

    with pytest.raises(ExecutionError):
        await OrderExecutor(venue).swap(sell=USDC, buy=SOL, amount=Decimal(60))
    assert await venue.balance(USDC) == Decimal(50)


@pytest.mark.asyncio
async def test_paper_prices_are_seeded():
    a = PaperVenue([SOL, JUP], starting_balance=Decimal(1), seed=42, clock=FakeClock())
    b = PaperVenue([SOL, JUP], starting_balance=Decimal(1), seed=42, clock=FakeClock())

    for _ in range(5):
        pa = [o.price for o in await a.fetch_prices([SOL, JUP])]
        pb = [o.price for o in await b.fetch_prices([SOL, JUP])]
        assert pa == pb
        assert all(p > 0 for p in pa)


@pytest.mark.asyncio
async def test_paper_feed_rejects_unknown_instrument():
    venue = PaperVenue([SOL], starting_balance=Decimal(1))
    with pytest.raises(PriceFeedError):
        await venue.fetch_prices([JUP])


@pytest.mark.asyncio
async def test_executor_abandons_on_price_impact(venue):
    venue.set_price(SOL, "100")
    venue.price_impact = Decimal("0.6")
    executor = OrderExecutor(venue, max_price_impact_pct=Decimal("0.5"))

    with pytest.raises(ExecutionError):
        await executor.swap(sell=USDC, buy=SOL, amount=Decimal(10))
    assert venue.executed == []


@pytest.mark.asyncio
async def test_market_data_feeds_indicators(venue, clock):
    engine = IndicatorEngine(3)
    market = MarketDataService(venue, [SOL], engine)

    for p in ["100", "101", "102", "103"]:
        venue.set_price(SOL, p)
        batch = await market.fetch_prices()
        assert batch[SOL.id].price == Decimal(p)
        clock.advance(seconds=5)

    assert market.last_price(SOL).price == Decimal(103)
    history = market.price_history(SOL)
    assert [o.price for o in history] == [Decimal(101), Decimal(102), Decimal(103)]
    assert market.price_history(JUP) == []


@pytest.mark.asyncio
async def test_market_data_feed_failure_changes_nothing(venue):
    engine = IndicatorEngine(10)
    market = MarketDataService(venue, [SOL], engine)
    venue.set_price(SOL, "100")
    await market.fetch_prices()

    venue.fail_feed = True
    assert await market.fetch_prices() == {}
    assert engine.prices(SOL) == [Decimal(100)]


class _NoisyFeed:
    def __init__(self, clock):
        self.clock = clock

    async def fetch_prices(self, instruments):
        now = self.clock()
        return [
            PriceObservation(instrument=SOL, price=Decimal(0), timestamp=now),
            PriceObservation(instrument=JUP, price=Decimal(1), timestamp=now),
        ]


@pytest.mark.asyncio
async def test_market_data_ignores_untracked_and_non_positive():
    clock = FakeClock()
    engine = IndicatorEngine(10)
    market = MarketDataService(_NoisyFeed(clock), [SOL], engine)

    assert await market.fetch_prices() == {}
    assert market.last_price(SOL) is None
    assert engine.window(JUP) is None


@pytest.mark.asyncio
async def test_executor_wraps_transport_errors(venue):
    venue.set_price(SOL, "100")
    venue.quote_errors[USDC.id] = TimeoutError("rpc timeout")

    with pytest.raises(ExecutionError) as info:
        await OrderExecutor(venue).swap(sell=USDC, buy=SOL, amount=Decimal(10))
    assert isinstance(info.value.__cause__, TimeoutError)
    assert venue.executed == []


@pytest.mark.asyncio
async def test_executor_wraps_settlement_transport_errors(venue, monkeypatch):
    venue.set_price(SOL, "100")

    async def broken_execute(quote):
        raise OSError("connection reset")

    monkeypatch.setattr(venue, "execute", broken_execute)
    with pytest.raises(ExecutionError) as info:
        await OrderExecutor(venue).swap(sell=USDC, buy=SOL, amount=Decimal(10))
    assert "connection reset" in str(info.value)
