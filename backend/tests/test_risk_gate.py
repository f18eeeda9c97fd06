from decimal import Decimal

import pytest

from conftest import SOL, buy_signal
from scalper.infrastructure.utils.config import RiskLimits, StrategyParameters
from scalper.models.trade_models import CloseReason
from scalper.services.execution.order_executor import OrderExecutor
from scalper.services.risk.risk_gate import RiskGate, RiskSnapshot
from scalper.services.trading.position_ledger import PositionLedger


def make_gate(venue, clock, **limits):
    defaults = dict(
        initial_capital=Decimal(100),
        max_drawdown_percent=Decimal(10),
        max_daily_loss_percent=Decimal(5),
        max_position_size_percent=Decimal(30),
        min_capital_reserve=Decimal(10),
        max_trades_per_hour=20,
        cooldown_after_loss_seconds=300,
    )
    defaults.update(limits)
    ledger = PositionLedger(
        OrderExecutor(venue),
        lambda inst: venue.prices.get(inst.id),
        StrategyParameters(min_trade_size=Decimal(1)),
        clock=clock,
    )
    gate = RiskGate(RiskLimits(**defaults), ledger, venue, clock=clock)
    ledger.add_close_listener(gate.on_position_closed)
    return gate, ledger


def snap(clock, liquid="100", value="0"):
    return RiskSnapshot(
        liquid_balance=Decimal(liquid),
        position_value=Decimal(value),
        net_pnl=Decimal(0),
        committed=Decimal(value),
        at=clock(),
    )


@pytest.mark.asyncio
async def test_allows_when_within_limits(venue, clock):
    venue.balances = {k: Decimal(100) for k in venue.balances}
    gate, _ = make_gate(venue, clock)

    status = await gate.evaluate()

    assert status.allowed
    assert status.decision.reason == "ok"
    assert status.current_capital == Decimal(100)
    assert status.drawdown_pct == 0


@pytest.mark.asyncio
async def test_denies_at_drawdown_limit(venue, clock):
    venue.balances = {k: Decimal(89) for k in venue.balances}
    gate, _ = make_gate(venue, clock)

    status = await gate.evaluate()

    assert not status.allowed
    assert status.decision.reason.startswith("max_drawdown_reached")
    assert status.drawdown_pct == Decimal(11)


def test_pause_is_checked_first(venue, clock):
    gate, _ = make_gate(venue, clock)
    gate.pause("operator")

    decision = gate.check(snap(clock, liquid="50"))
    assert not decision.allowed
    assert decision.reason.startswith("paused")

    gate.resume()
    assert gate.check(snap(clock)).allowed


def test_daily_loss_limit_and_midnight_reset(venue, clock):
    gate, _ = make_gate(venue, clock, cooldown_after_loss_seconds=0)
    gate.record_trade(Decimal(-5))

    decision = gate.check(snap(clock))
    assert not decision.allowed
    assert decision.reason.startswith("max_daily_loss_reached")

    clock.advance(days=1)
    assert gate.check(snap(clock)).allowed
    assert gate.daily_pnl == 0


def test_small_daily_loss_is_allowed(venue, clock):
    gate, _ = make_gate(venue, clock, cooldown_after_loss_seconds=0)
    gate.record_trade(Decimal("-4.99"))
    assert gate.check(snap(clock)).allowed


def test_reserve_check(venue, clock):
    gate, _ = make_gate(venue, clock)
    decision = gate.check(snap(clock, liquid="5", value="95"))
    assert not decision.allowed
    assert decision.reason.startswith("below_capital_reserve")


def test_trade_rate_limit_uses_trailing_hour(venue, clock):
    gate, _ = make_gate(venue, clock, max_trades_per_hour=2)
    gate.record_trade(Decimal(1))
    clock.advance(minutes=10)
    gate.record_trade(Decimal(1))

    decision = gate.check(snap(clock))
    assert not decision.allowed
    assert decision.reason.startswith("max_trades_per_hour_reached")

    clock.advance(minutes=50)
    assert gate.check(snap(clock)).allowed
    assert gate.trades_this_hour() == 1


def test_cooldown_after_loss_reports_remaining(venue, clock):
    gate, _ = make_gate(venue, clock)
    gate.record_trade(Decimal(-1))

    decision = gate.check(snap(clock))
    assert decision.reason == "cooldown_after_loss"
    assert decision.cooldown_remaining_sec == 300

    clock.advance(seconds=120)
    assert gate.check(snap(clock)).cooldown_remaining_sec == 180

    clock.advance(seconds=181)
    assert gate.check(snap(clock)).allowed


def test_winning_trade_does_not_start_cooldown(venue, clock):
    gate, _ = make_gate(venue, clock)
    gate.record_trade(Decimal(2))
    assert gate.check(snap(clock)).allowed
    assert gate.daily_pnl == Decimal(2)


def test_available_capital_and_max_position_size(venue, clock):
    gate, _ = make_gate(venue, clock)
    # 100 + 0 - 0 - 10
    assert gate.available_capital() == Decimal(90)
    assert gate.max_position_size() == Decimal(30)

    gate.update_limits({"min_capital_reserve": 200})
    assert gate.available_capital() == 0
    assert gate.max_position_size() == 0


@pytest.mark.asyncio
async def test_available_capital_subtracts_committed(venue, clock):
    gate, ledger = make_gate(venue, clock)
    venue.set_price(SOL, "100")
    await ledger.execute_signal(buy_signal(SOL), gate.available_capital(), gate.max_position_size())

    # 90 * 30% = 27 committed
    assert ledger.committed_capital() == Decimal(27)
    assert gate.available_capital() == Decimal(63)


def test_update_limits_is_atomic(venue, clock):
    gate, _ = make_gate(venue, clock)
    before = gate.limits
    with pytest.raises(ValueError):
        gate.update_limits({"max_drawdown_percent": 20, "max_trades_per_hour": 0})
    assert gate.limits is before

    gate.update_limits({"max_drawdown_percent": 20})
    assert gate.limits.max_drawdown_percent == Decimal(20)


@pytest.mark.asyncio
async def test_closed_loss_feeds_gate(venue, clock):
    gate, ledger = make_gate(venue, clock)
    venue.set_price(SOL, "100")
    await ledger.execute_signal(buy_signal(SOL), Decimal(100))

    venue.set_price(SOL, "99")
    await ledger.manage_positions()

    assert gate.daily_pnl < 0
    assert gate.trades_this_hour() == 1
    assert gate.check(snap(clock)).reason == "cooldown_after_loss"


@pytest.mark.asyncio
async def test_emergency_stop_pauses_and_liquidates(venue, clock):
    gate, ledger = make_gate(venue, clock)
    venue.set_price(SOL, "100")
    await ledger.execute_signal(buy_signal(SOL), Decimal(100))

    await gate.emergency_stop()

    assert gate.paused
    assert ledger.open_positions() == []
    assert ledger.closed_positions()[0].close_reason == CloseReason.EMERGENCY_CLOSE
    status = await gate.evaluate()
    assert not status.allowed
