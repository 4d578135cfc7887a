from datetime import datetime, timezone

import pytest

from src.engine.errors import ExecutionError
from src.execution.execution import ExecutionContext, LiveExecutor, PaperExecutor
from src.execution.ledger import AccountLedger
from src.models.bot_models import BotConfig, Direction, Signal
from src.providers.exchange import ExchangeNetworkError, ExchangeRejectedError
from src.services.risk_manager import RiskManager
from src.tests.fakes import FakeExchange

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _ctx(live=False, risk_profile="safe"):
    config = BotConfig.create("BTC/USDT", is_live_mode=live, risk_profile=risk_profile)
    return ExecutionContext(bot_id=1, config=config, ledger=AccountLedger(10000, live_mode=live), risk=RiskManager())


def _signal(direction):
    return Signal(symbol="BTC/USDT", direction=direction, timestamp=NOW)


@pytest.mark.asyncio
async def test_paper_buy_sized_by_risk_profile():
    ctx = _ctx(risk_profile="balanced")
    fill = await PaperExecutor().execute(ctx, _signal(Direction.BUY), 100.0)
    assert fill.size == pytest.approx(7.0)
    assert ctx.ledger.balance == pytest.approx(9300.0)


@pytest.mark.asyncio
async def test_paper_hold_is_noop():
    ctx = _ctx()
    assert await PaperExecutor().execute(ctx, _signal(Direction.HOLD), 100.0) is None
    assert ctx.ledger.balance == 10000


@pytest.mark.asyncio
async def test_live_retries_network_error_once():
    exchange = FakeExchange([ExchangeNetworkError("timeout"), {"average": 101.0, "fee": 0.2}])
    ctx = _ctx(live=True)
    fill = await LiveExecutor(exchange).execute(ctx, _signal(Direction.BUY), 100.0)
    assert len(exchange.orders) == 2
    assert fill.price == 101.0
    assert fill.fee == 0.2
    assert fill.order_id == "o2"
    assert ctx.ledger.position.size == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_live_second_network_error_raises():
    exchange = FakeExchange([ExchangeNetworkError("a"), ExchangeNetworkError("b")])
    ctx = _ctx(live=True)
    with pytest.raises(ExecutionError):
        await LiveExecutor(exchange).execute(ctx, _signal(Direction.BUY), 100.0)
    assert ctx.ledger.is_flat
    assert ctx.ledger.balance == 10000


@pytest.mark.asyncio
async def test_live_rejection_not_retried():
    exchange = FakeExchange([ExchangeRejectedError("insufficient funds")])
    with pytest.raises(ExecutionError):
        await LiveExecutor(exchange).execute(_ctx(live=True), _signal(Direction.BUY), 100.0)
    assert len(exchange.orders) == 1


@pytest.mark.asyncio
async def test_live_zero_fill_raises():
    exchange = FakeExchange([{"filled": 0.0, "status": "canceled"}])
    with pytest.raises(ExecutionError):
        await LiveExecutor(exchange).execute(_ctx(live=True), _signal(Direction.BUY), 100.0)


@pytest.mark.asyncio
async def test_live_partial_fill_applies_filled_amount():
    exchange = FakeExchange([{"filled": 1.0, "average": 106.0, "fee": 0.5}])
    ctx = _ctx(live=True)
    fill = await LiveExecutor(exchange).execute(ctx, _signal(Direction.BUY), 100.0)
    assert fill.partial
    assert ctx.ledger.position.size == 1.0
    assert ctx.ledger.balance == pytest.approx(10000 - 106.5)


@pytest.mark.asyncio
async def test_live_sell_uses_position_size():
    exchange = FakeExchange([{"average": 100.0}, {"average": 110.0}])
    ctx = _ctx(live=True)
    executor = LiveExecutor(exchange)
    await executor.execute(ctx, _signal(Direction.BUY), 100.0)
    fill = await executor.execute(ctx, _signal(Direction.SELL), 110.0)
    assert exchange.orders[1] == ("BTC/USDT", "sell", pytest.approx(3.0))
    assert fill.pnl == pytest.approx(30.0)
    assert ctx.ledger.is_flat


@pytest.mark.asyncio
async def test_live_sell_while_flat_sends_nothing():
    exchange = FakeExchange()
    assert await LiveExecutor(exchange).execute(_ctx(live=True), _signal(Direction.SELL), 100.0) is None
    assert exchange.orders == []


@pytest.mark.asyncio
async def test_live_balance_fetch():
    executor = LiveExecutor(FakeExchange(free_balance=2500.0))
    assert await executor.fetch_balance(BotConfig.create("ETH/USDT")) == 2500.0
