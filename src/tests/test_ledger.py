from datetime import datetime, timedelta, timezone

import pytest

from src.engine.errors import LiveModeResetForbidden
from src.execution.ledger import AccountLedger
from src.models.bot_models import Direction, LogLevel
from src.services.event_log import EventLog
from src.services.risk_manager import fixed_fraction_sizer


def _ledger(**kwargs):
    log = EventLog(1)
    kwargs.setdefault("sizer", fixed_fraction_sizer(0.1))
    return AccountLedger(10000, log=log, **kwargs), log


def test_buy_then_sell_round_trip():
    ledger, _ = _ledger()
    buy = ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    assert buy.size == pytest.approx(10.0)
    assert ledger.balance == pytest.approx(9000.0)
    assert ledger.position.symbol == "BTC/USDT"

    sell = ledger.apply_fill(Direction.SELL, 110.0)
    assert sell.pnl == pytest.approx(100.0)
    assert ledger.balance == pytest.approx(10100.0)
    assert ledger.is_flat
    assert len(ledger.equity_curve) == 2
    assert len(ledger.trades) == 1


def test_sell_while_flat_is_noop_with_one_warning():
    ledger, log = _ledger()
    assert ledger.apply_fill(Direction.SELL, 100.0, symbol="BTC/USDT") is None
    assert ledger.balance == 10000
    assert len(ledger.equity_curve) == 1
    assert [e.level for e in log.entries()] == [LogLevel.WARN]


def test_buy_while_holding_is_noop():
    ledger, log = _ledger()
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    assert ledger.apply_fill(Direction.BUY, 90.0, symbol="BTC/USDT") is None
    assert ledger.position.entry_price == 100.0
    assert len(log.entries(level=LogLevel.WARN)) == 1


def test_hold_does_nothing():
    ledger, log = _ledger()
    assert ledger.apply_fill(Direction.HOLD, 100.0) is None
    assert len(log) == 0


def test_simulated_fees_and_slippage():
    ledger, _ = _ledger(fee_rate=0.001, slippage_rate=0.001)
    buy = ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    fill_price = 100.0 * 1.001
    size = 1000.0 / fill_price
    assert buy.price == pytest.approx(fill_price)
    assert buy.size == pytest.approx(size)
    assert buy.fee == pytest.approx(1.0)
    assert ledger.balance == pytest.approx(8999.0)

    sell = ledger.apply_fill(Direction.SELL, 110.0)
    exit_price = 110.0 * 0.999
    proceeds = size * exit_price
    assert sell.pnl == pytest.approx(proceeds * 0.999 - 1001.0)
    assert ledger.balance == pytest.approx(8999.0 + proceeds * 0.999)
    stats = ledger.stats()
    assert stats["totalFees"] == pytest.approx(1.0 + proceeds * 0.001)
    assert stats["totalSlippage"] > 0


def test_actual_fee_bypasses_simulation():
    ledger, _ = _ledger(fee_rate=0.5, slippage_rate=0.5)
    fill = ledger.apply_fill(Direction.BUY, 100.0, size=2.0, symbol="BTC/USDT", fee=0.25, order_id="x1")
    assert fill.price == 100.0
    assert fill.fee == 0.25
    assert fill.order_id == "x1"
    assert ledger.balance == pytest.approx(10000 - 200.25)


def test_partial_sell_keeps_remaining_position():
    ledger, _ = _ledger()
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    fill = ledger.apply_fill(Direction.SELL, 120.0, size=4.0, fee=0.0)
    assert fill.partial
    assert fill.pnl == pytest.approx(80.0)
    assert ledger.position.size == pytest.approx(6.0)
    assert ledger.position.cost == pytest.approx(600.0)


def test_reset_in_paper_mode():
    ledger, log = _ledger()
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    ledger.apply_fill(Direction.SELL, 90.0)
    ledger.reset(5000)
    assert ledger.balance == 5000
    assert ledger.starting_capital == 5000
    assert ledger.is_flat
    assert ledger.trades == []
    assert [p.balance for p in ledger.equity_curve] == [5000]
    assert log.entries()[-1].level is LogLevel.INFO


def test_reset_forbidden_in_live_mode_leaves_state():
    ledger, _ = _ledger(live_mode=True)
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT", size=1.0, fee=0.0)
    before = ledger.to_dict()
    with pytest.raises(LiveModeResetForbidden):
        ledger.reset(5000)
    assert ledger.to_dict() == before


def test_equity_curve_timestamps_never_go_backwards():
    times = iter([datetime(2024, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=i) for i in range(10)])
    ledger = AccountLedger(1000, sizer=fixed_fraction_sizer(0.5), clock=lambda: next(times))
    ledger.apply_fill(Direction.BUY, 10.0, symbol="A/B")
    ledger.apply_fill(Direction.SELL, 11.0)
    stamps = [p.timestamp for p in ledger.equity_curve]
    assert stamps == sorted(stamps)


def test_stats_profit_factor():
    ledger, _ = _ledger()
    assert ledger.stats()["profitFactor"] == 0.0
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    ledger.apply_fill(Direction.SELL, 110.0)
    stats = ledger.stats()
    assert stats["profitFactor"] is None
    assert stats["winRate"] == 100.0
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    ledger.apply_fill(Direction.SELL, 95.0)
    stats = ledger.stats()
    assert stats["totalTrades"] == 2
    # second entry commits 1010 for 10.1 units, exits at 95 for -50.5
    assert stats["profitFactor"] == pytest.approx(100.0 / 50.5)


def test_snapshot_restores_into_fresh_ledger():
    ledger, _ = _ledger()
    ledger.apply_fill(Direction.BUY, 100.0, symbol="BTC/USDT")
    restored = AccountLedger(1)
    restored.load_dict(ledger.to_dict())
    assert restored.balance == ledger.balance
    assert restored.position == ledger.position
    assert restored.equity_curve == ledger.equity_curve
