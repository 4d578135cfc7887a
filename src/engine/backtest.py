"""
Historical replay of the EMA/RSI strategy over a bar series.

Signals come from one causal indicator pass (signal_series) and are filled
at each bar's close through a fresh paper AccountLedger, so fees, slippage
and sizing match the live paper path. The risk profile's stop loss and take
profit (and the trailing stop when enabled) are checked on each close before
that bar's signal. Metrics are derived with pandas.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from src.engine.errors import InsufficientDataError
from src.engine.strategy import signal_series
from src.execution.ledger import AccountLedger
from src.models.bot_models import RISK_PROFILES, Direction, StrategyParams
from src.models.candle_models import OHLCVBar
from src.services.risk_manager import RiskManager, fixed_fraction_sizer

logger = logging.getLogger("backtest")

# hourly bars, crypto trades around the clock
DEFAULT_PERIODS_PER_YEAR = 365 * 24


def run_backtest(bars: Sequence[OHLCVBar], params: StrategyParams, risk_profile: str = "safe",
                 trailing_stop: bool = False, starting_capital: float = 10000.0,
                 fee_rate: float = 0.0, slippage_rate: float = 0.0,
                 periods_per_year: int = DEFAULT_PERIODS_PER_YEAR,
                 max_curve_points: Optional[int] = 100) -> Dict[str, Any]:
    if not bars:
        raise InsufficientDataError("Backtest needs at least one bar")
    if risk_profile not in RISK_PROFILES:
        raise ValueError(f"Unknown risk profile '{risk_profile}'")

    profile = RISK_PROFILES[risk_profile]
    risk = RiskManager()
    now = {"t": _bar_dt(bars[0])}
    ledger = AccountLedger(
        starting_capital=starting_capital,
        sizer=fixed_fraction_sizer(profile.size),
        fee_rate=fee_rate,
        slippage_rate=slippage_rate,
        clock=lambda: now["t"],
    )
    directions = signal_series(bars, params)
    curve: List[Dict[str, float]] = []
    trade_log: List[Dict[str, Any]] = []

    for bar, direction in zip(bars, directions):
        now["t"] = _bar_dt(bar)
        # protective exits are checked on the close before the bar's signal
        ledger.mark(bar.close)
        reason = risk.check_exit(ledger.position, bar.close, profile, trailing=trailing_stop)
        if reason is not None:
            direction = Direction.SELL
        else:
            reason = "signal"
        fill = ledger.apply_fill(direction, bar.close) if direction is not Direction.HOLD else None
        if fill is not None:
            trade_log.append({
                "time": bar.time,
                "side": fill.direction.value.upper(),
                "price": fill.price,
                "size": fill.size,
                "pnl": fill.pnl or 0.0,
                "reason": reason,
            })
        curve.append({"time": bar.time, "value": ledger.equity(bar.close)})

    # flatten at the last close so net profit is realised
    if not ledger.is_flat:
        last = bars[-1]
        fill = ledger.apply_fill(Direction.SELL, last.close)
        trade_log.append({"time": last.time, "side": "SELL", "price": fill.price, "size": fill.size,
                          "pnl": fill.pnl or 0.0, "reason": "end"})
        curve[-1] = {"time": last.time, "value": ledger.equity()}

    metrics = compute_metrics(curve, [t.pnl for t in ledger.trades], periods_per_year)
    result = {
        "bars": len(bars),
        "startingCapital": starting_capital,
        "finalEquity": ledger.equity(),
        "netProfit": ledger.equity() - starting_capital,
        "riskProfile": risk_profile,
        "stopLoss": profile.stop_loss,
        "takeProfit": profile.take_profit,
        "trailingStop": trailing_stop,
        "emaFast": params.ema_fast,
        "emaSlow": params.ema_slow,
        "rsiPeriod": params.rsi_period,
        "rsiThreshold": params.rsi_threshold,
        "rsiOverbought": params.rsi_overbought,
        "equityCurve": _sample(curve, max_curve_points),
        "tradeLog": trade_log,
    }
    result.update(metrics)
    logger.info("Backtest over %d bars: %d trades, net %.2f", len(bars), metrics["totalTrades"],
                result["netProfit"])
    return result


def compute_metrics(curve: List[Dict[str, float]], trade_pnls: List[float],
                    periods_per_year: int = DEFAULT_PERIODS_PER_YEAR) -> Dict[str, Any]:
    equity = pd.Series([p["value"] for p in curve], dtype="float64")
    if equity.empty:
        max_dd = 0.0
        sharpe = 0.0
    else:
        drawdown = (equity.cummax() - equity) / equity.cummax()
        max_dd = float(drawdown.max()) * 100
        returns = equity.pct_change().dropna()
        std = float(returns.std(ddof=0)) if len(returns) else 0.0
        sharpe = float(returns.mean() / std * math.sqrt(periods_per_year)) if std > 0 else 0.0

    pnls = pd.Series(trade_pnls, dtype="float64")
    wins = pnls[pnls > 0]
    losses = pnls[pnls <= 0]
    gross_profit = float(wins.sum())
    gross_loss = float(-losses.sum())
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = None if gross_profit > 0 else 0.0
    total = len(pnls)
    return {
        "totalTrades": total,
        "winRate": (len(wins) / total * 100) if total else 0.0,
        "maxDrawdown": max_dd,
        "sharpeRatio": sharpe,
        "profitFactor": profit_factor,
    }


def _bar_dt(bar: OHLCVBar) -> datetime:
    return datetime.fromtimestamp(bar.time, tz=timezone.utc)


def _sample(curve: List[Dict[str, float]], max_points: Optional[int]) -> List[Dict[str, float]]:
    if not max_points or len(curve) <= max_points:
        return list(curve)
    step = math.ceil(len(curve) / max_points)
    sampled = curve[::step]
    if sampled[-1] is not curve[-1]:
        sampled.append(curve[-1])
    return sampled


__all__ = ["run_backtest", "compute_metrics"]
