import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from src.engine.ema import compute_ema_series
from src.engine.rsi import compute_rsi_series
from src.models.bot_models import Direction, Signal, StrategyParams
from src.models.candle_models import OHLCVBar, closes_of

logger = logging.getLogger("strategy")


class EmaRsiStrategy:
    """
    EMA crossover with an RSI gate:
    - buy when fast EMA crosses above slow EMA on the latest bar and RSI sits
      inside (rsi_threshold, rsi_overbought]
    - sell on the opposite crossover, or whenever RSI is above rsi_overbought
    - sell beats buy when both hold; otherwise hold

    Stateless: the same bars and params always give the same decision.
    """

    def __init__(self, params: StrategyParams):
        self.params = params

    def decide(self, fast: Sequence[float], slow: Sequence[float], rsi: Sequence[float], i: int):
        """Direction and reason for bar index `i` given precomputed series."""
        if i < 1:
            return Direction.HOLD, "insufficient history for crossover"
        prev_fast, prev_slow = fast[i - 1], slow[i - 1]
        curr_fast, curr_slow = fast[i], slow[i]
        curr_rsi = rsi[i]
        p = self.params

        crossed_up = prev_fast <= prev_slow and curr_fast > curr_slow
        crossed_down = prev_fast >= prev_slow and curr_fast < curr_slow
        overbought = curr_rsi > p.rsi_overbought

        buy = crossed_up and p.rsi_threshold < curr_rsi <= p.rsi_overbought
        sell = crossed_down or overbought

        if sell:
            if crossed_down:
                return Direction.SELL, "bearish EMA crossover"
            if crossed_up:
                return Direction.SELL, f"bullish crossover overridden, RSI {curr_rsi:.2f} overbought"
            return Direction.SELL, f"RSI {curr_rsi:.2f} above {p.rsi_overbought:g}"
        if buy:
            return Direction.BUY, f"bullish EMA crossover, RSI {curr_rsi:.2f}"
        if crossed_up:
            return Direction.HOLD, f"bullish crossover rejected, RSI {curr_rsi:.2f} <= {p.rsi_threshold:g}"
        return Direction.HOLD, "no crossover"

    def series(self, bars: Sequence[OHLCVBar]):
        closes = closes_of(list(bars))
        fast = compute_ema_series(closes, self.params.ema_fast)
        slow = compute_ema_series(closes, self.params.ema_slow)
        rsi = compute_rsi_series(closes, self.params.rsi_period)
        return fast, slow, rsi

    def generate(self, symbol: str, bars: Sequence[OHLCVBar], now: Optional[datetime] = None) -> Signal:
        ts = now or datetime.now(timezone.utc)
        if not bars:
            return Signal(symbol=symbol, direction=Direction.HOLD, timestamp=ts, reason="no bars")
        fast, slow, rsi = self.series(bars)
        i = len(bars) - 1
        direction, reason = self.decide(fast, slow, rsi, i)
        basis = {
            "close": bars[i].close,
            "barTime": bars[i].time,
            "emaFast": fast[i],
            "emaSlow": slow[i],
            "rsi": rsi[i],
        }
        logger.debug("%s %s: %s basis=%s", symbol, direction.value, reason, basis)
        return Signal(symbol=symbol, direction=direction, timestamp=ts, basis=basis, reason=reason)


def generate_signal(symbol: str, bars: Sequence[OHLCVBar], params: StrategyParams,
                    now: Optional[datetime] = None) -> Signal:
    return EmaRsiStrategy(params).generate(symbol, bars, now=now)


def signal_series(bars: Sequence[OHLCVBar], params: StrategyParams) -> List[Direction]:
    """Decision for every bar index from one indicator pass.

    EMA and RSI only look backwards, so entry i equals generate_signal on
    bars[:i + 1].
    """
    if not bars:
        return []
    strategy = EmaRsiStrategy(params)
    fast, slow, rsi = strategy.series(bars)
    return [strategy.decide(fast, slow, rsi, i)[0] for i in range(len(bars))]
