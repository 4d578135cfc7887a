"""RSI calculation utilities.

Wilder-style RSI producing one value per input close so the series lines up
with the OHLCV bars it was computed from.

Conventions:
  - index 0 has no price change yet and is the neutral sentinel 50.0
  - up to `period` changes the RSI is taken from the running gain/loss sums;
    the Wilder averages are seeded from those sums once `period` changes exist
  - afterwards classic Wilder smoothing is applied
  - no losses -> 100.0; no gains and no losses -> 50.0
"""
from typing import List, Sequence

from src.engine.errors import InsufficientDataError

RSI_NEUTRAL = 50.0


def rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return RSI_NEUTRAL if avg_gain == 0 else 100.0
    value = 100.0 * avg_gain / (avg_gain + avg_loss)
    return min(100.0, max(0.0, value))


def compute_rsi_series(closes: Sequence[float], period: int = 14) -> List[float]:
    """Compute an RSI series the same length as `closes`.

    The first `period` values rest on less history than a full window; they
    are still produced rather than withheld.
    """
    if period < 1:
        raise ValueError(f"RSI period must be >= 1, got {period}")
    if not closes:
        raise InsufficientDataError("RSI requires at least one close")

    out = [RSI_NEUTRAL]
    sum_gain = 0.0
    sum_loss = 0.0
    avg_gain = 0.0
    avg_loss = 0.0
    for i in range(1, len(closes)):
        change = float(closes[i]) - float(closes[i - 1])
        gain = max(change, 0.0)
        loss = max(-change, 0.0)
        if i <= period:
            sum_gain += gain
            sum_loss += loss
            if i == period:
                avg_gain = sum_gain / period
                avg_loss = sum_loss / period
            out.append(rsi_from_averages(sum_gain, sum_loss))
        else:
            avg_gain, avg_loss, rsi = compute_rsi_wilder_stream(avg_gain, avg_loss, change, period)
            out.append(rsi)
    return out


def compute_rsi(closes: Sequence[float], period: int = 14) -> float:
    """Latest RSI value for `closes`."""
    return compute_rsi_series(closes, period)[-1]


def compute_rsi_wilder_stream(prev_avg_gain: float, prev_avg_loss: float, change: float, period: int):
    """Compute RSI using Wilder's smoothing for streaming data.

    Args:
        prev_avg_gain: Previous average gain
        prev_avg_loss: Previous average loss
        change: Current price change
        period: RSI period

    Returns:
        tuple: (new_avg_gain, new_avg_loss, rsi_value)
    """
    gain = max(change, 0.0)
    loss = max(-change, 0.0)
    avg_gain = (prev_avg_gain * (period - 1) + gain) / period
    avg_loss = (prev_avg_loss * (period - 1) + loss) / period
    return avg_gain, avg_loss, rsi_from_averages(avg_gain, avg_loss)
