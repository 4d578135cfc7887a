from typing import List, Sequence

from src.engine.errors import InsufficientDataError


def ema_step(price: float, prev_ema: float, period: int) -> float:
    k = 2.0 / (period + 1)
    return price * k + prev_ema * (1 - k)


def compute_ema_series(closes: Sequence[float], period: int) -> List[float]:
    """EMA series aligned 1:1 with `closes`.

    Seeded with the first close rather than an SMA of the first `period`
    values; backtests replay against this exact recurrence, so keep it.
    """
    if period < 1:
        raise ValueError(f"EMA period must be >= 1, got {period}")
    if not closes:
        raise InsufficientDataError("EMA requires at least one close")
    ema = float(closes[0])
    out = [ema]
    for price in closes[1:]:
        ema = ema_step(float(price), ema, period)
        out.append(ema)
    return out
