from typing import Callable, Optional

from src.models.bot_models import Position, RiskProfile

Sizer = Callable[[float, float], float]


def fixed_fraction_sizer(fraction: float) -> Sizer:
    """Size an entry as `fraction` of the current balance at `price`."""
    if not 0 < fraction <= 1:
        raise ValueError(f"Position fraction must be in (0, 1], got {fraction}")

    def _size(balance: float, price: float) -> float:
        if price <= 0 or balance <= 0:
            return 0.0
        return balance * fraction / price

    return _size


class RiskManager:
    def __init__(self, max_drawdown: float = 0.25):
        self.max_drawdown = max_drawdown
        self.peak_equity = 0.0
        self.last_equity = 0.0

    def calc_size(self, balance: float, price: float, fraction: float) -> float:
        return fixed_fraction_sizer(fraction)(balance, price)

    def check_exit(self, position: Optional[Position], price: float, profile: RiskProfile,
                   trailing: bool = False) -> Optional[str]:
        """Name the protective exit `price` triggers for `position`, if any.

        The stop sits `stop_loss` below the entry, or below the high-water mark
        when trailing. The target sits `take_profit` above the entry.
        """
        if position is None or price <= 0:
            return None
        anchor = max(position.high_water, position.entry_price) if trailing else position.entry_price
        if price <= anchor * (1 - profile.stop_loss):
            return "trailing_stop" if trailing else "stop_loss"
        if price >= position.entry_price * (1 + profile.take_profit):
            return "take_profit"
        return None

    def register_equity(self, equity: float):
        self.last_equity = equity
        if equity > self.peak_equity:
            self.peak_equity = equity

    @property
    def drawdown(self) -> float:
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - self.last_equity) / self.peak_equity)

    def check_drawdown_stop(self) -> bool:
        return self.max_drawdown > 0 and self.drawdown >= self.max_drawdown

    def reset(self, equity: float):
        self.peak_equity = equity
        self.last_equity = equity
