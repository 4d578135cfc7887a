import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from src.engine.errors import ExecutionError
from src.execution.ledger import AccountLedger
from src.models.bot_models import BotConfig, Direction, FillResult, Signal
from src.providers.exchange import Exchange, ExchangeNetworkError, ExchangeRejectedError
from src.services.metrics import order_latency, orders_counter
from src.services.risk_manager import RiskManager
from src.utils.instruments import quote_asset

logger = logging.getLogger("executor")


@dataclass
class ExecutionContext:
    """Everything an executor may touch for one bot during one tick."""
    bot_id: int
    config: BotConfig
    ledger: AccountLedger
    risk: RiskManager


class ExecutionAdapter:
    """Apply a signal to an account. Returns the fill, or None for a no-op."""

    async def execute(self, ctx: ExecutionContext, signal: Signal, price: float) -> Optional[FillResult]:
        raise NotImplementedError

    def entry_size(self, ctx: ExecutionContext, price: float) -> float:
        return ctx.risk.calc_size(ctx.ledger.balance, price, ctx.config.position_fraction)


class PaperExecutor(ExecutionAdapter):
    """Fills immediately against the ledger at the supplied ticker price."""

    async def execute(self, ctx: ExecutionContext, signal: Signal, price: float) -> Optional[FillResult]:
        if signal.direction is Direction.HOLD:
            return None
        size = self.entry_size(ctx, price) if signal.direction is Direction.BUY else None
        logger.debug("Paper %s %s price=%s size=%s", signal.direction.value, signal.symbol, price, size)
        return ctx.ledger.apply_fill(signal.direction, price, size=size, symbol=signal.symbol)


class LiveExecutor(ExecutionAdapter):
    """Routes orders to a real venue.

    Network failures are retried once; a rejection, an unfilled order or a
    second failure raises ExecutionError and the caller must halt the bot.
    """

    def __init__(self, exchange: Exchange):
        self.exchange = exchange

    async def execute(self, ctx: ExecutionContext, signal: Signal, price: float) -> Optional[FillResult]:
        direction = signal.direction
        ledger = ctx.ledger
        if direction is Direction.HOLD:
            return None
        # let the ledger record buy-while-holding / sell-while-flat as its usual no-op
        if direction is Direction.BUY and not ledger.is_flat:
            return ledger.apply_fill(direction, price, symbol=signal.symbol)
        if direction is Direction.SELL and ledger.is_flat:
            return ledger.apply_fill(direction, price, symbol=signal.symbol)

        if direction is Direction.BUY:
            amount = self.entry_size(ctx, price)
        else:
            amount = ledger.position.size
        if amount <= 0:
            raise ExecutionError(f"Computed order amount {amount} for {signal.symbol} is not positive")

        order = await self._place_with_retry(signal.symbol, direction.value, amount)
        filled = float(order.get("filled") or 0.0)
        if filled <= 0:
            raise ExecutionError(
                f"{direction.value} {signal.symbol} not filled (status={order.get('status')}, id={order.get('id')})"
            )
        avg_price = float(order.get("average") or price)
        fill = ledger.apply_fill(direction, avg_price, size=filled, symbol=signal.symbol,
                                 fee=float(order.get("fee") or 0.0), order_id=order.get("id"))
        if fill is not None and filled < amount:
            logger.warning("Partial fill %s %s: %s of %s", direction.value, signal.symbol, filled, amount)
            fill = replace(fill, partial=True)
        return fill

    async def _place_with_retry(self, symbol: str, side: str, amount: float) -> Dict[str, Any]:
        for attempt in (1, 2):
            try:
                with order_latency.time():
                    order = await self.exchange.place_order(symbol, side, amount)
                orders_counter.labels(side=side, outcome="placed").inc()
                return order
            except ExchangeRejectedError as e:
                orders_counter.labels(side=side, outcome="rejected").inc()
                raise ExecutionError(f"Order rejected by venue: {e}") from e
            except ExchangeNetworkError as e:
                orders_counter.labels(side=side, outcome="network_error").inc()
                if attempt == 2:
                    raise ExecutionError(f"Venue unreachable after retry: {e}") from e
                logger.warning("Order %s %s failed (%s), retrying once", side, symbol, e)
        raise ExecutionError("unreachable")  # pragma: no cover

    async def fetch_balance(self, config: BotConfig) -> float:
        try:
            return await self.exchange.fetch_free_balance(quote_asset(config.symbol))
        except (ExchangeNetworkError, ExchangeRejectedError) as e:
            raise ExecutionError(f"Balance sync failed: {e}") from e
