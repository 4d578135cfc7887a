import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from src.config import settings
from src.engine.errors import (ConfigConflictError, DataUnavailableError, ExecutionError,
                               InsufficientDataError, InvalidTransition, LiveModeResetForbidden,
                               LiveTradingUnavailable, PositionOpenError)
from src.engine.strategy import EmaRsiStrategy
from src.execution.execution import ExecutionAdapter, ExecutionContext, LiveExecutor, PaperExecutor
from src.execution.ledger import AccountLedger
from src.models.bot_models import BotConfig, BotState, Direction, FillResult, Signal
from src.services.event_log import EventLog
from src.services.market_feed import MarketDataFeed
from src.services.metrics import signals_counter, tick_errors_counter
from src.services.risk_manager import RiskManager, fixed_fraction_sizer

logger = logging.getLogger("bot_controller")

ChangeHook = Callable[["BotController"], Awaitable[None]]


class BotController:
    """
    Lifecycle and tick loop for a single bot.

    Commands (start/stop/kill/update_config/reset_paper) and the mutation half
    of a tick serialize on one asyncio.Lock. Market data is fetched outside
    the lock so a slow provider never blocks a kill. Every transition out of
    RUNNING bumps the run generation; a tick that started under an older
    generation discards its result instead of applying it.
    """

    def __init__(self, bot_id: int, config: BotConfig, feed: MarketDataFeed,
                 paper_executor: Optional[ExecutionAdapter] = None,
                 live_executor: Optional[ExecutionAdapter] = None,
                 ledger: Optional[AccountLedger] = None, log: Optional[EventLog] = None,
                 risk: Optional[RiskManager] = None, state: BotState = BotState.IDLE,
                 interval: float = None, fetch_timeout: float = None,
                 on_change: Optional[ChangeHook] = None):
        self.bot_id = bot_id
        self._config = config
        self.feed = feed
        self.log = log or EventLog(bot_id)
        self.ledger = ledger or AccountLedger(
            starting_capital=settings.DEFAULT_STARTING_CAPITAL,
            live_mode=config.is_live_mode,
            sizer=fixed_fraction_sizer(config.position_fraction),
            fee_rate=settings.PAPER_FEE_RATE,
            slippage_rate=settings.PAPER_SLIPPAGE_RATE,
            log=self.log,
        )
        self.risk = risk or RiskManager(max_drawdown=settings.MAX_DRAWDOWN_PCT)
        self.risk.reset(self.ledger.equity())
        self.executors: Dict[bool, Optional[ExecutionAdapter]] = {
            False: paper_executor or PaperExecutor(),
            True: live_executor,
        }
        self.state = BotState(state)
        self.interval = settings.TICK_INTERVAL_SEC if interval is None else interval
        self.fetch_timeout = settings.FETCH_TIMEOUT_SEC if fetch_timeout is None else fetch_timeout
        self.on_change = on_change
        self.last_signal: Optional[Signal] = None
        self.last_tick_at: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._run_id = 0

    @property
    def config(self) -> BotConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self.state is BotState.RUNNING

    # ------------------------------------------------------------------ commands

    async def start(self, schedule: bool = True) -> bool:
        """Enter RUNNING. With schedule=False no loop task is spawned (callers drive tick())."""
        async with self._lock:
            if self.state is BotState.RUNNING:
                return False
            self.state = BotState.RUNNING
            self._run_id += 1
            self.risk.reset(self.ledger.equity())
            mode = "live" if self._config.is_live_mode else "paper"
            self.log.success(f"Bot started on {self._config.symbol} ({mode} mode)")
            if schedule:
                self._task = asyncio.create_task(self._run_loop(self._run_id), name=f"bot-{self.bot_id}")
        await self._notify()
        return True

    async def stop(self) -> bool:
        async with self._lock:
            if self.state is not BotState.RUNNING:
                return False
            self._halt(BotState.STOPPED)
            self.log.info("Bot stopped")
        await self._notify()
        return True

    async def kill(self) -> bool:
        async with self._lock:
            if self.state is BotState.IDLE:
                raise InvalidTransition("Cannot kill a bot that was never started")
            if self.state is BotState.KILLED:
                return False
            self._halt(BotState.KILLED)
            self.log.error("Kill switch engaged, bot halted")
        await self._notify()
        return True

    async def update_config(self, expected_version: Optional[int] = None, **changes) -> BotConfig:
        """Swap in a new config snapshot; it takes effect from the next tick."""
        async with self._lock:
            current = self._config
            if expected_version is not None and expected_version != current.version:
                raise ConfigConflictError(
                    f"Config version is {current.version}, update expected {expected_version}"
                )
            if not changes:
                return current
            updated = current.evolve(**changes)
            switching = updated.is_live_mode != current.is_live_mode
            if switching:
                if not self.ledger.is_flat:
                    raise PositionOpenError(
                        f"Close the open {self.ledger.position.symbol} position before switching trading mode"
                    )
                if updated.is_live_mode and self.executors[True] is None:
                    raise LiveTradingUnavailable("Live trading requires exchange credentials")
            self._config = updated
            self.ledger.live_mode = updated.is_live_mode
            self.log.info(f"Config updated to v{updated.version}: {_describe(changes)}")
            if switching:
                if updated.is_live_mode:
                    self.log.warn("Switched to LIVE trading, orders will reach the exchange")
                else:
                    self.log.info("Switched to paper trading")
        if switching and updated.is_live_mode:
            await self._sync_live_balance()
        await self._notify()
        return updated

    async def reset_paper(self, starting_capital: float):
        async with self._lock:
            try:
                self.ledger.reset(starting_capital)
            except LiveModeResetForbidden as e:
                self.log.warn(str(e))
                raise
            self.risk.reset(self.ledger.equity())
        await self._notify()

    # ---------------------------------------------------------------- tick loop

    async def _run_loop(self, run_id: int):
        logger.info("Bot %s loop started (interval=%ss)", self.bot_id, self.interval)
        try:
            while self.state is BotState.RUNNING and self._run_id == run_id:
                await self.tick()
                if self.state is not BotState.RUNNING or self._run_id != run_id:
                    break
                await asyncio.sleep(self.interval)
        finally:
            logger.info("Bot %s loop exited (state=%s)", self.bot_id, self.state.value)

    async def tick(self) -> Optional[FillResult]:
        """One fetch, decide, execute cycle. Never raises except on cancellation."""
        if self.state is not BotState.RUNNING:
            return None
        run_id = self._run_id
        config = self._config
        position = self.ledger.position
        # an open position is worked on its own symbol until flat
        symbol = position.symbol if position is not None and position.symbol else config.symbol
        self.last_tick_at = datetime.now(timezone.utc)
        try:
            try:
                bars, ticker = await asyncio.wait_for(self._fetch(symbol), timeout=self.fetch_timeout)
            except asyncio.TimeoutError:
                self.log.warn(f"Tick abandoned: market data for {symbol} took over {self.fetch_timeout:g}s")
                return None
            signal = EmaRsiStrategy(config.params).generate(symbol, bars.data)
            price = ticker.data.price

            async with self._lock:
                if self.state is not BotState.RUNNING or self._run_id != run_id:
                    logger.info("Bot %s discarding tick from a finished run", self.bot_id)
                    return None
                if self._config.is_live_mode != config.is_live_mode:
                    self.log.info("Trading mode changed during tick, signal discarded")
                    return None
                signal = self._protective_exit(config, price) or signal
                self.last_signal = signal
                signals_counter.labels(direction=signal.direction.value).inc()
                fill = await self._execute(config, signal, price)
                self._report(signal, price, fill, stale=bars.stale or ticker.stale)
                if fill is not None:
                    self._check_drawdown(price)
        except DataUnavailableError as e:
            tick_errors_counter.labels(kind="data_unavailable").inc()
            self.log.warn(f"Holding, market data unavailable: {e}")
            return None
        except InsufficientDataError as e:
            self.log.info(f"Holding, not enough history: {e}")
            return None
        except ExecutionError as e:
            tick_errors_counter.labels(kind="execution").inc()
            # logged before re-taking the lock; a kill waiting on it cancels this task
            self.log.error(f"Order failed, stopping bot: {e}")
            async with self._lock:
                if self.state is BotState.RUNNING and self._run_id == run_id:
                    self._halt(BotState.STOPPED)
            await self._notify()
            return None
        except Exception as e:
            tick_errors_counter.labels(kind="unexpected").inc()
            logger.exception("Bot %s tick failed", self.bot_id)
            self.log.error(f"Tick failed: {e}")
            return None
        if fill is not None or self.state is not BotState.RUNNING:
            await self._notify()
        return fill

    async def _fetch(self, symbol: str):
        bars = await self.feed.get_ohlcv(symbol)
        ticker = await self.feed.get_ticker(symbol)
        return bars, ticker

    async def _execute(self, config: BotConfig, signal: Signal, price: float) -> Optional[FillResult]:
        executor = self.executors[config.is_live_mode]
        if executor is None:
            raise ExecutionError("Live mode is enabled but no exchange is configured")
        ctx = ExecutionContext(bot_id=self.bot_id, config=config, ledger=self.ledger, risk=self.risk)
        return await executor.execute(ctx, signal, price)

    def _report(self, signal: Signal, price: float, fill: Optional[FillResult], stale: bool):
        suffix = " (stale data)" if stale else ""
        if fill is not None:
            msg = f"{fill.direction.value.upper()} {fill.size:.6f} {fill.symbol} @ {fill.price:,.2f}"
            if fill.pnl is not None:
                msg += f", P&L {fill.pnl:+,.2f}"
            if fill.partial:
                msg += ", partial fill"
            if "exit" in signal.basis:
                msg += f", {signal.reason}"
            self.log.success(msg + suffix)
        elif signal.direction is Direction.HOLD:
            self.log.info(f"HOLD {signal.symbol} @ {price:,.2f}: {signal.reason}{suffix}")

    def _protective_exit(self, config: BotConfig, price: float) -> Optional[Signal]:
        """Forced sell when the open position crossed its stop or target. Caller holds the lock."""
        position = self.ledger.position
        if position is None:
            return None
        self.ledger.mark(price)
        reason = self.risk.check_exit(position, price, config.profile, trailing=config.trailing_stop)
        if reason is None:
            return None
        return Signal(
            symbol=position.symbol or config.symbol,
            direction=Direction.SELL,
            timestamp=datetime.now(timezone.utc),
            basis={"price": price, "entryPrice": position.entry_price,
                   "highWaterMark": position.high_water, "exit": reason},
            reason=f"{reason.replace('_', ' ')} hit at {price:,.2f}",
        )

    def _check_drawdown(self, price: float):
        self.risk.register_equity(self.ledger.equity(price))
        if self.risk.check_drawdown_stop():
            self._halt(BotState.KILLED)
            self.log.error(
                f"Drawdown {self.risk.drawdown:.1%} breached the {self.risk.max_drawdown:.0%} limit, bot killed"
            )

    def _halt(self, state: BotState):
        """Leave RUNNING. Caller holds the lock."""
        self.state = state
        self._run_id += 1
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _sync_live_balance(self):
        executor = self.executors[True]
        if not isinstance(executor, LiveExecutor):
            return
        try:
            balance = await executor.fetch_balance(self._config)
        except ExecutionError as e:
            self.log.warn(f"Could not sync live balance: {e}")
            return
        async with self._lock:
            self.ledger.reconcile(balance)
            self.risk.reset(self.ledger.equity())
        self.log.info(f"Live balance synced: {balance:,.2f}")

    async def _notify(self):
        if self.on_change is not None:
            await self.on_change(self)

    async def shutdown(self):
        """Cancel the loop without changing state, so a restart can resume it."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------- views

    def status(self) -> Dict[str, Any]:
        data = {"id": self.bot_id}
        data.update(self._config.to_dict())
        data.update({
            "state": self.state.value,
            "isRunning": self.is_running,
            "balance": self.ledger.balance,
            "equity": self.ledger.equity(),
            "position": self.ledger.position.to_dict() if self.ledger.position else None,
            "lastSignal": self.last_signal.to_dict() if self.last_signal else None,
            "lastTickAt": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "drawdown": self.risk.drawdown,
            "riskLimits": self._config.profile.to_dict(),
        })
        return data


def _describe(changes: Dict[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(changes.items()))


__all__ = ["BotController"]
