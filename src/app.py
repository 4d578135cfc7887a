import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from src.config import settings

from src.persistence.db import Database
from src.providers.exchange import CcxtExchange
from src.providers.market_data import CcxtMarketData
from src.execution.execution import LiveExecutor
from src.services.market_feed import MarketDataFeed
from src.api.router import api_router
from src.api.dependencies.services import BotRegistry, get_bot_registry
from src.utils.logging_config import configure_logging
from src.api.state.startup import record_startup_event

logger = logging.getLogger("app")


def _bootstrap_services(registry: BotRegistry):
    """Wire the ccxt feed, optional store and optional live exchange into the registry."""
    try:
        provider = CcxtMarketData(
            exchange_id=settings.MARKET_EXCHANGE_ID,
            timeframe=settings.OHLCV_TIMEFRAME,
            limit=settings.OHLCV_LIMIT,
            timeout_ms=settings.EXCHANGE_TIMEOUT_MS,
        )
    except Exception as e:
        logger.error(f"Failed to create market data provider: {e}")
        record_startup_event("bootstrap_error", "market_data_failed", error=str(e))
        return
    feed = MarketDataFeed(
        provider,
        ticker_ttl=settings.TICKER_TTL_SEC,
        ohlcv_ttl=settings.OHLCV_TTL_SEC,
        rsi_ttl=settings.RSI_TTL_SEC,
        rsi_period=settings.RSI_PERIOD,
    )

    db = None
    if settings.PERSISTENCE_ENABLE:
        db = Database(settings.DATABASE_URL)

    live_executor = None
    if settings.live_trading_configured:
        try:
            live_executor = LiveExecutor(CcxtExchange(
                settings.EXCHANGE_ID,
                settings.EXCHANGE_API_KEY,
                settings.EXCHANGE_API_SECRET,
                password=settings.EXCHANGE_PASSWORD,
                timeout_ms=settings.EXCHANGE_TIMEOUT_MS,
            ))
        except Exception as e:
            logger.error(f"Failed to create live exchange client: {e}")
            record_startup_event("bootstrap_error", "live_exchange_failed", error=str(e))
    else:
        logger.info("No exchange credentials configured, live trading disabled")

    registry.configure(feed, db=db, live_executor=live_executor)
    record_startup_event("bootstrap", "services_ready", persistence=db is not None,
                         live_trading=live_executor is not None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    configure_logging()
    logger.info("Starting trading bot engine...")
    # tests swap the registry through dependency_overrides
    registry: BotRegistry = app.dependency_overrides.get(get_bot_registry, get_bot_registry)()
    if not registry.configured:
        _bootstrap_services(registry)

    if registry.db is not None:
        await registry.db.connect()
    try:
        restored = await registry.restore(auto_start=settings.AUTO_START_BOTS)
        if restored:
            record_startup_event("restore", "bots_restored", count=restored,
                                 auto_start=settings.AUTO_START_BOTS)
    except Exception as e:  # pragma: no cover
        logger.error(f"Bot restore failed: {e}")
        record_startup_event("restore_error", "bots_not_restored", error=str(e))

    yield

    logger.info("Shutting down trading bots...")
    await registry.shutdown()


app = FastAPI(
    title="Trading Bot Engine",
    description="EMA/RSI trading bots with paper and live execution",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(api_router)
