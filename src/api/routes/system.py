"""System & metadata routes (root, health, status, config)."""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from src.config import settings
from src.api.dependencies.services import BotRegistry, get_bot_registry
from src.api.state.startup import get_startup_events

router = APIRouter()

@router.get("/")
async def root(registry: BotRegistry = Depends(get_bot_registry)):
    return {
        "name": "Trading Bot Engine",
        "version": "1.0.0",
        "description": "EMA/RSI trading bots with paper and live execution",
        "bots": len(registry.bots()),
        "live_trading": registry.live_executor is not None,
        "auto_start": settings.AUTO_START_BOTS,
        "endpoints": {
            "health": "/health",
            "status": "/status",
            "metrics": "/metrics",
            "startup_events": "/startup/log",
            "docs": "/docs",
            "bots": "/api/bot",
            "market": "/api/market/{symbol}/ticker",
        },
    }

@router.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

@router.get("/status")
async def status(registry: BotRegistry = Depends(get_bot_registry)):
    return registry.all_status()

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

@router.get("/startup/log")
async def startup_log(limit: int = 100):
    return {"events": get_startup_events(limit)}

@router.get("/config")
async def get_config():
    return {
        "market_exchange": settings.MARKET_EXCHANGE_ID,
        "timeframe": settings.OHLCV_TIMEFRAME,
        "tick_interval_sec": settings.TICK_INTERVAL_SEC,
        "ema_fast": settings.EMA_FAST,
        "ema_slow": settings.EMA_SLOW,
        "rsi_period": settings.RSI_PERIOD,
        "rsi_threshold": settings.RSI_THRESHOLD,
        "rsi_overbought": settings.RSI_OVERBOUGHT,
        "paper_fee_rate": settings.PAPER_FEE_RATE,
        "paper_slippage_rate": settings.PAPER_SLIPPAGE_RATE,
        "max_drawdown_pct": settings.MAX_DRAWDOWN_PCT,
        "app_port": settings.APP_PORT,
    }

__all__ = ["router"]
