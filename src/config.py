from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = Field("sqlite:///trading_bots.db")
    PERSISTENCE_ENABLE: bool = Field(True)

    # Market data provider (ccxt exchange id used for public market data)
    MARKET_EXCHANGE_ID: str = Field("coinbase")
    OHLCV_TIMEFRAME: str = Field("1h")
    OHLCV_LIMIT: int = Field(200)

    # Cache lifetimes match the dashboard polling cadence
    TICKER_TTL_SEC: float = Field(15.0)
    OHLCV_TTL_SEC: float = Field(60.0)
    RSI_TTL_SEC: float = Field(60.0)

    # Tick loop
    TICK_INTERVAL_SEC: float = Field(60.0)
    FETCH_TIMEOUT_SEC: float = Field(10.0)

    # Bot defaults applied at onboarding
    DEFAULT_SYMBOL: str = Field("BTC/USDT")
    DEFAULT_WATCHLIST: str = Field("BTC/USDT,ETH/USDT,SOL/USDT")
    EMA_FAST: int = Field(9)
    EMA_SLOW: int = Field(21)
    RSI_PERIOD: int = Field(14)
    RSI_THRESHOLD: float = Field(45.0)
    RSI_OVERBOUGHT: float = Field(70.0)
    DEFAULT_RISK_PROFILE: str = Field("safe")
    DEFAULT_STARTING_CAPITAL: float = Field(10000.0)

    # Paper simulation costs (fractions, 0.001 == 0.1%)
    PAPER_FEE_RATE: float = Field(0.001)
    PAPER_SLIPPAGE_RATE: float = Field(0.0005)

    # Kill switch: drawdown from peak equity that halts a bot
    MAX_DRAWDOWN_PCT: float = Field(0.25)

    # Live exchange credentials; live mode stays unavailable while empty
    EXCHANGE_ID: str = Field("coinbase")
    EXCHANGE_API_KEY: str = Field("")
    EXCHANGE_API_SECRET: str = Field("")
    EXCHANGE_PASSWORD: str = Field("")
    EXCHANGE_TIMEOUT_MS: int = Field(15000)

    # Application
    APP_PORT: int = Field(8000)
    LOG_LEVEL: str = Field("INFO")
    AUTO_START_BOTS: bool = Field(False)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def default_watchlist(self) -> List[str]:
        return [s.strip() for s in self.DEFAULT_WATCHLIST.split(",") if s.strip()]

    @property
    def live_trading_configured(self) -> bool:
        return bool(self.EXCHANGE_API_KEY and self.EXCHANGE_API_SECRET)

settings = Settings()
