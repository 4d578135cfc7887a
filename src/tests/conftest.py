import pytest

from src.models.bot_models import BotConfig
from src.tests.fakes import BUY_CLOSES, TEST_PARAMS, FakeMarketData


@pytest.fixture
def provider():
    p = FakeMarketData()
    p.set_series("BTC/USDT", BUY_CLOSES)
    return p


@pytest.fixture
def config():
    return BotConfig.create("BTC/USDT", ["BTC/USDT", "ETH/USDT"], params=TEST_PARAMS)
