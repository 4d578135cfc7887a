import pytest
from fastapi.testclient import TestClient

from src.api.dependencies.services import BotRegistry, get_bot_registry
from src.app import app
from src.execution.execution import LiveExecutor
from src.services.market_feed import MarketDataFeed
from src.tests.fakes import BUY_CLOSES, FakeExchange, FakeMarketData

# The registry is swapped in through dependency_overrides so no ccxt client is built.


@pytest.fixture
def registry():
    provider = FakeMarketData()
    provider.set_series("BTC/USDT", BUY_CLOSES)
    reg = BotRegistry()
    reg.configure(MarketDataFeed(provider), interval=3600.0)
    reg.provider = provider
    return reg


@pytest.fixture
def client(registry):
    app.dependency_overrides[get_bot_registry] = lambda: registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create(client, **body):
    body.setdefault("symbol", "btc-usdt")
    body.setdefault("emaFast", 2)
    body.setdefault("emaSlow", 4)
    r = client.post("/api/bot", json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_system_routes(client):
    assert client.get("/health").json()["status"] == "healthy"
    root = client.get("/").json()
    assert root["name"] == "Trading Bot Engine"
    assert "auto_start" in root
    assert "ema_fast" in client.get("/config").json()
    assert isinstance(client.get("/startup/log").json()["events"], list)


def test_create_and_get_bot(client):
    bot = _create(client, watchlist="eth/usdt,BTC/USDT")
    assert bot["symbol"] == "BTC/USDT"
    assert bot["state"] == "idle"
    assert bot["isRunning"] is False
    assert bot["version"] == 1
    assert bot["watchlist"] == ["ETH/USDT", "BTC/USDT"]
    assert client.get(f"/api/bot/{bot['id']}").json()["emaSlow"] == 4
    assert client.get("/api/bot/999").status_code == 404


def test_create_rejects_bad_input(client):
    assert client.post("/api/bot", json={"symbol": "???"}).status_code == 422
    assert client.post("/api/bot", json={"emaFast": 30, "emaSlow": 10}).status_code == 422
    assert client.post("/api/bot", json={"riskProfile": "yolo"}).status_code == 422


def test_patch_config_and_version_conflict(client):
    bot = _create(client)
    r = client.patch(f"/api/bot/{bot['id']}", json={"rsiThreshold": 40, "expectedVersion": 1})
    assert r.status_code == 200
    assert r.json()["rsiThreshold"] == 40
    assert r.json()["version"] == 2
    r = client.patch(f"/api/bot/{bot['id']}", json={"rsiThreshold": 30, "expectedVersion": 1})
    assert r.status_code == 409


def test_live_mode_requires_exchange(client):
    bot = _create(client)
    r = client.patch(f"/api/bot/{bot['id']}", json={"isLiveMode": True})
    assert r.status_code == 409


def test_start_and_kill(client, registry):
    bot = _create(client)
    assert client.post(f"/api/bot/{bot['id']}/kill").status_code == 409
    r = client.patch(f"/api/bot/{bot['id']}", json={"isRunning": True})
    assert r.json()["state"] == "running"
    r = client.post(f"/api/bot/{bot['id']}/kill")
    assert r.status_code == 200
    assert r.json()["state"] == "killed"
    assert r.json()["changed"] is True
    assert client.post(f"/api/bot/{bot['id']}/kill").json()["changed"] is False


def test_paper_reset_and_stats(client):
    bot = _create(client)
    r = client.post(f"/api/bot/{bot['id']}/paper/reset", json={"startingCapital": 5000})
    assert r.status_code == 200
    stats = client.get(f"/api/bot/{bot['id']}/paper/stats").json()
    assert stats["startingCapital"] == 5000
    assert stats["currentBalance"] == 5000
    assert stats["totalTrades"] == 0
    equity = client.get(f"/api/bot/{bot['id']}/equity").json()["points"]
    assert [p["balance"] for p in equity] == [5000]
    assert client.post(f"/api/bot/{bot['id']}/paper/reset", json={"startingCapital": -1}).status_code == 422


def test_paper_reset_forbidden_in_live_mode(client, registry):
    registry.live_executor = LiveExecutor(FakeExchange(free_balance=900.0))
    bot = _create(client)
    r = client.patch(f"/api/bot/{bot['id']}", json={"isLiveMode": True})
    assert r.status_code == 200
    assert r.json()["balance"] == 900.0
    r = client.post(f"/api/bot/{bot['id']}/paper/reset", json={"startingCapital": 5000})
    assert r.status_code == 409
    assert client.get(f"/api/bot/{bot['id']}/paper/stats").json()["currentBalance"] == 900.0


def test_trades_after_ticks(client, registry):
    bot = _create(client)
    controller = registry.get(bot["id"])
    # drive ticks on the app's own event loop
    client.portal.call(controller.start, False)
    client.portal.call(controller.tick)
    registry.provider.set_series("BTC/USDT", [100, 101, 103, 99, 105, 110])
    client.portal.call(controller.tick)
    trades = client.get(f"/api/bot/{bot['id']}/trades").json()["trades"]
    assert len(trades) == 1
    assert trades[0]["symbol"] == "BTC/USDT"
    assert "bot_signals_total" in client.get("/metrics").text


def test_logs_filtering(client):
    bot = _create(client)
    client.patch(f"/api/bot/{bot['id']}", json={"rsiThreshold": 40})
    client.patch(f"/api/bot/{bot['id']}", json={"isLiveMode": True})
    body = client.get(f"/api/bot/{bot['id']}/logs").json()
    ids = [e["id"] for e in body["entries"]]
    assert ids == sorted(ids)
    assert body["lastId"] == ids[-1]
    newer = client.get(f"/api/bot/{bot['id']}/logs", params={"afterId": ids[0]}).json()["entries"]
    assert [e["id"] for e in newer] == ids[1:]
    limited = client.get(f"/api/bot/{bot['id']}/logs", params={"limit": 1}).json()["entries"]
    assert [e["id"] for e in limited] == ids[-1:]
    infos = client.get(f"/api/bot/{bot['id']}/logs", params={"level": "info"}).json()["entries"]
    assert all(e["level"] == "info" for e in infos)


def test_logs_polling_with_after_id_sees_every_entry(client, registry):
    bot = _create(client)
    log = registry.get(bot["id"]).log
    for i in range(25):
        log.error(f"failure {i}")
    seen = []
    after = 0
    while True:
        body = client.get(f"/api/bot/{bot['id']}/logs", params={"afterId": after, "limit": 10}).json()
        seen.extend(e["id"] for e in body["entries"])
        after = body["lastId"]
        if not body["hasMore"]:
            break
    assert seen == list(range(1, log.last_id + 1))
    assert after == log.last_id


def test_backtest_route(client):
    bot = _create(client)
    r = client.post(f"/api/bot/{bot['id']}/backtest", json={"startingCapital": 1000})
    assert r.status_code == 200
    body = r.json()
    assert body["symbol"] == "BTC/USDT"
    assert body["startingCapital"] == 1000
    assert body["totalTrades"] == 1
    assert body["stale"] is False


def test_market_routes(client):
    ticker = client.get("/api/market/BTC/USDT/ticker").json()
    assert ticker["price"] == BUY_CLOSES[-1]
    assert ticker["symbol"] == "BTC/USDT"
    assert ticker["stale"] is False
    bars = client.get("/api/market/btc-usdt/ohlcv").json()["bars"]
    assert len(bars) == len(BUY_CLOSES)
    rsi = client.get("/api/market/BTC/USDT/rsi").json()
    assert len(rsi["points"]) == len(BUY_CLOSES)
    assert rsi["points"][0]["rsi"] == 50.0


def test_market_errors(client):
    assert client.get("/api/market/ETH/USDT/ticker").status_code == 503
    assert client.get("/api/market/bad symbol/ticker").status_code == 422


def test_status_lists_bots(client):
    _create(client)
    status = client.get("/status").json()
    assert status["feed"] == "ready"
    assert len(status["bots"]) == 1
    assert status["running"] == 0


def test_trailing_stop_config_round_trip(client):
    bot = _create(client, trailingStop=True, riskProfile="balanced")
    assert bot["trailingStop"] is True
    assert bot["riskLimits"] == {"size": 0.07, "stopLoss": 0.015, "takeProfit": 0.06}
    updated = client.patch(f"/api/bot/{bot['id']}", json={"trailingStop": False}).json()
    assert updated["trailingStop"] is False
    assert updated["version"] == bot["version"] + 1
