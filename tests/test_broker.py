"""Tests for divtrader.broker — BingX client with mocked HTTP responses."""

import pytest
import httpx

from divtrader.broker.bingx_client import KLINES_PATH, BingXClient
from divtrader.broker.models import Ticker, normalize_kline, normalize_klines
from divtrader.strategy.models import Candle

START = 1_700_000_000_000
HOUR = 3_600_000


# ── Mock BingX responses ─────────────────────────────────────────────────


def _kline(ts: int, close: float = 100.0) -> dict:
    return {
        "open": str(close - 1),
        "close": str(close),
        "high": str(close + 2),
        "low": str(close - 2),
        "volume": "1234.5",
        "time": ts,
    }


MOCK_KLINES_RESPONSE = {
    "code": 0,
    "msg": "",
    # Newest first, as the swap endpoint returns them.
    "data": [_kline(START + HOUR, 101.0), _kline(START, 100.0)],
}

MOCK_TICKER_RESPONSE = {
    "code": 0,
    "data": [{"symbol": "BTC-USDT", "lastPrice": "42000.5", "volume": "812.3",
              "priceChangePercent": "1.25"}],
}


def _response(url, body, status=200):
    return httpx.Response(status, json=body, request=httpx.Request("GET", url))


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []

    async def _sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("divtrader.broker.bingx_client.asyncio.sleep", _sleep)
    return delays


# ── Normalisation ────────────────────────────────────────────────────────


class TestNormalizeKline:

    def test_object_form(self):
        candle = normalize_kline(_kline(START))
        assert candle == Candle(START, 99.0, 102.0, 98.0, 100.0, 1234.5)

    def test_positional_form(self):
        candle = normalize_kline([START, "1", "3", "0.5", "2", "10", START + HOUR])
        assert candle.close == pytest.approx(2.0)
        assert candle.timestamp == START

    def test_alternate_time_key(self):
        raw = _kline(START)
        raw["openTime"] = raw.pop("time")
        assert normalize_kline(raw).timestamp == START

    def test_malformed(self):
        with pytest.raises(ValueError):
            normalize_kline({"open": "1"})
        with pytest.raises(ValueError):
            normalize_kline([1, 2, 3])
        with pytest.raises(ValueError, match="not numeric"):
            normalize_kline({**_kline(START), "close": "abc"})
        with pytest.raises(ValueError):
            normalize_kline("garbage")

    def test_sorted_and_deduplicated(self):
        rows = [_kline(START + HOUR, 2.0), _kline(START, 1.0), _kline(START + HOUR, 3.0)]
        candles = normalize_klines(rows)
        assert [c.timestamp for c in candles] == [START, START + HOUR]
        assert candles[-1].close == 3.0


# ── Client ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_klines(monkeypatch):
    """Klines parsed, sorted oldest-first, and request params forwarded."""
    client = BingXClient()
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured.update(url=url, params=params, headers=headers)
        return _response(url, MOCK_KLINES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_klines("BTC-USDT", "1h", limit=2)
    assert [c.timestamp for c in candles] == [START, START + HOUR]
    assert candles[0].open == pytest.approx(99.0)
    assert captured["url"].endswith(KLINES_PATH)
    assert captured["params"] == {"symbol": "BTC-USDT", "interval": "1h", "limit": 2}


@pytest.mark.asyncio
async def test_limit_capped(monkeypatch):
    client = BingXClient()
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured.update(params)
        return _response(url, {"code": 0, "data": []})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.fetch_klines("BTC-USDT", limit=5000, start_time=START) == []
    assert captured["limit"] == 1000
    assert captured["startTime"] == START


@pytest.mark.asyncio
async def test_api_key_header(monkeypatch):
    client = BingXClient(api_key="abc")
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured.update(headers)
        return _response(url, MOCK_KLINES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    await client.fetch_klines("BTC-USDT")
    assert captured["X-BX-APIKEY"] == "abc"


@pytest.mark.asyncio
async def test_error_code_raises(monkeypatch):
    client = BingXClient()

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(url, {"code": 100001, "msg": "signature mismatch"})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(ValueError, match="100001"):
        await client.fetch_klines("BTC-USDT")


@pytest.mark.asyncio
async def test_retry_then_success(monkeypatch, no_sleep):
    """A 503 is retried with exponential backoff."""
    client = BingXClient()
    calls = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        if len(calls) < 3:
            return _response(url, {"msg": "busy"}, status=503)
        return _response(url, MOCK_KLINES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_klines("BTC-USDT")
    assert len(candles) == 2
    assert len(calls) == 3
    assert no_sleep == [2.0, 4.0]


@pytest.mark.asyncio
async def test_retries_exhausted(monkeypatch, no_sleep):
    client = BingXClient()

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(url, {"msg": "slow down"}, status=429)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.fetch_klines("BTC-USDT")
    assert len(no_sleep) == 3


@pytest.mark.asyncio
async def test_transport_error_retried(monkeypatch, no_sleep):
    client = BingXClient()

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.ConnectError):
        await client.fetch_klines("BTC-USDT")
    assert len(no_sleep) == 3


@pytest.mark.asyncio
async def test_client_error_not_retried(monkeypatch, no_sleep):
    client = BingXClient()

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(url, {"msg": "bad request"}, status=400)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.fetch_klines("BTC-USDT")
    assert no_sleep == []


@pytest.mark.asyncio
async def test_fetch_history_paginates(monkeypatch):
    """250 hourly candles arrive over three pages of 100."""
    client = BingXClient()
    end = START + 249 * HOUR
    pages = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        pages.append(params["startTime"])
        first = START + -(-(params["startTime"] - START) // HOUR) * HOUR
        rows = []
        ts = first
        while ts <= params["endTime"] and len(rows) < params["limit"]:
            rows.append(_kline(ts))
            ts += HOUR
        return _response(url, {"code": 0, "data": rows})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_history("BTC-USDT", "1h", START, end, page_size=100)
    assert len(candles) == 250
    assert len(pages) == 3
    assert candles[0].timestamp == START
    assert candles[-1].timestamp == end
    timestamps = [c.timestamp for c in candles]
    assert timestamps == sorted(set(timestamps))


@pytest.mark.asyncio
async def test_get_ticker(monkeypatch):
    client = BingXClient()

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(url, MOCK_TICKER_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    ticker = await client.get_ticker("BTC-USDT")
    assert isinstance(ticker, Ticker)
    assert ticker.price == pytest.approx(42000.5)
    assert ticker.change_pct == pytest.approx(1.25)
