"""BingX public REST API async client.

Fetches klines and tickers for the backtest runner and the live signal
engine.  Read-only: no order routing.
"""

import asyncio
import logging
from typing import Optional

import httpx

from divtrader.broker.models import Ticker, normalize_klines
from divtrader.strategy.models import Candle

logger = logging.getLogger("divtrader.bingx")

DEFAULT_BASE_URL = "https://open-api.bingx.com"
KLINES_PATH = "/openApi/swap/v3/quote/klines"
SPOT_KLINES_PATH = "/openApi/spot/v1/market/kline"
TICKER_PATH = "/openApi/spot/v1/ticker/24hr"
MAX_LIMIT = 1000

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {500, 502, 503, 504, 429}


class BingXClient:
    """Async client for the BingX public market-data endpoints.

    Args:
        base_url: API root.
        api_key: Optional key sent as ``X-BX-APIKEY``.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["X-BX-APIKEY"] = api_key

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (5xx) and rate-limits (429).
        Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=self._timeout,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "BingX %s %s returned %d, retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "BingX %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    async def _get_data(self, path: str, params: dict):
        resp = await self._request_with_retry(
            "get", f"{self._base_url}{path}", params=params,
        )
        body = resp.json()
        code = body.get("code", 0)
        if code != 0:
            raise ValueError(f"BingX error {code}: {body.get('msg', 'unknown')}")
        return body.get("data")

    # ── Klines ───────────────────────────────────────────────────────────

    async def fetch_klines(
        self,
        symbol: str,
        interval: str = "1h",
        limit: int = 500,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> list[Candle]:
        """Fetch one page of klines, oldest-first.

        Args:
            symbol: e.g. ``"BTC-USDT"``.
            interval: e.g. ``"1m"``, ``"1h"``, ``"4h"``.
            limit: Candles to request (max 1000).
            start_time: Inclusive epoch-ms lower bound.
            end_time: Inclusive epoch-ms upper bound.

        Raises:
            httpx.HTTPError: On transport or HTTP failure after retries.
            ValueError: On an error code or an unexpected payload.
        """
        params: dict = {
            "symbol": symbol,
            "interval": interval,
            "limit": min(limit, MAX_LIMIT),
        }
        if start_time is not None:
            params["startTime"] = start_time
        if end_time is not None:
            params["endTime"] = end_time

        data = await self._get_data(KLINES_PATH, params)
        if not isinstance(data, list):
            raise ValueError("Invalid kline response format from BingX")
        candles = normalize_klines(data)
        if start_time is not None or end_time is not None:
            lo = start_time if start_time is not None else candles[0].timestamp if candles else 0
            hi = end_time if end_time is not None else float("inf")
            candles = [c for c in candles if lo <= c.timestamp <= hi]
        logger.debug("BingX returned %d %s candles for %s", len(candles), interval, symbol)
        return candles

    async def fetch_history(
        self,
        symbol: str,
        interval: str,
        start_time: int,
        end_time: int,
        page_size: int = MAX_LIMIT,
        max_pages: int = 100,
    ) -> list[Candle]:
        """Fetch every kline in ``[start_time, end_time]`` page by page."""
        candles: list[Candle] = []
        cursor = start_time
        for _ in range(max_pages):
            page = await self.fetch_klines(
                symbol, interval, page_size, start_time=cursor, end_time=end_time,
            )
            fresh = [c for c in page if not candles or c.timestamp > candles[-1].timestamp]
            if not fresh:
                break
            candles.extend(fresh)
            cursor = fresh[-1].timestamp + 1
            if len(page) < page_size or cursor > end_time:
                break
        logger.info(
            "Fetched %d %s candles for %s from BingX", len(candles), interval, symbol,
        )
        return candles

    # ── Ticker ───────────────────────────────────────────────────────────

    async def get_ticker(self, symbol: str) -> Ticker:
        data = await self._get_data(TICKER_PATH, {"symbol": symbol})
        if isinstance(data, list):
            if not data:
                raise ValueError(f"No ticker data for {symbol}")
            data = data[0]
        return Ticker(
            symbol=data.get("symbol", symbol),
            price=float(data["lastPrice"]),
            volume=float(data.get("volume", 0.0)),
            change_pct=float(data.get("priceChangePercent", 0.0)),
        )
