"""BacktestRunner — fetch candles, simulate, persist.

Market data comes from the BingX kline client.  When the exchange is
unreachable or returns too little history, the run falls back to the
seeded synthetic generator and the result is tagged ``synthetic=True``
so it is never mistaken for a real-data run.
"""

import asyncio
import dataclasses
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from divtrader.backtest.engine import simulate
from divtrader.backtest.models import BacktestResult
from divtrader.backtest.synthetic import generate_candles, interval_ms
from divtrader.broker.bingx_client import BingXClient
from divtrader.models.backtest_params import BacktestParams
from divtrader.repos.backtest_repo import BacktestRepo
from divtrader.risk.governor import RiskGovernor
from divtrader.strategy.models import Candle

logger = logging.getLogger("divtrader.backtest")

# Fewer real candles than this is treated as a failed fetch.
MIN_REAL_CANDLES = 100
# Window used when the params leave start/end open.
DEFAULT_HISTORY_CANDLES = 1000


@dataclass(frozen=True)
class RunOutcome:
    result: BacktestResult
    run_id: Optional[int] = None


def resolve_window(params: BacktestParams, now_ms: Optional[int] = None) -> tuple[int, int]:
    """Concrete ``(start, end)`` epoch-ms bounds for *params*."""
    end = params.end_time
    if end is None:
        end = now_ms if now_ms is not None else int(time.time() * 1000)
    start = params.start_time
    if start is None:
        start = end - DEFAULT_HISTORY_CANDLES * interval_ms(params.timeframe)
    if end <= start:
        raise ValueError(f"end_time {end} must be after start_time {start}")
    return start, end


class BacktestRunner:
    """Run one backtest end to end.

    Args:
        client: Kline source; ``None`` forces synthetic data.
        repo: Optional ``BacktestRepo``; storage failures are logged.
        governor: Optional shared ``RiskGovernor`` passed to ``simulate``.
    """

    def __init__(
        self,
        client: Optional[BingXClient] = None,
        repo: Optional[BacktestRepo] = None,
        governor: Optional[RiskGovernor] = None,
    ) -> None:
        self._client = client
        self._repo = repo
        self._governor = governor

    async def load_candles(self, params: BacktestParams) -> tuple[list[Candle], bool]:
        """Fetch real candles, or generate synthetic ones.

        Returns:
            ``(candles, synthetic)``.
        """
        start, end = resolve_window(params)
        candles: list[Candle] = []
        if self._client is not None:
            try:
                candles = await self._client.fetch_history(
                    params.pair, params.timeframe, start, end,
                )
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Kline fetch for %s failed: %s", params.pair, exc)
                candles = []

        if len(candles) > MIN_REAL_CANDLES:
            return candles, False

        logger.warning(
            "Only %d real candles for %s %s — using SYNTHETIC data (seed=%s)",
            len(candles), params.pair, params.timeframe, params.seed,
        )
        return generate_candles(start, end, params.timeframe, seed=params.seed), True

    async def run(
        self,
        params: BacktestParams,
        cancel: Optional[Callable[[], bool]] = None,
    ) -> RunOutcome:
        """Execute the full pipeline for *params*.

        Raises:
            InsufficientDataError: The window holds too few candles even
                after the synthetic fallback.
            BacktestCancelled: *cancel* returned ``True``.
        """
        started = time.time()
        candles, synthetic = await self.load_candles(params)

        result = await asyncio.to_thread(
            simulate, candles, params, cancel=cancel, governor=self._governor,
        )
        result = dataclasses.replace(result, synthetic=synthetic)

        run_id = None
        if self._repo is not None:
            try:
                run_id = self._repo.insert_result(result)
            except sqlite3.Error as exc:
                logger.error("Failed to store backtest result: %s", exc)

        logger.info(
            "Backtest %s %s finished in %.1fs (%d candles, synthetic=%s, run_id=%s)",
            params.pair, params.timeframe, time.time() - started,
            len(candles), synthetic, run_id,
        )
        return RunOutcome(result=result, run_id=run_id)
