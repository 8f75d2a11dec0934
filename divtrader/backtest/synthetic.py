"""Synthetic candle generator — the labelled fallback when market data fails.

A seeded random walk with alternating trend regimes, occasional regular
spikes and rare "manipulation" phases (tripled volatility, large spikes
and volume bursts).  Prices are clamped to ``[MIN_PRICE, MAX_PRICE]``.
Same seed, same candles.
"""

import logging
from typing import Optional

import numpy as np

from divtrader.strategy.models import Candle

logger = logging.getLogger("divtrader.synthetic")

START_PRICE = 30_000.0
MIN_PRICE = 1_000.0
MAX_PRICE = 200_000.0
MANIPULATION_CHANCE = 0.001
REGULAR_SPIKE_CHANCE = 0.02

INTERVAL_MS = {
    "1m": 60_000,
    "5m": 5 * 60_000,
    "15m": 15 * 60_000,
    "1h": 60 * 60_000,
    "4h": 4 * 60 * 60_000,
    "1d": 24 * 60 * 60_000,
}


def interval_ms(timeframe: str) -> int:
    """Milliseconds per candle; unknown timeframes default to one hour."""
    return INTERVAL_MS.get(timeframe, INTERVAL_MS["1h"])


def generate_candles(
    start_time: int,
    end_time: int,
    timeframe: str = "1h",
    seed: Optional[int] = None,
    start_price: float = START_PRICE,
) -> list[Candle]:
    """Generate candles every *timeframe* from *start_time* to *end_time* inclusive."""
    if end_time < start_time:
        raise ValueError(f"end_time {end_time} precedes start_time {start_time}")

    rng = np.random.default_rng(seed)
    step = interval_ms(timeframe)

    price = start_price
    prev_close: Optional[float] = None
    trend_dir = 1.0
    trend_len = 0
    max_trend = 50 + rng.random() * 100
    volatility = 0.01
    manipulating = False
    manipulation_left = 0.0

    candles: list[Candle] = []
    ts = start_time
    while ts <= end_time:
        if trend_len > max_trend:
            trend_dir = -trend_dir
            trend_len = 0
            max_trend = 30 + rng.random() * 80
            volatility = 0.005 + rng.random() * 0.015

        if not manipulating and rng.random() < MANIPULATION_CHANCE:
            manipulating = True
            manipulation_left = 5 + rng.random() * 15
            volatility *= 3
            logger.debug("Manipulation phase at %d for %.0f candles", ts, manipulation_left)
        if manipulating:
            manipulation_left -= 1
            if manipulation_left <= 0:
                manipulating = False
                volatility /= 3

        trend = trend_dir * (0.3 + rng.random() * 0.7) * 0.001
        noise = (rng.random() - 0.5) * volatility
        spike = 0.0
        if manipulating:
            if rng.random() > 0.7:
                spike = (rng.random() - 0.5) * 0.03
        elif rng.random() < REGULAR_SPIKE_CHANCE:
            spike = (rng.random() - 0.5) * 0.015

        price = float(np.clip(price * (1 + trend + noise + spike), MIN_PRICE, MAX_PRICE))

        open_ = prev_close if prev_close is not None else price
        span = price * volatility * 0.5
        high = max(price + rng.random() * span, open_, price)
        low = min(price - rng.random() * span, open_, price)
        volume = 1e6 + rng.random() * 3e6
        if manipulating:
            volume *= 2 + rng.random() * 3

        candles.append(Candle(ts, open_, high, low, price, float(volume)))
        prev_close = price
        ts += step
        trend_len += 1

    logger.info("Generated %d synthetic %s candles (seed=%s)", len(candles), timeframe, seed)
    return candles
