"""Per-candle signal analysis shared by the backtest and the live engine.

``compute_indicators`` evaluates every indicator once over a candle series
and pads each to the candle count, so ``indicators.rsi[i]`` belongs to
``candles[i]`` (``None`` during warm-up).  ``generate_signals`` then runs
every detector on the trailing window ending at one index and fuses the
results.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from divtrader.models.backtest_params import BacktestParams
from divtrader.strategy.combiner import combine_signals
from divtrader.strategy.divergence import detect_divergence
from divtrader.strategy.indicators import adx, align, atr, rsi, sma
from divtrader.strategy.models import Candle, Signal
from divtrader.strategy.patterns import (
    detect_candlestick,
    detect_rsi_extreme,
    detect_trend_signal,
    detect_volume_spike,
    detect_wm_pattern,
)


@dataclass(frozen=True)
class IndicatorSet:
    """Indicator values aligned one-to-one with the candle series."""

    closes: list[float]
    volumes: list[float]
    timestamps: list[int]
    rsi: list[Optional[float]]
    atr: list[Optional[float]]
    adx: list[Optional[float]]
    sma_long: list[Optional[float]]


@dataclass(frozen=True)
class SignalSet:
    """Every detector output at one candle plus the fused decision."""

    wm: Optional[Signal]
    volume: Optional[Signal]
    candlestick: Optional[Signal]
    divergence: Optional[Signal]
    rsi_extreme: Optional[Signal]
    trend: Optional[Signal]
    combined: Optional[Signal]

    def candidates(self) -> list[Signal]:
        found = (self.wm, self.volume, self.candlestick, self.divergence, self.rsi_extreme)
        return [s for s in found if s is not None]


def check_prices(candles: Sequence[Candle]) -> None:
    """Raise ``ValueError`` on any non-finite or non-positive price field."""
    for candle in candles:
        for name in ("open", "high", "low", "close"):
            value = getattr(candle, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(
                    f"Invalid {name} {value!r} in candle at {candle.timestamp}"
                )
        if not math.isfinite(candle.volume) or candle.volume < 0:
            raise ValueError(f"Invalid volume {candle.volume!r} in candle at {candle.timestamp}")


def compute_indicators(
    candles: Sequence[Candle],
    params: BacktestParams = BacktestParams(),
) -> IndicatorSet:
    """Compute RSI, ATR, ADX and the long SMA over *candles*.

    Candles must already be validated by :func:`check_prices`; no bar may
    be filtered out, or the padded series would misalign.
    """
    n = len(candles)
    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    return IndicatorSet(
        closes=closes,
        volumes=[c.volume for c in candles],
        timestamps=[c.timestamp for c in candles],
        rsi=align(rsi(closes, params.rsi_period), n),
        atr=align(atr(highs, lows, closes, params.atr_period), n),
        adx=align(adx(highs, lows, closes, params.adx_period), n),
        sma_long=align(sma(closes, params.sma_period), n),
    )


def generate_signals(
    candles: Sequence[Candle],
    indicators: IndicatorSet,
    i: int,
    params: BacktestParams = BacktestParams(),
) -> SignalSet:
    """Run every detector on the window ending at candle *i* and combine."""
    start = max(0, i - params.signal_window)
    end = i + 1
    window = candles[start:end]
    rsi_window = indicators.rsi[start:end]
    current_rsi = indicators.rsi[i]

    wm = detect_wm_pattern(
        rsi_window, params.oversold, params.overbought, params.wm_tolerance,
    )
    volume = detect_volume_spike(window, max_momentum=params.max_momentum)
    candlestick = detect_candlestick(window)
    divergence = detect_divergence(
        indicators.closes[start:end],
        rsi_window,
        indicators.timestamps[start:end],
        order=params.divergence_order,
        lookback=end - start,
        tolerance_ms=params.divergence_tolerance_ms,
        min_strength=params.divergence_min_strength,
    )
    rsi_extreme = detect_rsi_extreme(
        current_rsi,
        params.oversold,
        params.overbought,
        params.rsi_extreme_min_strength,
    )
    trend = detect_trend_signal(
        window,
        current_rsi,
        oversold=params.oversold,
        overbought=params.overbought,
        max_momentum=params.max_momentum,
    )
    combined = combine_signals(
        (wm, volume, candlestick, divergence, rsi_extreme), trend,
    )
    return SignalSet(wm, volume, candlestick, divergence, rsi_extreme, trend, combined)
