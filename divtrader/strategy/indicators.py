"""Technical indicators — RSI, SMA, EMA, ATR, ADX.  Pure functions, no I/O.

Every series returned here is aligned to a *suffix* of its input: the
first value corresponds to the first bar for which the indicator is
defined.  Use :func:`align` to pad a series back to the candle count.

Non-numeric and non-finite inputs are filtered out before computation
rather than rejected.  Insufficient data yields an empty list (logged),
never an exception.  All outputs are rounded to ``PRECISION`` decimals so
repeated runs produce identical values.
"""

import logging
import math
from typing import Iterable, Optional, Sequence

logger = logging.getLogger("divtrader.indicators")

PRECISION = 8


# ── Input cleaning ───────────────────────────────────────────────────────


def _to_float(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _clean(values: Optional[Iterable], positive: bool = False) -> list[float]:
    """Return the finite (optionally strictly positive) numbers in *values*."""
    if values is None:
        return []
    cleaned: list[float] = []
    for value in values:
        number = _to_float(value)
        if number is None or (positive and number <= 0):
            continue
        cleaned.append(number)
    return cleaned


def _clean_bars(
    highs: Optional[Iterable],
    lows: Optional[Iterable],
    closes: Optional[Iterable],
) -> list[tuple[float, float, float]]:
    """Zip OHLC columns, dropping any bar with an invalid field."""
    if highs is None or lows is None or closes is None:
        return []
    bars: list[tuple[float, float, float]] = []
    for high, low, close in zip(highs, lows, closes):
        h, l, c = _to_float(high), _to_float(low), _to_float(close)
        if h is None or l is None or c is None:
            continue
        bars.append((h, l, c))
    return bars


def _rounded(values: Iterable[float]) -> list[float]:
    return [round(v, PRECISION) for v in values]


def _check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be at least 1, got {period}")


# ── RSI ──────────────────────────────────────────────────────────────────


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return min(100.0, max(0.0, 100.0 - 100.0 / (1.0 + rs)))


def rsi(closes: Sequence, period: int = 14) -> list[float]:
    """Wilder's Relative Strength Index.

    Algorithm:
        1. delta = close[i] - close[i-1], split into gains and losses.
        2. Seed averages = simple mean of the first *period* gains/losses.
        3. Subsequent: ``avg = (avg × (period-1) + current) / period``.
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss); 100 when
           ``avg_loss`` is zero.

    Only finite, strictly positive closes are used.  Returns an empty list
    when fewer than ``period + 1`` remain; otherwise the result holds
    ``len(valid) - period`` values.
    """
    _check_period(period)
    valid = _clean(closes, positive=True)
    if len(valid) < period + 1:
        logger.warning(
            "Insufficient data for RSI(%d): %d valid closes, need %d",
            period, len(valid), period + 1,
        )
        return []

    deltas = [valid[i] - valid[i - 1] for i in range(1, len(valid))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [max(-d, 0.0) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    values = [_rsi_from_avgs(avg_gain, avg_loss)]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        values.append(_rsi_from_avgs(avg_gain, avg_loss))

    return _rounded(values)


# ── Moving averages ──────────────────────────────────────────────────────


def sma(values: Sequence, period: int) -> list[float]:
    """Simple moving average; ``n - period + 1`` values or empty."""
    _check_period(period)
    valid = _clean(values)
    if len(valid) < period:
        return []
    return _rounded(
        sum(valid[i - period + 1 : i + 1]) / period
        for i in range(period - 1, len(valid))
    )


def ema(values: Sequence, period: int) -> list[float]:
    """Exponential moving average seeded with the SMA of the first *period*.

    ``EMA_today = value × k + EMA_yesterday × (1 - k)``, ``k = 2 / (period + 1)``.
    """
    _check_period(period)
    valid = _clean(values)
    if len(valid) < period:
        return []

    k = 2.0 / (period + 1)
    current = sum(valid[:period]) / period
    out = [current]
    for value in valid[period:]:
        current = value * k + current * (1 - k)
        out.append(current)
    return _rounded(out)


# ── ATR ──────────────────────────────────────────────────────────────────


def _true_ranges(bars: list[tuple[float, float, float]]) -> list[float]:
    """TR = max(high - low, |high - prev_close|, |low - prev_close|)."""
    ranges: list[float] = []
    for i in range(1, len(bars)):
        high, low, _ = bars[i]
        prev_close = bars[i - 1][2]
        ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return ranges


def atr(
    highs: Sequence,
    lows: Sequence,
    closes: Sequence,
    period: int = 14,
) -> list[float]:
    """Wilder-smoothed Average True Range; ``n - period`` values or empty."""
    _check_period(period)
    bars = _clean_bars(highs, lows, closes)
    if len(bars) < period + 1:
        logger.warning(
            "Insufficient data for ATR(%d): %d bars, need %d",
            period, len(bars), period + 1,
        )
        return []

    ranges = _true_ranges(bars)
    current = sum(ranges[:period]) / period
    out = [current]
    for tr in ranges[period:]:
        current = (current * (period - 1) + tr) / period
        out.append(current)
    return _rounded(out)


# ── ADX ──────────────────────────────────────────────────────────────────


def _dx(s_pdm: float, s_mdm: float, s_tr: float) -> float:
    if s_tr == 0:
        return 0.0
    plus_di = 100.0 * s_pdm / s_tr
    minus_di = 100.0 * s_mdm / s_tr
    di_sum = plus_di + minus_di
    if di_sum == 0:
        return 0.0
    return 100.0 * abs(plus_di - minus_di) / di_sum


def adx(
    highs: Sequence,
    lows: Sequence,
    closes: Sequence,
    period: int = 14,
) -> list[float]:
    """Average Directional Index.

    Algorithm:
        1. +DM / -DM directional movement and TR per bar.
        2. Wilder-smooth +DM, -DM and TR (seeded with their first sums).
        3. DX = 100 × |+DI − −DI| / (+DI + −DI).
        4. ADX = Wilder-smoothed DX, seeded with the mean of the first
           *period* DX values.

    Needs at least ``2 × period`` bars and returns
    ``n - 2 × period + 1`` values.
    """
    _check_period(period)
    bars = _clean_bars(highs, lows, closes)
    n = len(bars)
    if n < 2 * period:
        logger.warning(
            "Insufficient data for ADX(%d): %d bars, need %d",
            period, n, 2 * period,
        )
        return []

    plus_dm: list[float] = [0.0]
    minus_dm: list[float] = [0.0]
    tr_raw: list[float] = [0.0]
    for i in range(1, n):
        high, low, _ = bars[i]
        prev_high, prev_low, prev_close = bars[i - 1]
        up_move = high - prev_high
        down_move = prev_low - low
        plus_dm.append(up_move if (up_move > down_move and up_move > 0) else 0.0)
        minus_dm.append(down_move if (down_move > up_move and down_move > 0) else 0.0)
        tr_raw.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))

    s_pdm = sum(plus_dm[1 : period + 1])
    s_mdm = sum(minus_dm[1 : period + 1])
    s_tr = sum(tr_raw[1 : period + 1])
    dx_values = [_dx(s_pdm, s_mdm, s_tr)]

    for i in range(period + 1, n):
        s_pdm = s_pdm - s_pdm / period + plus_dm[i]
        s_mdm = s_mdm - s_mdm / period + minus_dm[i]
        s_tr = s_tr - s_tr / period + tr_raw[i]
        dx_values.append(_dx(s_pdm, s_mdm, s_tr))

    current = sum(dx_values[:period]) / period
    out = [current]
    for dx in dx_values[period:]:
        current = (current * (period - 1) + dx) / period
        out.append(current)
    return _rounded(out)


# ── Helpers ──────────────────────────────────────────────────────────────


def align(series: Sequence[float], length: int) -> list[Optional[float]]:
    """Left-pad a suffix-aligned *series* with ``None`` up to *length*.

    Only valid when no input bar was filtered out during computation.
    """
    if len(series) > length:
        raise ValueError(
            f"Series of {len(series)} values cannot align to {length} bars"
        )
    return [None] * (length - len(series)) + list(series)


def volume_ratio(current_volume: float, average_volume: float) -> float:
    """Current volume relative to its average; ``1.0`` when undefined."""
    current = _to_float(current_volume)
    average = _to_float(average_volume)
    if not current or not average:
        return 1.0
    return round(current / average, PRECISION)


def percentage_change(old_value: float, new_value: float) -> float:
    """Percent change from *old_value* to *new_value* (4 decimals)."""
    old = _to_float(old_value)
    new = _to_float(new_value)
    if not old or new is None:
        return 0.0
    return round((new - old) / old * 100.0, 4)
