"""Reversal pattern detectors — pure functions, no I/O.

Each detector inspects the tail of a candle (or RSI) window and returns at
most one candidate ``Signal``.  Every strength, confidence and threshold
below is a heuristic tunable, exposed as a module-level default.
"""

from typing import Optional, Sequence

from divtrader.strategy.extrema import MAXIMA, MINIMA, find_extrema
from divtrader.strategy.models import Candle, Signal, SignalSource, SignalType


# ── W / M shapes in RSI ──────────────────────────────────────────────────
DEFAULT_OVERSOLD = 30.0
DEFAULT_OVERBOUGHT = 70.0
DEFAULT_WM_TOLERANCE = 10.0
WM_CONFIDENCE = 0.8


def detect_wm_pattern(
    rsi_values: Sequence[Optional[float]],
    oversold: float = DEFAULT_OVERSOLD,
    overbought: float = DEFAULT_OVERBOUGHT,
    tolerance: float = DEFAULT_WM_TOLERANCE,
    order: int = 2,
) -> Optional[Signal]:
    """Detect a W (bullish) or M (bearish) turn in recent RSI.

    A local RSI minimum at the most recent confirmable bar (``order`` bars
    before the last one), below ``oversold + tolerance``, is a W; strength
    grows with the distance below that level.  M is the mirror image for
    maxima.
    """
    values = [v for v in rsi_values if v is not None]
    if len(values) < 2 * order + 1:
        return None

    idx = len(values) - 1 - order

    troughs = {p.index: p.value for p in find_extrema(values, MINIMA, order)}
    level = oversold + tolerance
    if idx in troughs and troughs[idx] < level:
        return Signal(
            type=SignalType.BULLISH,
            strength=min(1.0, (level - troughs[idx]) / 20.0),
            confidence=WM_CONFIDENCE,
            source=SignalSource.WM,
            pattern="W",
        )

    peaks = {p.index: p.value for p in find_extrema(values, MAXIMA, order)}
    level = overbought - tolerance
    if idx in peaks and peaks[idx] > level:
        return Signal(
            type=SignalType.BEARISH,
            strength=min(1.0, (peaks[idx] - level) / 20.0),
            confidence=WM_CONFIDENCE,
            source=SignalSource.WM,
            pattern="M",
        )

    return None


# ── Volume spike ─────────────────────────────────────────────────────────
DEFAULT_VOLUME_LOOKBACK = 4
DEFAULT_SPIKE_RATIO = 1.3
DEFAULT_MIN_BODY_CHANGE = 0.005
# A spike following a move larger than this over two bars is chasing.
DEFAULT_MAX_MOMENTUM = 0.03
VOLUME_STRENGTH_DIVISOR = 2.5
VOLUME_MAX_STRENGTH = 0.8
VOLUME_CONFIDENCE = 0.7


def detect_volume_spike(
    candles: Sequence[Candle],
    lookback: int = DEFAULT_VOLUME_LOOKBACK,
    spike_ratio: float = DEFAULT_SPIKE_RATIO,
    min_body_change: float = DEFAULT_MIN_BODY_CHANGE,
    max_momentum: float = DEFAULT_MAX_MOMENTUM,
) -> Optional[Signal]:
    """Detect a volume spike confirmed by the last candle's body direction.

    ``ratio = volume / mean(previous lookback volumes)``.  Above
    *spike_ratio*, a body gain beyond *min_body_change* with two-bar
    momentum under *max_momentum* is bullish; the mirror is bearish.
    """
    if len(candles) < max(lookback + 1, 3):
        return None

    current = candles[-1]
    previous = candles[-lookback - 1 : -1]
    average = sum(c.volume for c in previous) / lookback
    if average <= 0 or current.open <= 0:
        return None
    two_back = candles[-3].close
    if two_back <= 0:
        return None

    ratio = current.volume / average
    if ratio <= spike_ratio:
        return None

    change = (current.close - current.open) / current.open
    momentum = (current.close - two_back) / two_back
    strength = min(ratio / VOLUME_STRENGTH_DIVISOR, VOLUME_MAX_STRENGTH)

    if change > min_body_change and momentum < max_momentum:
        return Signal(
            type=SignalType.BULLISH,
            strength=strength,
            confidence=VOLUME_CONFIDENCE,
            source=SignalSource.VOLUME,
            pattern="vol+",
        )
    if change < -min_body_change and momentum > -max_momentum:
        return Signal(
            type=SignalType.BEARISH,
            strength=strength,
            confidence=VOLUME_CONFIDENCE,
            source=SignalSource.VOLUME,
            pattern="vol-",
        )
    return None


# ── Candlestick shapes ───────────────────────────────────────────────────
DOJI_BODY_RATIO = 0.1
WICK_TO_BODY = 2.0
SHORT_WICK_TO_BODY = 0.5
ENGULFING_BODY_RATIO = 1.2


def detect_candlestick(candles: Sequence[Candle]) -> Optional[Signal]:
    """Classify the last candle as doji, hammer, shooting star or engulfing.

    Checks run in that order and the first match wins.  A doji is
    reported as a neutral signal; the combiner ignores it.
    """
    if len(candles) < 3:
        return None

    cur, prev = candles[-1], candles[-2]
    body = abs(cur.close - cur.open)
    total = cur.high - cur.low
    upper = cur.high - max(cur.close, cur.open)
    lower = min(cur.close, cur.open) - cur.low

    if (
        body < total * DOJI_BODY_RATIO
        and upper > body * WICK_TO_BODY
        and lower > body * WICK_TO_BODY
    ):
        return Signal(SignalType.NEUTRAL, 0.3, 0.6, SignalSource.CANDLESTICK, pattern="doji")
    if lower > body * WICK_TO_BODY and upper < body * SHORT_WICK_TO_BODY:
        return Signal(SignalType.BULLISH, 0.6, 0.7, SignalSource.CANDLESTICK, pattern="hammer")
    if upper > body * WICK_TO_BODY and lower < body * SHORT_WICK_TO_BODY:
        return Signal(
            SignalType.BEARISH, 0.6, 0.7, SignalSource.CANDLESTICK, pattern="shooting_star",
        )

    prev_body = abs(prev.close - prev.open)
    if (
        prev.close < prev.open
        and cur.close > cur.open
        and body > prev_body * ENGULFING_BODY_RATIO
        and cur.close > prev.open
        and cur.open < prev.close
    ):
        return Signal(
            SignalType.BULLISH, 0.8, 0.8, SignalSource.CANDLESTICK, pattern="bullish_engulfing",
        )
    if (
        prev.close > prev.open
        and cur.close < cur.open
        and body > prev_body * ENGULFING_BODY_RATIO
        and cur.close < prev.open
        and cur.open > prev.close
    ):
        return Signal(
            SignalType.BEARISH, 0.8, 0.8, SignalSource.CANDLESTICK, pattern="bearish_engulfing",
        )
    return None


# ── Trend-follow ─────────────────────────────────────────────────────────
DEFAULT_TREND_WINDOW = 5
TREND_STRENGTH_SCALE = 5.0
TREND_MAX_STRENGTH = 0.8
TREND_CONFIDENCE = 0.75
TREND_MOMENTUM_BARS = 3


def detect_trend_signal(
    candles: Sequence[Candle],
    rsi_value: Optional[float],
    window: int = DEFAULT_TREND_WINDOW,
    oversold: float = DEFAULT_OVERSOLD,
    overbought: float = DEFAULT_OVERBOUGHT,
    max_momentum: float = DEFAULT_MAX_MOMENTUM,
) -> Optional[Signal]:
    """Short-vs-previous SMA crossover gated by an RSI extreme.

    Bullish when ``SMA(last window) > SMA(window before)``, price sits above
    the short SMA, RSI is oversold and the 3-bar drop is under
    *max_momentum*; bearish mirrored.
    """
    if rsi_value is None or len(candles) < 2 * window:
        return None

    closes = [c.close for c in candles]
    short_sma = sum(closes[-window:]) / window
    long_sma = sum(closes[-2 * window : -window]) / window
    if long_sma <= 0:
        return None

    price = closes[-1]
    ref = closes[-TREND_MOMENTUM_BARS - 1]
    momentum = (price - ref) / ref if ref > 0 else 0.0
    strength = min(abs((short_sma - long_sma) / long_sma) * TREND_STRENGTH_SCALE, TREND_MAX_STRENGTH)

    if short_sma > long_sma and price > short_sma and rsi_value < oversold and momentum > -max_momentum:
        return Signal(
            SignalType.BULLISH, strength, TREND_CONFIDENCE, SignalSource.TREND, pattern="trend_up",
        )
    if short_sma < long_sma and price < short_sma and rsi_value > overbought and momentum < max_momentum:
        return Signal(
            SignalType.BEARISH, strength, TREND_CONFIDENCE, SignalSource.TREND, pattern="trend_down",
        )
    return None


# ── RSI extremes ─────────────────────────────────────────────────────────
DEFAULT_RSI_EXTREME_MIN_STRENGTH = 0.02
RSI_EXTREME_SCALE = 0.8


def detect_rsi_extreme(
    rsi_value: Optional[float],
    oversold: float = DEFAULT_OVERSOLD,
    overbought: float = DEFAULT_OVERBOUGHT,
    min_strength: float = DEFAULT_RSI_EXTREME_MIN_STRENGTH,
) -> Optional[Signal]:
    """Overbought RSI is bearish, oversold RSI is bullish."""
    if rsi_value is None:
        return None

    if rsi_value > overbought:
        span = 100.0 - overbought
        strength = min((rsi_value - overbought) / span, 1.0) * RSI_EXTREME_SCALE
        if strength >= min_strength:
            return Signal(
                SignalType.BEARISH,
                strength,
                strength * RSI_EXTREME_SCALE,
                SignalSource.RSI_EXTREME,
                pattern="rsi_overbought",
            )
    elif rsi_value < oversold:
        strength = min((oversold - rsi_value) / oversold, 1.0) * RSI_EXTREME_SCALE
        if strength >= min_strength:
            return Signal(
                SignalType.BULLISH,
                strength,
                strength * RSI_EXTREME_SCALE,
                SignalSource.RSI_EXTREME,
                pattern="rsi_oversold",
            )
    return None
