"""RSI divergence detection — pairs price extrema with indicator extrema.

Bullish divergence: price prints a lower low while the indicator prints a
higher low.  Bearish divergence: price prints a higher high while the
indicator prints a lower high.  A price extreme corresponds to the
indicator extreme of the same kind whose timestamp is nearest, provided
the gap is within ``tolerance_ms``.
"""

import logging
from typing import Optional, Sequence

from divtrader.strategy.extrema import MAXIMA, MINIMA, find_extrema
from divtrader.strategy.models import ExtremePoint, Signal, SignalSource, SignalType

logger = logging.getLogger("divtrader.divergence")

DEFAULT_ORDER = 2
DEFAULT_LOOKBACK = 50
DEFAULT_TOLERANCE_MS = 5 * 60 * 1000
DEFAULT_MIN_STRENGTH = 0.1


def divergence_strength(price_change: float, indicator_change: float) -> float:
    """``min(1, (|Δp/p| × 100 + |Δind|) / 20)``."""
    return min(1.0, (abs(price_change) * 100.0 + abs(indicator_change)) / 20.0)


def divergence_confidence(price_change: float, indicator_change: float) -> float:
    """Mean of the capped, normalised price and indicator changes."""
    normalised_price = min(1.0, abs(price_change) * 10.0)
    normalised_indicator = min(1.0, abs(indicator_change) / 20.0)
    return (normalised_price + normalised_indicator) / 2.0


def _nearest(
    candidates: list[ExtremePoint],
    timestamp: int,
    tolerance_ms: int,
) -> Optional[ExtremePoint]:
    best: Optional[ExtremePoint] = None
    best_gap = None
    for point in candidates:
        gap = abs(point.timestamp - timestamp)
        if gap > tolerance_ms:
            continue
        if best_gap is None or gap < best_gap:
            best, best_gap = point, gap
    return best


def _check(
    price_points: list[ExtremePoint],
    indicator_points: list[ExtremePoint],
    direction: SignalType,
    tolerance_ms: int,
    min_strength: float,
) -> Optional[Signal]:
    if len(price_points) < 2 or not indicator_points:
        return None

    first, second = price_points[-2], price_points[-1]
    ind_first = _nearest(indicator_points, first.timestamp, tolerance_ms)
    ind_second = _nearest(indicator_points, second.timestamp, tolerance_ms)
    if ind_first is None or ind_second is None:
        return None
    if ind_first.index == ind_second.index:
        return None

    if direction is SignalType.BULLISH:
        diverges = second.value < first.value and ind_second.value > ind_first.value
    else:
        diverges = second.value > first.value and ind_second.value < ind_first.value
    if not diverges or first.value == 0:
        return None

    price_change = (second.value - first.value) / first.value
    indicator_change = ind_second.value - ind_first.value
    strength = divergence_strength(price_change, indicator_change)
    if strength < min_strength:
        logger.debug(
            "%s divergence below threshold: strength=%.4f min=%.4f",
            direction.value, strength, min_strength,
        )
        return None

    return Signal(
        type=direction,
        strength=strength,
        confidence=divergence_confidence(price_change, indicator_change),
        source=SignalSource.DIVERGENCE,
        pattern=f"{direction.value}_divergence",
    )


def detect_divergence(
    prices: Sequence[float],
    indicator: Sequence[Optional[float]],
    timestamps: Sequence[int],
    *,
    order: int = DEFAULT_ORDER,
    lookback: int = DEFAULT_LOOKBACK,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
    min_strength: float = DEFAULT_MIN_STRENGTH,
) -> Optional[Signal]:
    """Detect a bullish or bearish divergence at the end of the series.

    *prices*, *indicator* and *timestamps* are parallel sequences.  Leading
    ``None`` values in *indicator* (warm-up padding from
    :func:`~divtrader.strategy.indicators.align`) are ignored.  Only the
    last *lookback* points are examined.  Bullish is checked first.

    Returns:
        A divergence ``Signal`` or ``None``.

    Raises:
        ValueError: If the sequences differ in length.
    """
    if not (len(prices) == len(indicator) == len(timestamps)):
        raise ValueError(
            "prices, indicator and timestamps must have equal length "
            f"({len(prices)}, {len(indicator)}, {len(timestamps)})"
        )

    start = max(0, len(prices) - lookback)
    window_prices = list(prices[start:])
    window_ind = list(indicator[start:])
    window_ts = list(timestamps[start:])

    # Indicator extrema are searched only over its defined suffix.
    offset = 0
    while offset < len(window_ind) and window_ind[offset] is None:
        offset += 1
    ind_values = window_ind[offset:]
    ind_ts = window_ts[offset:]
    if any(v is None for v in ind_values):
        logger.warning("Indicator series has gaps; skipping divergence check")
        return None

    for direction, kind in (
        (SignalType.BULLISH, MINIMA),
        (SignalType.BEARISH, MAXIMA),
    ):
        price_points = find_extrema(window_prices, kind, order, window_ts)
        indicator_points = find_extrema(ind_values, kind, order, ind_ts)
        signal = _check(
            price_points, indicator_points, direction, tolerance_ms, min_strength,
        )
        if signal is not None:
            return signal
    return None
