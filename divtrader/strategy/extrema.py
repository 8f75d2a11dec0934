"""Local extrema of a numeric series — pure functions, no I/O."""

from typing import Optional, Sequence

from divtrader.strategy.models import ExtremePoint

MAXIMA = "maxima"
MINIMA = "minima"


def _is_extreme(series: Sequence[float], i: int, kind: str, order: int) -> bool:
    value = series[i]
    for j in range(1, order + 1):
        left, right = series[i - j], series[i + j]
        if kind == MAXIMA and (value <= left or value <= right):
            return False
        if kind == MINIMA and (value >= left or value >= right):
            return False
    return True


def find_extrema(
    series: Sequence[float],
    kind: str,
    order: int = 2,
    timestamps: Optional[Sequence[int]] = None,
) -> list[ExtremePoint]:
    """Find strict local maxima or minima of *series*.

    Index ``i`` (``order <= i < len - order``) is a maximum iff it is
    strictly greater than every neighbour within ``order`` bars on both
    sides; minima are symmetric.  Plateaus are never extrema.

    Args:
        series: Numeric values.
        kind: ``"maxima"`` or ``"minima"``.
        order: Neighbours required on each side.
        timestamps: Optional timestamps parallel to *series*.

    Returns:
        ``ExtremePoint`` list ordered by index.

    Raises:
        ValueError: On an unknown *kind*, a non-positive *order*, or
            *timestamps* of a different length.
    """
    if kind not in (MAXIMA, MINIMA):
        raise ValueError(f"kind must be 'maxima' or 'minima', got {kind!r}")
    if order < 1:
        raise ValueError(f"order must be at least 1, got {order}")
    if timestamps is not None and len(timestamps) != len(series):
        raise ValueError(
            f"timestamps ({len(timestamps)}) and series ({len(series)}) differ in length"
        )

    points: list[ExtremePoint] = []
    for i in range(order, len(series) - order):
        if _is_extreme(series, i, kind, order):
            points.append(
                ExtremePoint(
                    index=i,
                    timestamp=timestamps[i] if timestamps is not None else None,
                    value=float(series[i]),
                )
            )
    return points
