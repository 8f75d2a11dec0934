"""Signal fusion — reduce a set of candidate signals to one decision."""

import logging
from typing import Iterable, Optional

from divtrader.strategy.models import Signal, SignalSource, SignalType

logger = logging.getLogger("divtrader.combiner")

DEFAULT_TREND_PRIORITY = 0.3
DEFAULT_STRONG_THRESHOLD = 0.4
MIN_AGREEING = 2


def _qualifies(group: list[Signal], strong_threshold: float) -> bool:
    if len(group) >= MIN_AGREEING:
        return True
    return any(s.strength > strong_threshold for s in group)


def _merge(direction: SignalType, group: list[Signal]) -> Signal:
    count = len(group)
    return Signal(
        type=direction,
        strength=sum(s.strength for s in group) / count,
        confidence=sum(s.confidence for s in group) / count,
        source=SignalSource.COMBINED,
        confirmations=count,
        pattern="+".join(s.pattern or s.source.value for s in group),
    )


def combine_signals(
    candidates: Iterable[Optional[Signal]],
    trend: Optional[Signal] = None,
    trend_priority: float = DEFAULT_TREND_PRIORITY,
    strong_threshold: float = DEFAULT_STRONG_THRESHOLD,
) -> Optional[Signal]:
    """Merge detector outputs into one actionable signal.

    Rules:
        1. A *trend* signal stronger than *trend_priority* wins outright.
        2. Otherwise non-null, non-neutral candidates (plus a weaker trend
           signal) are partitioned by direction.  A direction qualifies
           with one signal stronger than *strong_threshold* or at least
           two agreeing signals.
        3. The result averages strength and confidence over the
           qualifying direction, with ``confirmations`` = group size.
        4. If both directions qualify, the larger group wins; equal
           groups cancel out.

    Returns:
        The winning ``Signal`` or ``None`` when nothing qualifies.
    """
    if trend is not None and trend.is_directional and trend.strength > trend_priority:
        return trend

    pool = [s for s in candidates if s is not None and s.is_directional]
    if trend is not None and trend.is_directional:
        pool.append(trend)

    bulls = [s for s in pool if s.type is SignalType.BULLISH]
    bears = [s for s in pool if s.type is SignalType.BEARISH]
    bull_ok = _qualifies(bulls, strong_threshold) if bulls else False
    bear_ok = _qualifies(bears, strong_threshold) if bears else False

    if bull_ok and bear_ok:
        if len(bulls) == len(bears):
            logger.debug("Conflicting signals cancel out: %d vs %d", len(bulls), len(bears))
            return None
        bear_ok = len(bears) > len(bulls)
        bull_ok = not bear_ok

    if bull_ok:
        return _merge(SignalType.BULLISH, bulls)
    if bear_ok:
        return _merge(SignalType.BEARISH, bears)
    return None
