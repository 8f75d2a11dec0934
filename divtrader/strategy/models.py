"""Strategy data models — candles, extrema, and the tagged signal type."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  ``timestamp`` is epoch milliseconds."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class ExtremePoint:
    """A local peak or trough of a numeric series."""

    index: int
    timestamp: Optional[int]
    value: float


class SignalType(str, Enum):
    """Direction of a signal."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class SignalSource(str, Enum):
    """Closed set of detectors that can emit a signal."""

    DIVERGENCE = "divergence"
    WM = "wm"
    VOLUME = "volume"
    CANDLESTICK = "candlestick"
    TREND = "trend"
    RSI_EXTREME = "rsi_extreme"
    COMBINED = "combined"


@dataclass(frozen=True)
class Signal:
    """A candidate or combined trade signal.

    ``strength`` is pattern magnitude, ``confidence`` is detector
    reliability; both lie in [0, 1] and are independent.  ``pattern``
    carries the detector's sub-label (``"W"``, ``"hammer"``, ``"vol+"``…).
    """

    type: SignalType
    strength: float
    confidence: float
    source: SignalSource
    confirmations: int = 1
    pattern: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"strength must be within [0, 1], got {self.strength}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(
                f"confidence must be within [0, 1], got {self.confidence}"
            )
        if self.confirmations < 1:
            raise ValueError(
                f"confirmations must be at least 1, got {self.confirmations}"
            )

    @property
    def is_directional(self) -> bool:
        return self.type is not SignalType.NEUTRAL

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "strength": self.strength,
            "confidence": self.confidence,
            "source": self.source.value,
            "confirmations": self.confirmations,
            "pattern": self.pattern,
        }


def validate_series(candles: list[Candle]) -> None:
    """Raise ``ValueError`` unless timestamps are strictly ascending."""
    for prev, cur in zip(candles, candles[1:]):
        if cur.timestamp <= prev.timestamp:
            raise ValueError(
                f"Candles must be strictly ascending by timestamp: "
                f"{cur.timestamp} follows {prev.timestamp}"
            )
