"""Backtest parameter dataclasses.

One ``BacktestParams`` describes a full simulation run: data selection,
indicator periods, detector thresholds, entry filters, exit policy and
sizing.  Every tunable defaults to the values the strategy was calibrated
with.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Optional


@dataclass(frozen=True)
class SignalQualityPolicy:
    """Anti-manipulation gate applied to a combined signal before entry.

    A signal passes when it is a combined signal with at least
    ``min_confirmations`` agreeing detectors, or when its strength falls in
    the ``[weak_min, weak_max)`` window.  With ``reject_strong`` set, the
    RSI-momentum confirmation additionally requires ``strength < weak_max``:
    unusually strong single spikes are treated as likely manipulation.
    """

    min_confirmations: int = 2
    weak_min: float = 0.3
    weak_max: float = 0.5
    reject_strong: bool = True

    def accepts(self, strength: float, confirmations: int, combined: bool) -> bool:
        multi = combined and confirmations >= self.min_confirmations
        weak = self.weak_min <= strength < self.weak_max
        return multi or weak

    def strength_allowed(self, strength: float) -> bool:
        return not self.reject_strong or strength < self.weak_max


@dataclass(frozen=True)
class BacktestParams:
    """Configuration for one ``simulate`` run."""

    pair: str = "BTC-USDT"
    timeframe: str = "1h"
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    initial_balance: float = 10_000.0

    # Indicators
    warmup: int = 50
    signal_window: int = 30
    rsi_period: int = 14
    atr_period: int = 14
    adx_period: int = 14
    sma_period: int = 50

    # Long-SMA trend filter
    use_long_sma: bool = False
    only_longs: bool = False
    only_shorts: bool = False

    # Detectors
    oversold: float = 30.0
    overbought: float = 70.0
    wm_tolerance: float = 10.0
    divergence_order: int = 2
    divergence_min_strength: float = 0.05
    divergence_tolerance_ms: int = 5 * 60 * 1000
    rsi_extreme_min_strength: float = 0.02

    # Entry filters
    cooldown_candles: int = 8
    entry_min_strength: float = 0.05
    min_adx: float = 20.0
    min_volume_ratio: float = 1.5
    volume_lookback: int = 5
    momentum_bars: int = 3
    max_momentum: float = 0.03
    quality: SignalQualityPolicy = field(default_factory=SignalQualityPolicy)

    # Exits
    stop_loss_multiplier: float = 1.5
    take_profit_multiplier: float = 1.6
    trailing_activation: float = 0.6
    trailing_distance: float = 0.15
    max_hold_candles: int = 36
    commission_rate: float = 0.001

    # Sizing
    risk_per_trade: float = 0.003
    base_leverage: float = 8.0
    min_leverage: float = 5.0
    max_leverage: float = 12.0

    # Synthetic fallback
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.initial_balance <= 0:
            raise ValueError(
                f"initial_balance must be positive, got {self.initial_balance}"
            )
        if self.warmup < max(self.volume_lookback, self.momentum_bars, 3):
            raise ValueError(
                f"warmup ({self.warmup}) must cover volume_lookback "
                f"({self.volume_lookback}) and momentum_bars ({self.momentum_bars})"
            )
        if self.signal_window < 10:
            raise ValueError(f"signal_window must be at least 10, got {self.signal_window}")
        if self.commission_rate < 0:
            raise ValueError(
                f"commission_rate must be non-negative, got {self.commission_rate}"
            )
        if self.only_longs and self.only_shorts:
            raise ValueError("only_longs and only_shorts are mutually exclusive")
        if not 0 < self.min_leverage <= self.max_leverage:
            raise ValueError(
                f"leverage range invalid: [{self.min_leverage}, {self.max_leverage}]"
            )

    # ── Serialisation ────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BacktestParams":
        """Build params from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown backtest parameter(s): {', '.join(sorted(unknown))}")
        values = dict(data)
        quality = values.get("quality")
        if isinstance(quality, dict):
            values["quality"] = SignalQualityPolicy(**quality)
        return cls(**values)
