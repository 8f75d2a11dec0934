"""Live trade suggestion published by the signal engine."""

from dataclasses import asdict, dataclass, field


@dataclass(frozen=True)
class Suggestion:
    """A manual-trading suggestion, valid until ``expires_at`` (epoch ms).

    ``created_at`` is the analysis time; ``candle_time`` is the open time
    of the closed candle that triggered it.

    ``signal``, ``technical_analysis`` and ``risk_decision`` are plain
    dicts so the suggestion serialises straight to JSON.
    """

    id: str
    pair: str
    timeframe: str
    action: str  # "BUY" or "SELL"
    signal: dict
    entry_price: float
    stop_loss: float
    take_profit: float
    risk_reward_ratio: float
    suggested_size: float
    technical_analysis: dict = field(default_factory=dict)
    risk_decision: dict = field(default_factory=dict)
    created_at: int = 0
    expires_at: int = 0
    candle_time: int = 0

    @property
    def approved(self) -> bool:
        return bool(self.risk_decision.get("approved", False))

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)
