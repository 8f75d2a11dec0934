"""Backtest data models — positions, trades, equity points and results."""

from dataclasses import asdict, dataclass, field
from typing import Optional

from divtrader.strategy.models import SignalType


@dataclass
class Position:
    """The single open position of a simulation run.

    ``stop_loss`` follows the trailing stop; ``take_profit`` is fixed.
    """

    type: SignalType
    entry_price: float
    size: float
    stop_loss: float
    take_profit: float
    entry_index: int
    entry_time: int
    governor_id: Optional[str] = None

    def unrealized_pnl(self, price: float) -> float:
        """Mark-to-market P&L at *price*, excluding commission."""
        return calculate_pnl(self.entry_price, price, self.size, self.type, 0.0)


@dataclass(frozen=True)
class Trade:
    type: str
    entry_price: float
    exit_price: float
    entry_time: int
    exit_time: int
    pnl: float
    position_size: float
    return_pct: float
    commission: float
    exit_reason: str


@dataclass(frozen=True)
class EquityPoint:
    timestamp: int
    value: float


@dataclass(frozen=True)
class SignalEvent:
    """An executed entry: ``type`` is ``"buy"`` or ``"sell"``."""

    timestamp: int
    type: str
    price: float
    source: str
    strength: float
    rsi: Optional[float]


@dataclass
class BacktestResult:
    params: dict
    pair: str
    timeframe: str
    start_time: int
    end_time: int
    trades: list[Trade] = field(default_factory=list)
    signals: list[SignalEvent] = field(default_factory=list)
    equity: list[EquityPoint] = field(default_factory=list)
    metrics: dict = field(default_factory=dict)
    synthetic: bool = False

    def to_dict(self) -> dict:
        """JSON-ready representation, persisted verbatim."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BacktestResult":
        return cls(
            params=data["params"],
            pair=data["pair"],
            timeframe=data["timeframe"],
            start_time=data["start_time"],
            end_time=data["end_time"],
            trades=[Trade(**t) for t in data.get("trades", [])],
            signals=[SignalEvent(**s) for s in data.get("signals", [])],
            equity=[EquityPoint(**e) for e in data.get("equity", [])],
            metrics=data.get("metrics", {}),
            synthetic=data.get("synthetic", False),
        )


def calculate_pnl(
    entry_price: float,
    exit_price: float,
    size: float,
    direction: SignalType,
    commission_rate: float = 0.001,
) -> float:
    """Realised P&L of a notional *size*, commission charged on both legs.

    ``raw = ±(exit - entry) / entry × size``; ``pnl = raw - size × rate × 2``.
    """
    if direction is SignalType.BULLISH:
        raw = (exit_price - entry_price) / entry_price * size
    else:
        raw = (entry_price - exit_price) / entry_price * size
    return raw - size * commission_rate * 2
