"""ATR exit policy — fixed stop, take-profit, trailing stop and time exit.

Distances are fixed at entry as fractions of the entry price:

    stop_pct   = ATR × stop_multiplier   / entry
    target_pct = ATR × target_multiplier / entry

Once unrealised return exceeds ``trailing_activation × target_pct`` the
stop trails ``trailing_distance × target_pct`` behind the best return seen
so far.  The stop only ever tightens.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from divtrader.strategy.models import SignalType

logger = logging.getLogger("divtrader.exit_policy")


class ExitReason(str, Enum):
    TARGET = "TARGET"
    STOP = "STOP"
    TIME = "TIME"


@dataclass(frozen=True)
class ExitParams:
    stop_multiplier: float = 1.5
    target_multiplier: float = 1.6
    trailing_activation: float = 0.6
    trailing_distance: float = 0.15
    max_hold_candles: int = 36


class ExitPolicy:
    """Tracks exit levels for a single open position.

    Args:
        entry_price: Fill price.
        direction: ``SignalType.BULLISH`` (long) or ``SignalType.BEARISH``.
        atr: ATR value at entry.
        params: Multipliers and holding limit.

    Raises:
        ValueError: On a non-finite or non-positive entry price or ATR, or
            a neutral direction.
    """

    def __init__(
        self,
        entry_price: float,
        direction: Union[SignalType, str],
        atr: float,
        params: ExitParams = ExitParams(),
    ) -> None:
        if not (isinstance(entry_price, (int, float)) and math.isfinite(entry_price)) or entry_price <= 0:
            raise ValueError(f"entry_price must be positive and finite, got {entry_price!r}")
        if not (isinstance(atr, (int, float)) and math.isfinite(atr)) or atr <= 0:
            raise ValueError(f"atr must be positive and finite, got {atr!r}")
        direction = SignalType(direction)
        if direction is SignalType.NEUTRAL:
            raise ValueError("Cannot build an exit policy for a neutral position")
        if params.max_hold_candles < 1:
            raise ValueError(
                f"max_hold_candles must be at least 1, got {params.max_hold_candles}"
            )

        self.entry_price = float(entry_price)
        self.direction = direction
        self.params = params
        self.stop_pct = atr * params.stop_multiplier / self.entry_price
        self.target_pct = atr * params.target_multiplier / self.entry_price
        self._stop_level = -self.stop_pct
        self.trailing_active = False

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_long(self) -> bool:
        return self.direction is SignalType.BULLISH

    def unrealized_return(self, price: float) -> float:
        if self.is_long:
            return (price - self.entry_price) / self.entry_price
        return (self.entry_price - price) / self.entry_price

    @property
    def stop_level(self) -> float:
        """Current stop as a return threshold (negative until trailing locks profit)."""
        return self._stop_level

    @property
    def stop_price(self) -> float:
        if self.is_long:
            return self.entry_price * (1 + self._stop_level)
        return self.entry_price * (1 - self._stop_level)

    @property
    def take_profit_price(self) -> float:
        if self.is_long:
            return self.entry_price * (1 + self.target_pct)
        return self.entry_price * (1 - self.target_pct)

    # ── Evaluation ───────────────────────────────────────────────────────

    def evaluate(self, price: float, bars_held: int) -> Optional[ExitReason]:
        """Update the trailing stop at *price* and return an exit reason.

        Priority: TARGET, then STOP (fixed or trailing), then TIME.
        """
        ret = self.unrealized_return(price)

        if ret > self.target_pct * self.params.trailing_activation:
            trailed = ret - self.target_pct * self.params.trailing_distance
            if trailed > self._stop_level:
                self._stop_level = trailed
                self.trailing_active = True

        if ret >= self.target_pct:
            return ExitReason.TARGET
        if ret <= self._stop_level:
            return ExitReason.STOP
        if bars_held >= self.params.max_hold_candles:
            return ExitReason.TIME
        return None


def build_exit_policy(
    entry_price: float,
    direction: Union[SignalType, str],
    atr: Optional[float],
    params: ExitParams = ExitParams(),
) -> Optional[ExitPolicy]:
    """Like ``ExitPolicy(...)`` but returns ``None`` on invalid input."""
    if atr is None:
        logger.warning("No ATR available at entry %.8f; exit policy not built", entry_price)
        return None
    try:
        return ExitPolicy(entry_price, direction, atr, params)
    except ValueError as exc:
        logger.warning("Exit policy rejected: %s", exc)
        return None
