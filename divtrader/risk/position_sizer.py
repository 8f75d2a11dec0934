"""Position sizing — pure math, no I/O.

Two sizing models:

* ``calculate_position_size`` — notional size from balance, a fixed risk
  fraction and a leverage multiplier chosen from the signal's quality.
  Used by the backtest and live suggestion paths.
* ``calculate_risk_position`` — stop-distance sizing capped by maximum
  account risk and concentration.  Used by the risk governor.

Both return ``None`` on invalid input; callers treat ``None`` as "no trade".
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from divtrader.strategy.models import Signal, SignalSource, SignalType

logger = logging.getLogger("divtrader.position_sizer")

DEFAULT_RISK_PER_TRADE = 0.003
DEFAULT_BASE_LEVERAGE = 8.0
DEFAULT_MIN_LEVERAGE = 5.0
DEFAULT_MAX_LEVERAGE = 12.0

WEAK_SIGNAL = 0.4
WEAK_LEVERAGE = 6.0
STRONG_SIGNAL = 0.8
STRONG_LEVERAGE = 10.0
TREND_BONUS_STRENGTH = 0.6
TREND_BONUS = 1.2
TREND_BONUS_CAP = 12.0
COMBINED_BONUS_CONFIRMATIONS = 3
COMBINED_BONUS = 1.1
COMBINED_BONUS_CAP = 11.0
OPPOSITE_ZONE_OVERBOUGHT = 65.0
OPPOSITE_ZONE_OVERSOLD = 35.0
OPPOSITE_ZONE_PENALTY = 0.7
OPPOSITE_ZONE_FLOOR = 5.0


def _positive(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def leverage_for(
    signal: Signal,
    rsi: float = 50.0,
    base_leverage: float = DEFAULT_BASE_LEVERAGE,
    min_leverage: float = DEFAULT_MIN_LEVERAGE,
    max_leverage: float = DEFAULT_MAX_LEVERAGE,
) -> float:
    """Pick a leverage multiplier from signal quality and RSI context.

    Rules, applied in order:
        - strength < 0.4 → 6×; strength > 0.8 → 10×; else *base_leverage*.
        - trend signal stronger than 0.6 → ×1.2 (cap 12).
        - combined signal with ≥3 confirmations → ×1.1 (cap 11).
        - bullish with RSI > 65 or bearish with RSI < 35 → ×0.7 (floor 5).
        - result clamped to ``[min_leverage, max_leverage]``.
    """
    leverage = base_leverage
    if signal.strength < WEAK_SIGNAL:
        leverage = WEAK_LEVERAGE
    if signal.strength > STRONG_SIGNAL:
        leverage = STRONG_LEVERAGE

    if signal.source is SignalSource.TREND and signal.strength > TREND_BONUS_STRENGTH:
        leverage = min(TREND_BONUS_CAP, leverage * TREND_BONUS)
    if (
        signal.source is SignalSource.COMBINED
        and signal.confirmations >= COMBINED_BONUS_CONFIRMATIONS
    ):
        leverage = min(COMBINED_BONUS_CAP, leverage * COMBINED_BONUS)

    opposite_zone = (
        (signal.type is SignalType.BULLISH and rsi > OPPOSITE_ZONE_OVERBOUGHT)
        or (signal.type is SignalType.BEARISH and rsi < OPPOSITE_ZONE_OVERSOLD)
    )
    if opposite_zone:
        leverage = max(OPPOSITE_ZONE_FLOOR, leverage * OPPOSITE_ZONE_PENALTY)

    return min(max_leverage, max(min_leverage, leverage))


def calculate_position_size(
    balance: float,
    signal: Signal,
    rsi: Optional[float] = 50.0,
    price: Optional[float] = None,
    *,
    risk_per_trade: float = DEFAULT_RISK_PER_TRADE,
    base_leverage: float = DEFAULT_BASE_LEVERAGE,
    min_leverage: float = DEFAULT_MIN_LEVERAGE,
    max_leverage: float = DEFAULT_MAX_LEVERAGE,
) -> Optional[float]:
    """Notional position size: ``balance × risk_per_trade × leverage``.

    Args:
        balance: Current realised balance.
        signal: The signal being traded.
        rsi: RSI at entry; ``None`` is treated as neutral (50).
        price: Entry price, validated when given.

    Returns:
        Position size in quote currency, or ``None`` when *balance* or
        *price* is non-finite or non-positive.
    """
    if not _positive(balance):
        logger.warning("Position sizing rejected: invalid balance %r", balance)
        return None
    if price is not None and not _positive(price):
        logger.warning("Position sizing rejected: invalid price %r", price)
        return None
    if not _positive(risk_per_trade):
        logger.warning("Position sizing rejected: invalid risk fraction %r", risk_per_trade)
        return None

    if rsi is None or not math.isfinite(rsi):
        rsi = 50.0
    leverage = leverage_for(signal, rsi, base_leverage, min_leverage, max_leverage)
    size = balance * risk_per_trade * leverage
    logger.debug(
        "Sizing: risk=%.2f leverage=%.2fx strength=%.2f size=%.2f",
        balance * risk_per_trade, leverage, signal.strength, size,
    )
    return size


# ── Stop-distance sizing ─────────────────────────────────────────────────


@dataclass(frozen=True)
class RiskPosition:
    """Result of stop-distance sizing."""

    units: float
    position_value: float
    risk_amount: float
    risk_percent: float  # percent of balance, e.g. 2.0
    leverage: float
    price_risk: float
    entry_price: float
    stop_loss: float
    is_long: bool


def calculate_risk_position(
    balance: float,
    entry_price: float,
    stop_loss: float,
    risk_pct: float = 0.02,
    max_account_risk: float = 0.02,
    max_concentration: float = 0.5,
) -> Optional[RiskPosition]:
    """Size a position so that hitting *stop_loss* loses ``risk_pct`` of balance.

    Formula::

        risk_amount = balance × min(risk_pct, max_account_risk)
        units       = risk_amount / |entry - stop|
        value       = min(units × entry, balance × max_concentration)

    Returns ``None`` on non-positive inputs or a zero stop distance.
    """
    if not (_positive(balance) and _positive(entry_price) and _positive(stop_loss)):
        logger.warning(
            "Risk sizing rejected: balance=%r entry=%r stop=%r",
            balance, entry_price, stop_loss,
        )
        return None
    if not _positive(risk_pct):
        logger.warning("Risk sizing rejected: invalid risk fraction %r", risk_pct)
        return None

    if risk_pct > max_account_risk:
        logger.info("Risk %.4f exceeds maximum %.4f, using maximum", risk_pct, max_account_risk)
        risk_pct = max_account_risk

    price_risk = abs(entry_price - stop_loss)
    if price_risk == 0:
        logger.warning("Risk sizing rejected: stop equals entry (%s)", entry_price)
        return None

    is_long = stop_loss < entry_price
    units = balance * risk_pct / price_risk
    value = min(units * entry_price, balance * max_concentration)
    units = value / entry_price
    risk_amount = units * price_risk

    return RiskPosition(
        units=round(units, 8),
        position_value=round(value, 2),
        risk_amount=round(risk_amount, 2),
        risk_percent=round(risk_amount / balance * 100.0, 4),
        leverage=round(value / balance, 2),
        price_risk=round(price_risk, 8),
        entry_price=float(entry_price),
        stop_loss=float(stop_loss),
        is_long=is_long,
    )
