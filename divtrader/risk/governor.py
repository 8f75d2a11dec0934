"""Risk governor — account-level limits and the emergency-stop state machine.

One ``RiskGovernor`` is shared by every backtest run and live signal task
trading the same account.  All state changes happen under a single lock so
the emergency-stop flag is never read-modify-written from two paths at
once.

States::

    NORMAL ──daily loss ≥ max_daily_loss──▶ DAILY_LIMIT_REACHED ──reset_daily()──▶ NORMAL
    NORMAL ──loss or open risk ≥ emergency_stop_loss──▶ EMERGENCY_STOPPED
    EMERGENCY_STOPPED ──reset_emergency_stop()──▶ NORMAL

While emergency-stopped every ``validate_trade`` call is rejected with
``"Emergency stop activated"``.  The stop is never cleared automatically.
"""

import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Optional

from divtrader.risk.position_sizer import RiskPosition, calculate_risk_position

logger = logging.getLogger("divtrader.risk")

Listener = Callable[[str, dict], None]

EMERGENCY_CHANNEL = "emergency-stop"
RISK_CHANNEL = "risk"


def _default_correlations() -> dict[str, tuple[str, ...]]:
    return {"BTC": ("ETH",), "ETH": ("BTC",)}


@dataclass(frozen=True)
class RiskLimits:
    """Account-level limits.  Loss limits are fractions of the balance."""

    max_open_positions: int = 3
    max_daily_loss: float = 0.06
    max_weekly_loss: float = 0.10
    emergency_stop_loss: float = 0.08
    max_concentration: float = 0.5
    max_account_risk: float = 0.02
    max_same_asset_positions: int = 2
    correlated_assets: dict[str, tuple[str, ...]] = field(
        default_factory=_default_correlations
    )

    def __post_init__(self) -> None:
        for name in ("max_daily_loss", "max_weekly_loss", "emergency_stop_loss"):
            value = getattr(self, name)
            if not 0 < value < 1:
                raise ValueError(f"{name} must be within (0, 1), got {value}")
        if self.max_open_positions < 1:
            raise ValueError(
                f"max_open_positions must be at least 1, got {self.max_open_positions}"
            )


class GovernorState(str, Enum):
    NORMAL = "NORMAL"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    EMERGENCY_STOPPED = "EMERGENCY_STOPPED"


@dataclass
class TrackedPosition:
    id: str
    pair: str
    side: str  # "buy" or "sell"
    entry_price: float
    units: float
    stop_loss: float
    take_profit: Optional[float] = None
    opened_at: float = field(default_factory=time.time)

    @property
    def position_value(self) -> float:
        return self.units * self.entry_price

    @property
    def risk_amount(self) -> float:
        return self.units * abs(self.entry_price - self.stop_loss)


@dataclass
class TradeDecision:
    approved: bool
    reason: Optional[str] = None
    risk_level: str = "LOW"
    position: Optional[RiskPosition] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "risk_level": self.risk_level,
            "position": asdict(self.position) if self.position else None,
            "warnings": list(self.warnings),
        }


def _asset(pair: str) -> str:
    return pair.split("-")[0].upper()


class RiskGovernor:
    """Tracks P&L and open exposure, and vetoes trades that break limits.

    Args:
        limits: Risk limits.
        account_balance: Reference balance that loss fractions are
            measured against.  Changes only via ``update_account_balance``.
        listener: Optional ``listener(channel, payload)`` callback invoked
            (outside the lock) on emergency-stop and limit events.
    """

    def __init__(
        self,
        limits: RiskLimits = RiskLimits(),
        account_balance: float = 10_000.0,
        listener: Optional[Listener] = None,
    ) -> None:
        if account_balance <= 0:
            raise ValueError(f"account_balance must be positive, got {account_balance}")
        self.limits = limits
        self._lock = threading.Lock()
        self._listener = listener
        self._balance = float(account_balance)
        self._positions: dict[str, TrackedPosition] = {}
        self._daily_pnl = 0.0
        self._weekly_pnl = 0.0
        self._session_pnl = 0.0
        self._emergency = False
        self._emergency_reason: Optional[str] = None
        self._daily_limit = False
        self._weekly_limit = False

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def state(self) -> GovernorState:
        with self._lock:
            return self._state()

    @property
    def emergency_stop_triggered(self) -> bool:
        with self._lock:
            return self._emergency

    def _state(self) -> GovernorState:
        if self._emergency:
            return GovernorState.EMERGENCY_STOPPED
        if self._daily_limit:
            return GovernorState.DAILY_LIMIT_REACHED
        return GovernorState.NORMAL

    def portfolio_risk(self) -> dict:
        with self._lock:
            return self._portfolio_risk()

    def _portfolio_risk(self) -> dict:
        positions = list(self._positions.values())
        total_risk = sum(p.risk_amount for p in positions)
        total_exposure = sum(p.position_value for p in positions)
        asset_exposure: dict[str, float] = {}
        for p in positions:
            asset = _asset(p.pair)
            asset_exposure[asset] = asset_exposure.get(asset, 0.0) + p.position_value
        largest = max(asset_exposure.values(), default=0.0)
        return {
            "total_risk": round(total_risk, 2),
            "total_exposure": round(total_exposure, 2),
            "risk_percent": round(total_risk / self._balance * 100, 2),
            "exposure_percent": round(total_exposure / self._balance * 100, 2),
            "concentration_risk": round(largest / self._balance * 100, 2),
            "position_count": len(positions),
            "asset_exposure": asset_exposure,
        }

    def get_risk_status(self) -> dict:
        """Snapshot for status endpoints and dashboards."""
        with self._lock:
            return {
                "account_balance": self._balance,
                "daily_pnl": self._daily_pnl,
                "weekly_pnl": self._weekly_pnl,
                "session_pnl": self._session_pnl,
                "open_positions": len(self._positions),
                "emergency_stop_triggered": self._emergency,
                "emergency_stop_reason": self._emergency_reason,
                "daily_loss_limit_reached": self._daily_limit,
                "weekly_loss_limit_reached": self._weekly_limit,
                "state": self._state().value,
                "risk_metrics": self._portfolio_risk(),
                "limits": {
                    "max_daily_loss": self.limits.max_daily_loss * 100,
                    "max_weekly_loss": self.limits.max_weekly_loss * 100,
                    "emergency_stop_loss": self.limits.emergency_stop_loss * 100,
                    "max_open_positions": self.limits.max_open_positions,
                    "max_concentration": self.limits.max_concentration * 100,
                },
            }

    # ── Trade validation ─────────────────────────────────────────────────

    def validate_trade(
        self,
        pair: str,
        side: str,
        entry_price: float,
        stop_loss: float,
    ) -> TradeDecision:
        """Decide whether a new trade may be opened.

        Checks run in a fixed order and the first failure is returned:
        emergency stop, daily limit, weekly limit, open-position count,
        sizing, concentration, would-exceed-daily-loss, same-asset count.
        """
        with self._lock:
            if self._emergency:
                return TradeDecision(False, "Emergency stop activated", "CRITICAL")
            if self._daily_limit:
                return TradeDecision(False, "Daily loss limit reached", "HIGH")
            if self._weekly_limit:
                return TradeDecision(False, "Weekly loss limit reached", "HIGH")
            if len(self._positions) >= self.limits.max_open_positions:
                return TradeDecision(
                    False,
                    f"Maximum {self.limits.max_open_positions} positions already open",
                    "MEDIUM",
                )

            position = calculate_risk_position(
                self._balance,
                entry_price,
                stop_loss,
                risk_pct=self.limits.max_account_risk,
                max_account_risk=self.limits.max_account_risk,
                max_concentration=self.limits.max_concentration,
            )
            if position is None:
                return TradeDecision(False, "Position calculation failed", "HIGH")

            warnings: list[str] = []
            current_value = sum(p.position_value for p in self._positions.values())
            concentration = (current_value + position.position_value) / self._balance
            if concentration > self.limits.max_concentration:
                return TradeDecision(
                    False,
                    f"Total position concentration {concentration * 100:.2f}% exceeds "
                    f"maximum {self.limits.max_concentration * 100:.0f}%",
                    "HIGH",
                    position,
                )
            if position.position_value < self._balance * 0.001:
                warnings.append(
                    f"Position value ${position.position_value} is very small (< 0.1% of account)"
                )

            potential_loss = abs(min(self._daily_pnl, 0.0)) + position.risk_amount
            if potential_loss > self._balance * self.limits.max_daily_loss:
                return TradeDecision(False, "Would exceed daily loss limit", "HIGH", position)

            asset = _asset(pair)
            same_asset = [p for p in self._positions.values() if _asset(p.pair) == asset]
            if len(same_asset) >= self.limits.max_same_asset_positions:
                return TradeDecision(
                    False,
                    f"Already have {len(same_asset)} positions in {asset}",
                    "MEDIUM",
                    position,
                )
            if same_asset:
                warnings.append(f"Already have {len(same_asset)} position(s) in same asset")
            correlated = self.limits.correlated_assets.get(asset, ())
            related = [p.pair for p in self._positions.values() if _asset(p.pair) in correlated]
            if related:
                warnings.append(
                    f"Potentially correlated with existing {', '.join(related)} positions"
                )

            logger.debug("Trade approved: %s %s @ %.8f", side, pair, entry_price)
            return TradeDecision(True, None, "LOW", position, warnings)

    # ── Position tracking ────────────────────────────────────────────────

    def add_position(
        self,
        pair: str,
        side: str,
        entry_price: float,
        units: float,
        stop_loss: float,
        take_profit: Optional[float] = None,
        position_id: Optional[str] = None,
    ) -> TrackedPosition:
        position = TrackedPosition(
            id=position_id or uuid.uuid4().hex,
            pair=pair,
            side=side,
            entry_price=entry_price,
            units=units,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        with self._lock:
            self._positions[position.id] = position
            logger.info(
                "Position added: %s %.8f %s (risk %.2f)",
                side, units, pair, position.risk_amount,
            )
            events = self._check_open_risk()
        self._emit(events)
        return position

    def remove_position(self, position_id: str) -> Optional[TrackedPosition]:
        with self._lock:
            position = self._positions.pop(position_id, None)
        if position is None:
            logger.warning("Position %s not found for removal", position_id)
        else:
            logger.info("Position %s removed", position_id)
        return position

    def update_account_balance(self, balance: float) -> None:
        if balance <= 0:
            raise ValueError(f"account balance must be positive, got {balance}")
        with self._lock:
            self._balance = float(balance)
            events = self._check_open_risk()
        logger.info("Account balance updated: $%.2f", balance)
        self._emit(events)

    # ── P&L and limits ───────────────────────────────────────────────────

    def record_trade_pnl(self, pnl: float) -> GovernorState:
        """Book a realised P&L and apply the loss limits.

        Returns the state after the update.
        """
        events: list[tuple[str, dict]] = []
        with self._lock:
            self._daily_pnl += pnl
            self._weekly_pnl += pnl
            self._session_pnl += pnl

            daily_loss = max(-self._daily_pnl, 0.0) / self._balance
            if daily_loss >= self.limits.max_daily_loss and not self._daily_limit:
                self._daily_limit = True
                logger.warning(
                    "Daily loss limit reached: pnl=%.2f (%.2f%%)",
                    self._daily_pnl, daily_loss * 100,
                )
                events.append((RISK_CHANNEL, {"type": "daily-limit-reached", "daily_pnl": self._daily_pnl}))

            weekly_loss = max(-self._weekly_pnl, 0.0) / self._balance
            if weekly_loss >= self.limits.max_weekly_loss and not self._weekly_limit:
                self._weekly_limit = True
                logger.warning(
                    "Weekly loss limit reached: pnl=%.2f (%.2f%%)",
                    self._weekly_pnl, weekly_loss * 100,
                )
                events.append((RISK_CHANNEL, {"type": "weekly-limit-reached", "weekly_pnl": self._weekly_pnl}))

            session_loss = max(-self._session_pnl, 0.0) / self._balance
            if session_loss >= self.limits.emergency_stop_loss:
                events.extend(self._trigger("Total loss limit exceeded"))

            state = self._state()
        self._emit(events)
        return state

    def trigger_emergency_stop(self, reason: str) -> None:
        with self._lock:
            events = self._trigger(reason)
        self._emit(events)

    def reset_emergency_stop(self) -> None:
        """Manual reset.  Starts a new loss-measurement session."""
        with self._lock:
            self._emergency = False
            self._emergency_reason = None
            self._session_pnl = 0.0
        logger.info("Emergency stop manually reset")
        self._emit([(EMERGENCY_CHANNEL, {"type": "emergency-stop-reset", "timestamp": time.time()})])

    def reset_daily(self) -> None:
        with self._lock:
            self._daily_pnl = 0.0
            self._daily_limit = False
        logger.info("Daily tracking reset")

    def reset_weekly(self) -> None:
        with self._lock:
            self._weekly_pnl = 0.0
            self._weekly_limit = False
        logger.info("Weekly tracking reset")

    # ── Helpers (caller holds the lock) ──────────────────────────────────

    def _check_open_risk(self) -> list[tuple[str, dict]]:
        total_risk = sum(p.risk_amount for p in self._positions.values())
        if total_risk / self._balance >= self.limits.emergency_stop_loss:
            return self._trigger("Risk exposure too high")
        return []

    def _trigger(self, reason: str) -> list[tuple[str, dict]]:
        if self._emergency:
            return []
        self._emergency = True
        self._emergency_reason = reason
        logger.critical("EMERGENCY STOP TRIGGERED: %s", reason)
        return [
            (
                EMERGENCY_CHANNEL,
                {
                    "type": "emergency-stop-triggered",
                    "reason": reason,
                    "timestamp": time.time(),
                    "positions": [asdict(p) for p in self._positions.values()],
                },
            )
        ]

    def _emit(self, events: list[tuple[str, dict]]) -> None:
        if self._listener is None:
            return
        for channel, payload in events:
            try:
                self._listener(channel, payload)
            except Exception:
                logger.exception("Risk listener failed on channel %s", channel)
