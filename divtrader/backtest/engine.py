"""Backtest engine — replays historical candles through signals and risk.

``simulate`` is pure and synchronous: the same candles and parameters
always produce the same trades, equity curve and metrics.  No orders are
placed and no I/O is performed; fetching data and persisting results is
the job of :mod:`divtrader.backtest.runner`.

Per candle ``i`` (from ``params.warmup`` to the end):

1. If a position is open, evaluate its exit policy at the close.
2. Build and combine candidate signals on the trailing window.
3. If flat, out of cooldown and the signal passes every entry filter,
   open a position.
4. Append an equity point (balance + unrealised P&L).

On the final candle any open position is closed with reason ``TIME``.
"""

import logging
from typing import Callable, Optional, Sequence

from divtrader.backtest.models import (
    BacktestResult,
    EquityPoint,
    Position,
    SignalEvent,
    Trade,
    calculate_pnl,
)
from divtrader.backtest.stats import compute_metrics
from divtrader.models.backtest_params import BacktestParams
from divtrader.risk.exit_policy import ExitParams, ExitPolicy, ExitReason, build_exit_policy
from divtrader.risk.governor import RiskGovernor
from divtrader.risk.position_sizer import calculate_position_size
from divtrader.strategy.analysis import (
    IndicatorSet,
    check_prices,
    compute_indicators,
    generate_signals,
)
from divtrader.strategy.models import Candle, Signal, SignalSource, SignalType, validate_series

logger = logging.getLogger("divtrader.backtest")

MIN_CANDLES = 50

# Per-candle failures that skip the candle's decisions instead of aborting.
_RECOVERABLE = (ArithmeticError, ValueError, IndexError, TypeError)


class InsufficientDataError(ValueError):
    """Too few candles for a meaningful simulation."""


class BacktestCancelled(Exception):
    """Raised when the cancel callback asks the run to stop."""

    def __init__(self, index: int) -> None:
        super().__init__(f"Backtest cancelled at candle {index}")
        self.index = index


def exit_params_from(params: BacktestParams) -> ExitParams:
    return ExitParams(
        stop_multiplier=params.stop_loss_multiplier,
        target_multiplier=params.take_profit_multiplier,
        trailing_activation=params.trailing_activation,
        trailing_distance=params.trailing_distance,
        max_hold_candles=params.max_hold_candles,
    )


def _side(direction: SignalType) -> str:
    return "buy" if direction is SignalType.BULLISH else "sell"


class _Simulation:
    """Mutable state of one ``simulate`` call."""

    def __init__(
        self,
        candles: Sequence[Candle],
        params: BacktestParams,
        governor: Optional[RiskGovernor],
    ) -> None:
        self.candles = candles
        self.params = params
        self.governor = governor
        self.exit_params = exit_params_from(params)
        self.indicators: IndicatorSet = compute_indicators(candles, params)
        self.balance = params.initial_balance
        self.position: Optional[Position] = None
        self.policy: Optional[ExitPolicy] = None
        self.last_exit_index: Optional[int] = None
        self.trades: list[Trade] = []
        self.signals: list[SignalEvent] = []
        self.equity: list[EquityPoint] = []

    # ── Exits ────────────────────────────────────────────────────────────

    def check_exit(self, i: int) -> None:
        position, policy = self.position, self.policy
        if position is None or policy is None:
            return
        price = self.candles[i].close
        reason = policy.evaluate(price, i - position.entry_index)
        position.stop_loss = policy.stop_price
        if reason is not None:
            self.close(i, reason)

    def close(self, i: int, reason: ExitReason) -> None:
        position = self.position
        candle = self.candles[i]
        rate = self.params.commission_rate
        pnl = calculate_pnl(position.entry_price, candle.close, position.size, position.type, rate)
        self.balance += pnl
        self.trades.append(
            Trade(
                type=position.type.value,
                entry_price=position.entry_price,
                exit_price=candle.close,
                entry_time=position.entry_time,
                exit_time=candle.timestamp,
                pnl=pnl,
                position_size=position.size,
                return_pct=pnl / position.size * 100.0,
                commission=position.size * rate * 2,
                exit_reason=reason.value,
            )
        )
        logger.debug(
            "EXIT %s @%.2f pnl=%.2f [%s] held=%d",
            position.type.value, candle.close, pnl, reason.value, i - position.entry_index,
        )
        if self.governor is not None:
            if position.governor_id is not None:
                self.governor.remove_position(position.governor_id)
            self.governor.record_trade_pnl(pnl)
        self.position = None
        self.policy = None
        self.last_exit_index = i

    # ── Entries ──────────────────────────────────────────────────────────

    def entry_block(self, i: int, signal: Signal) -> Optional[str]:
        """Return why *signal* may not be entered at *i*, or ``None``."""
        p = self.params
        ind = self.indicators
        price = ind.closes[i]

        if p.use_long_sma and ind.sma_long[i] is not None:
            if p.only_longs and price < ind.sma_long[i]:
                return "below long SMA"
            if p.only_shorts and price > ind.sma_long[i]:
                return "above long SMA"

        adx_value = ind.adx[i]
        if adx_value is None or adx_value < p.min_adx:
            return f"ADX {adx_value} < {p.min_adx}"

        previous = ind.volumes[i - p.volume_lookback : i]
        avg_volume = sum(previous) / p.volume_lookback
        if avg_volume <= 0:
            return "no volume history"
        ratio = ind.volumes[i] / avg_volume
        if ratio < p.min_volume_ratio:
            return f"volume ratio {ratio:.2f} < {p.min_volume_ratio}"

        current_rsi = ind.rsi[i]
        if current_rsi is None:
            return "no RSI"
        ref = ind.closes[i - p.momentum_bars]
        momentum = (price - ref) / ref
        if signal.type is SignalType.BULLISH:
            zone = current_rsi < p.oversold and momentum > -p.max_momentum
        else:
            zone = current_rsi > p.overbought and momentum < p.max_momentum
        if not (zone and p.quality.strength_allowed(signal.strength)):
            return f"RSI confirmation failed (rsi={current_rsi:.2f} momentum={momentum:.4f})"

        combined = signal.source is SignalSource.COMBINED
        if not p.quality.accepts(signal.strength, signal.confirmations, combined):
            return f"signal quality gate (strength={signal.strength:.2f})"
        return None

    def try_enter(self, i: int, signal: Optional[Signal]) -> None:
        p = self.params
        if signal is None or not signal.is_directional:
            return
        if signal.strength < p.entry_min_strength:
            return
        if self.last_exit_index is not None and i - self.last_exit_index < p.cooldown_candles:
            return

        blocked = self.entry_block(i, signal)
        if blocked is not None:
            logger.debug("Entry blocked @%d: %s", i, blocked)
            return

        candle = self.candles[i]
        price = candle.close
        policy = build_exit_policy(price, signal.type, self.indicators.atr[i], self.exit_params)
        if policy is None:
            return

        current_rsi = self.indicators.rsi[i]
        size = calculate_position_size(
            self.balance,
            signal,
            current_rsi,
            price,
            risk_per_trade=p.risk_per_trade,
            base_leverage=p.base_leverage,
            min_leverage=p.min_leverage,
            max_leverage=p.max_leverage,
        )
        if size is None:
            return

        governor_id = None
        if self.governor is not None:
            decision = self.governor.validate_trade(
                p.pair, _side(signal.type), price, policy.stop_price,
            )
            if not decision.approved:
                logger.info("Entry vetoed by risk governor @%d: %s", i, decision.reason)
                return
            tracked = self.governor.add_position(
                p.pair, _side(signal.type), price, size / price,
                policy.stop_price, policy.take_profit_price,
            )
            governor_id = tracked.id

        self.position = Position(
            type=signal.type,
            entry_price=price,
            size=size,
            stop_loss=policy.stop_price,
            take_profit=policy.take_profit_price,
            entry_index=i,
            entry_time=candle.timestamp,
            governor_id=governor_id,
        )
        self.policy = policy
        self.signals.append(
            SignalEvent(
                timestamp=candle.timestamp,
                type=_side(signal.type),
                price=price,
                source=signal.source.value,
                strength=signal.strength,
                rsi=current_rsi,
            )
        )
        logger.debug(
            "ENTER %s @%.2f size=%.2f strength=%.2f",
            signal.type.value, price, size, signal.strength,
        )

    # ── Equity ───────────────────────────────────────────────────────────

    def mark(self, i: int) -> None:
        candle = self.candles[i]
        unrealized = self.position.unrealized_pnl(candle.close) if self.position else 0.0
        self.equity.append(EquityPoint(candle.timestamp, self.balance + unrealized))


def simulate(
    candles: Sequence[Candle],
    params: BacktestParams = BacktestParams(),
    *,
    cancel: Optional[Callable[[], bool]] = None,
    governor: Optional[RiskGovernor] = None,
) -> BacktestResult:
    """Run one deterministic backtest over *candles*.

    Args:
        candles: Candles in strictly ascending timestamp order.
        params: Strategy, filter, exit and sizing parameters.
        cancel: Optional callable checked before every candle; returning
            ``True`` aborts the run.
        governor: Optional shared ``RiskGovernor`` that may veto entries
            and is fed every realised P&L.

    Returns:
        ``BacktestResult`` with one equity point per processed candle.

    Raises:
        InsufficientDataError: Fewer than 50 (or ``warmup + 1``) candles.
        BacktestCancelled: *cancel* returned ``True``.
        ValueError: Unordered candles or invalid prices.
    """
    required = max(MIN_CANDLES, params.warmup + 1)
    if len(candles) < required:
        raise InsufficientDataError(
            f"Insufficient data: only {len(candles)} candles. Need >= {required}."
        )
    validate_series(list(candles))
    check_prices(candles)

    sim = _Simulation(candles, params, governor)
    last = len(candles) - 1

    for i in range(params.warmup, len(candles)):
        if cancel is not None and cancel():
            logger.info("Backtest cancelled at candle %d of %d", i, len(candles))
            raise BacktestCancelled(i)

        try:
            sim.check_exit(i)
            if sim.position is None and i < last:
                signals = generate_signals(candles, sim.indicators, i, params)
                sim.try_enter(i, signals.combined)
        except _RECOVERABLE as exc:
            logger.warning(
                "Skipping candle %d (t=%d): %s: %s",
                i, candles[i].timestamp, type(exc).__name__, exc,
            )

        if i == last and sim.position is not None:
            sim.close(i, ExitReason.TIME)
        sim.mark(i)

    metrics = compute_metrics(params.initial_balance, sim.balance, sim.trades, sim.equity)
    logger.info(
        "Backtest complete: %d trades, %.2f%% return, win rate %.1f%%, max DD %.1f%%",
        metrics["total_trades"],
        metrics["total_return"] * 100,
        metrics["win_rate"] * 100,
        metrics["max_drawdown"],
    )
    return BacktestResult(
        params=params.to_dict(),
        pair=params.pair,
        timeframe=params.timeframe,
        start_time=candles[0].timestamp,
        end_time=candles[-1].timestamp,
        trades=sim.trades,
        signals=sim.signals,
        equity=sim.equity,
        metrics=metrics,
    )
