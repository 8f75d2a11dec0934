"""Tests for divtrader.risk — position sizing, exit policy and drawdown tracking."""

import pytest

from divtrader.risk.drawdown import DrawdownTracker, max_drawdown
from divtrader.risk.exit_policy import ExitParams, ExitPolicy, ExitReason, build_exit_policy
from divtrader.risk.position_sizer import (
    calculate_position_size,
    calculate_risk_position,
    leverage_for,
)
from divtrader.strategy.models import Signal, SignalSource, SignalType


def _sig(strength, direction=SignalType.BULLISH, source=SignalSource.WM, confirmations=1):
    return Signal(direction, strength, 0.7, source, confirmations=confirmations)


# ── Leverage ─────────────────────────────────────────────────────────────


class TestLeverage:

    def test_base_leverage(self):
        assert leverage_for(_sig(0.5)) == pytest.approx(8.0)

    def test_weak_signal(self):
        assert leverage_for(_sig(0.3)) == pytest.approx(6.0)

    def test_strong_signal(self):
        assert leverage_for(_sig(0.9)) == pytest.approx(10.0)

    def test_strong_trend_bonus(self):
        assert leverage_for(_sig(0.9, source=SignalSource.TREND)) == pytest.approx(12.0)

    def test_combined_bonus(self):
        signal = _sig(0.5, source=SignalSource.COMBINED, confirmations=3)
        assert leverage_for(signal) == pytest.approx(8.8)

    def test_opposite_zone_penalty(self):
        assert leverage_for(_sig(0.5), rsi=70.0) == pytest.approx(5.6)

    def test_opposite_zone_floor(self):
        signal = _sig(0.3, direction=SignalType.BEARISH)
        assert leverage_for(signal, rsi=30.0) == pytest.approx(5.0)


# ── Notional sizing ──────────────────────────────────────────────────────


class TestPositionSize:

    def test_size_formula(self):
        # 10,000 × 0.003 × 8
        assert calculate_position_size(10_000.0, _sig(0.5), 50.0) == pytest.approx(240.0)

    def test_none_rsi_treated_as_neutral(self):
        assert calculate_position_size(10_000.0, _sig(0.5), None) == pytest.approx(240.0)

    def test_invalid_balance(self):
        assert calculate_position_size(0.0, _sig(0.5)) is None
        assert calculate_position_size(float("nan"), _sig(0.5)) is None

    def test_invalid_price(self):
        assert calculate_position_size(10_000.0, _sig(0.5), 50.0, price=0.0) is None


# ── Stop-distance sizing ─────────────────────────────────────────────────


class TestRiskPosition:

    def test_basic_sizing(self):
        pos = calculate_risk_position(10_000.0, 100.0, 90.0)
        assert pos.units == pytest.approx(20.0)
        assert pos.position_value == pytest.approx(2_000.0)
        assert pos.risk_amount == pytest.approx(200.0)
        assert pos.risk_percent == pytest.approx(2.0)
        assert pos.is_long is True

    def test_concentration_cap(self):
        pos = calculate_risk_position(10_000.0, 100.0, 98.0)
        assert pos.position_value == pytest.approx(5_000.0)
        assert pos.units == pytest.approx(50.0)
        assert pos.risk_amount == pytest.approx(100.0)
        assert pos.leverage == pytest.approx(0.5)

    def test_risk_pct_capped_at_maximum(self):
        pos = calculate_risk_position(10_000.0, 100.0, 90.0, risk_pct=0.05)
        assert pos.risk_percent == pytest.approx(2.0)

    def test_short_position(self):
        pos = calculate_risk_position(10_000.0, 100.0, 110.0)
        assert pos.is_long is False

    def test_stop_equals_entry(self):
        assert calculate_risk_position(10_000.0, 100.0, 100.0) is None

    def test_invalid_inputs(self):
        assert calculate_risk_position(-1.0, 100.0, 90.0) is None
        assert calculate_risk_position(10_000.0, 0.0, 90.0) is None


# ── Exit policy ──────────────────────────────────────────────────────────


class TestExitPolicy:
    """Entry 100, ATR 2: stop 3%, target 3.2%."""

    def _long(self):
        return ExitPolicy(100.0, SignalType.BULLISH, 2.0)

    def test_levels(self):
        policy = self._long()
        assert policy.stop_pct == pytest.approx(0.03)
        assert policy.target_pct == pytest.approx(0.032)
        assert policy.stop_price == pytest.approx(97.0)
        assert policy.take_profit_price == pytest.approx(103.2)

    def test_target(self):
        assert self._long().evaluate(104.0, 1) is ExitReason.TARGET

    def test_stop(self):
        assert self._long().evaluate(96.5, 1) is ExitReason.STOP

    def test_time(self):
        assert self._long().evaluate(100.0, 36) is ExitReason.TIME

    def test_hold(self):
        assert self._long().evaluate(100.5, 5) is None

    def test_trailing_stop_locks_profit(self):
        policy = self._long()
        # ret 2.5% > 0.6 × 3.2% activates trailing at 2.5% - 0.15 × 3.2%
        assert policy.evaluate(102.5, 1) is None
        assert policy.trailing_active
        assert policy.stop_level == pytest.approx(0.0202)
        assert policy.stop_price == pytest.approx(102.02)
        assert policy.evaluate(101.5, 2) is ExitReason.STOP

    def test_trailing_stop_never_loosens(self):
        policy = self._long()
        policy.evaluate(102.5, 1)
        policy.evaluate(102.0, 2)
        assert policy.stop_level == pytest.approx(0.0202)

    def test_short_target(self):
        policy = ExitPolicy(100.0, SignalType.BEARISH, 2.0)
        assert policy.take_profit_price == pytest.approx(96.8)
        assert policy.evaluate(96.0, 1) is ExitReason.TARGET
        assert policy.evaluate(103.5, 2) is ExitReason.STOP

    def test_custom_hold_limit(self):
        policy = ExitPolicy(100.0, "bullish", 2.0, ExitParams(max_hold_candles=3))
        assert policy.evaluate(100.0, 3) is ExitReason.TIME

    def test_neutral_rejected(self):
        with pytest.raises(ValueError):
            ExitPolicy(100.0, SignalType.NEUTRAL, 2.0)

    def test_build_returns_none_on_invalid(self):
        assert build_exit_policy(100.0, SignalType.BULLISH, None) is None
        assert build_exit_policy(100.0, SignalType.BULLISH, 0.0) is None
        assert build_exit_policy(100.0, SignalType.BULLISH, 2.0) is not None


# ── Drawdown ─────────────────────────────────────────────────────────────


class TestDrawdown:

    def test_tracks_peak_and_max(self):
        tracker = DrawdownTracker(100.0)
        tracker.update(120.0)
        tracker.update(90.0)
        assert tracker.peak_equity == 120.0
        assert tracker.drawdown_pct == pytest.approx(25.0)
        tracker.update(130.0)
        assert tracker.drawdown_pct == 0.0
        assert tracker.max_drawdown_pct == pytest.approx(25.0)

    def test_clamped_to_100(self):
        tracker = DrawdownTracker(100.0)
        tracker.update(-50.0)
        assert tracker.drawdown_pct == 100.0

    def test_curve_helper(self):
        assert max_drawdown([110.0, 99.0, 120.0], 100.0) == pytest.approx(10.0)

    def test_invalid_initial_equity(self):
        with pytest.raises(ValueError):
            DrawdownTracker(0.0)
