"""Tests for divtrader.risk.governor — limits, vetoes and the emergency stop."""

import pytest

from divtrader.risk.governor import (
    EMERGENCY_CHANNEL,
    RISK_CHANNEL,
    GovernorState,
    RiskGovernor,
    RiskLimits,
)


def _governor(listener=None, **limits) -> RiskGovernor:
    return RiskGovernor(RiskLimits(**limits), account_balance=10_000.0, listener=listener)


# ── Emergency stop ───────────────────────────────────────────────────────


class TestEmergencyStop:

    def test_cumulative_loss_triggers_emergency_stop(self):
        """8% cumulative loss on $10,000 stops trading until manual reset."""
        gov = _governor()
        assert gov.record_trade_pnl(-300.0) is GovernorState.NORMAL
        assert gov.record_trade_pnl(-300.0) is GovernorState.DAILY_LIMIT_REACHED
        assert gov.record_trade_pnl(-200.0) is GovernorState.EMERGENCY_STOPPED
        assert gov.emergency_stop_triggered

        for _ in range(3):
            decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
            assert not decision.approved
            assert "Emergency stop" in decision.reason

        gov.reset_emergency_stop()
        assert not gov.emergency_stop_triggered
        decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert decision.reason == "Daily loss limit reached"

        gov.reset_daily()
        assert gov.state is GovernorState.NORMAL
        assert gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0).approved

    def test_reset_starts_new_session(self):
        gov = _governor(max_daily_loss=0.5, max_weekly_loss=0.5)
        gov.record_trade_pnl(-800.0)
        assert gov.emergency_stop_triggered
        gov.reset_emergency_stop()
        gov.record_trade_pnl(-100.0)
        assert not gov.emergency_stop_triggered

    def test_open_risk_triggers_emergency_stop(self):
        gov = _governor()
        gov.add_position("BTC-USDT", "buy", 100.0, 100.0, 90.0)
        status = gov.get_risk_status()
        assert status["emergency_stop_triggered"]
        assert status["emergency_stop_reason"] == "Risk exposure too high"

    def test_manual_trigger(self):
        gov = _governor()
        gov.trigger_emergency_stop("operator")
        assert gov.state is GovernorState.EMERGENCY_STOPPED
        assert gov.get_risk_status()["emergency_stop_reason"] == "operator"


# ── Listener ─────────────────────────────────────────────────────────────


class TestListener:

    def test_events_published(self):
        events = []
        gov = _governor(listener=lambda channel, payload: events.append((channel, payload)))
        gov.record_trade_pnl(-800.0)
        channels = [c for c, _ in events]
        assert RISK_CHANNEL in channels
        assert EMERGENCY_CHANNEL in channels
        emergency = [p for c, p in events if c == EMERGENCY_CHANNEL][0]
        assert emergency["type"] == "emergency-stop-triggered"
        assert emergency["reason"] == "Total loss limit exceeded"

    def test_emergency_fires_once(self):
        events = []
        gov = _governor(listener=lambda channel, payload: events.append(channel))
        gov.record_trade_pnl(-800.0)
        gov.record_trade_pnl(-100.0)
        assert events.count(EMERGENCY_CHANNEL) == 1

    def test_failing_listener_does_not_break_governor(self):
        def _boom(channel, payload):
            raise RuntimeError("listener down")

        gov = _governor(listener=_boom)
        gov.record_trade_pnl(-800.0)
        assert gov.emergency_stop_triggered


# ── Trade validation ─────────────────────────────────────────────────────


class TestValidateTrade:

    def test_approved_with_position(self):
        decision = _governor().validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert decision.approved
        assert decision.reason is None
        assert decision.position.units == pytest.approx(20.0)

    def test_max_open_positions(self):
        gov = _governor()
        for _ in range(3):
            gov.add_position("SOL-USDT", "buy", 100.0, 1.0, 98.0)
        decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert not decision.approved
        assert decision.reason == "Maximum 3 positions already open"

    def test_sizing_failure(self):
        decision = _governor().validate_trade("BTC-USDT", "buy", 100.0, 100.0)
        assert decision.reason == "Position calculation failed"

    def test_concentration(self):
        gov = _governor()
        gov.add_position("SOL-USDT", "buy", 100.0, 45.0, 99.0)
        decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert not decision.approved
        assert "concentration" in decision.reason

    def test_would_exceed_daily_loss(self):
        gov = _governor()
        gov.record_trade_pnl(-500.0)
        decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert decision.reason == "Would exceed daily loss limit"

    def test_same_asset_limit(self):
        gov = _governor()
        gov.add_position("BTC-USDT", "buy", 100.0, 1.0, 98.0)
        gov.add_position("BTC-USDT", "sell", 100.0, 1.0, 102.0)
        decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert decision.reason == "Already have 2 positions in BTC"

    def test_correlation_warning(self):
        gov = _governor()
        gov.add_position("ETH-USDT", "buy", 100.0, 1.0, 98.0)
        decision = gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0)
        assert decision.approved
        assert any("correlated" in w for w in decision.warnings)

    def test_weekly_limit(self):
        gov = _governor(max_daily_loss=0.2, max_weekly_loss=0.05, emergency_stop_loss=0.3)
        gov.record_trade_pnl(-600.0)
        assert gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0).reason == "Weekly loss limit reached"
        gov.reset_weekly()
        assert gov.validate_trade("BTC-USDT", "buy", 100.0, 90.0).approved


# ── Bookkeeping ──────────────────────────────────────────────────────────


class TestBookkeeping:

    def test_risk_status_shape(self):
        status = _governor().get_risk_status()
        for key in (
            "account_balance", "daily_pnl", "weekly_pnl", "open_positions",
            "emergency_stop_triggered", "daily_loss_limit_reached", "state",
            "risk_metrics", "limits",
        ):
            assert key in status
        assert status["state"] == "NORMAL"
        assert status["limits"]["emergency_stop_loss"] == pytest.approx(8.0)

    def test_add_and_remove(self):
        gov = _governor()
        pos = gov.add_position("BTC-USDT", "buy", 100.0, 2.0, 95.0, position_id="p1")
        assert pos.risk_amount == pytest.approx(10.0)
        assert gov.portfolio_risk()["total_risk"] == pytest.approx(10.0)
        assert gov.remove_position("p1") is pos
        assert gov.remove_position("p1") is None
        assert gov.get_risk_status()["open_positions"] == 0

    def test_update_balance(self):
        gov = _governor()
        gov.update_account_balance(20_000.0)
        assert gov.get_risk_status()["account_balance"] == 20_000.0
        with pytest.raises(ValueError):
            gov.update_account_balance(0.0)

    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            RiskLimits(max_daily_loss=1.5)
