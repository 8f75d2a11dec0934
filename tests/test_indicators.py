"""Tests for divtrader.strategy.indicators — RSI, SMA, EMA, ATR, ADX and helpers."""

import math

import pytest

from divtrader.strategy.indicators import (
    adx,
    align,
    atr,
    ema,
    percentage_change,
    rsi,
    sma,
    volume_ratio,
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _wave(n: int, base: float = 100.0, amp: float = 5.0) -> list[float]:
    """Deterministic oscillating closes."""
    return [base + amp * math.sin(i / 3.0) + i * 0.05 for i in range(n)]


# ── RSI ──────────────────────────────────────────────────────────────────


class TestRSI:

    def test_insufficient_data_returns_empty(self):
        assert rsi([100.0 + i for i in range(10)], 14) == []

    def test_length_is_valid_minus_period(self):
        assert len(rsi(_wave(30), 14)) == 16

    def test_strictly_rising_closes_give_100(self):
        values = rsi([100.0 + i for i in range(40)], 14)
        assert values
        assert all(v == 100.0 for v in values)

    def test_strictly_falling_closes_give_0(self):
        values = rsi([200.0 - i for i in range(40)], 14)
        assert all(v == pytest.approx(0.0) for v in values)

    def test_bounded_0_100(self):
        values = rsi(_wave(200, amp=20.0), 14)
        assert all(0.0 <= v <= 100.0 for v in values)

    def test_invalid_values_filtered(self):
        closes = _wave(20)
        dirty = closes[:5] + ["x", None, float("nan"), -1.0, 0.0] + closes[5:]
        assert rsi(dirty, 14) == rsi(closes, 14)

    def test_deterministic(self):
        closes = _wave(80)
        assert rsi(closes, 14) == rsi(closes, 14)

    def test_invalid_period_raises(self):
        with pytest.raises(ValueError, match="period"):
            rsi(_wave(30), 0)


# ── Moving averages ──────────────────────────────────────────────────────


class TestMovingAverages:

    def test_sma_values(self):
        assert sma([1, 2, 3, 4, 5], 3) == [2.0, 3.0, 4.0]

    def test_sma_insufficient(self):
        assert sma([1, 2], 3) == []

    def test_ema_seeded_with_sma(self):
        # k = 0.5: seed 2, then 4*0.5 + 2*0.5 = 3, then 5*0.5 + 3*0.5 = 4
        assert ema([1, 2, 3, 4, 5], 3) == [2.0, 3.0, 4.0]

    def test_ema_length(self):
        assert len(ema(_wave(50), 10)) == 41


# ── ATR / ADX ────────────────────────────────────────────────────────────


class TestATR:

    def test_constant_range(self):
        n = 20
        values = atr([11.0] * n, [9.0] * n, [10.0] * n, 14)
        assert len(values) == n - 14
        assert all(v == pytest.approx(2.0) for v in values)

    def test_insufficient_data(self):
        assert atr([11.0] * 10, [9.0] * 10, [10.0] * 10, 14) == []


class TestADX:

    def test_length(self):
        n = 40
        highs = [c + 1 for c in _wave(n)]
        lows = [c - 1 for c in _wave(n)]
        values = adx(highs, lows, _wave(n), 14)
        assert len(values) == n - 2 * 14 + 1
        assert all(0.0 <= v <= 100.0 for v in values)

    def test_pure_uptrend_is_100(self):
        n = 40
        highs = [float(i + 1) for i in range(n)]
        lows = [float(i) for i in range(n)]
        closes = [i + 0.5 for i in range(n)]
        values = adx(highs, lows, closes, 14)
        assert values[-1] == pytest.approx(100.0)

    def test_insufficient_data(self):
        assert adx([2.0] * 20, [1.0] * 20, [1.5] * 20, 14) == []


# ── Helpers ──────────────────────────────────────────────────────────────


class TestHelpers:

    def test_align_pads_left(self):
        assert align([1.0, 2.0], 4) == [None, None, 1.0, 2.0]

    def test_align_rejects_longer_series(self):
        with pytest.raises(ValueError):
            align([1.0, 2.0, 3.0], 2)

    def test_volume_ratio(self):
        assert volume_ratio(20.0, 10.0) == pytest.approx(2.0)
        assert volume_ratio(20.0, 0.0) == 1.0
        assert volume_ratio(0.0, 10.0) == 1.0

    def test_percentage_change(self):
        assert percentage_change(100.0, 110.0) == pytest.approx(10.0)
        assert percentage_change(0.0, 110.0) == 0.0
