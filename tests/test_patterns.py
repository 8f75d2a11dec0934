"""Tests for divtrader.strategy.patterns — W/M, volume, candlestick, trend, RSI extremes."""

import pytest

from divtrader.strategy.models import Candle, SignalSource, SignalType
from divtrader.strategy.patterns import (
    detect_candlestick,
    detect_rsi_extreme,
    detect_trend_signal,
    detect_volume_spike,
    detect_wm_pattern,
)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(i, o, h, l, c, vol=100.0):
    return Candle(timestamp=1_700_000_000_000 + i * 3_600_000, open=o, high=h, low=l, close=c, volume=vol)


def _flat(n, price=100.0, vol=100.0):
    return [_make_candle(i, price, price + 0.5, price - 0.5, price, vol) for i in range(n)]


def _with_last(o, h, l, c, prev=None):
    """Two filler candles, an optional previous candle and the candle under test."""
    candles = _flat(2)
    if prev is not None:
        candles[-1] = _make_candle(1, *prev)
    candles.append(_make_candle(2, o, h, l, c))
    return candles


# ── W / M ────────────────────────────────────────────────────────────────


class TestWMPattern:

    def test_w_pattern(self):
        signal = detect_wm_pattern([50, 40, 32, 28, 30, 35])
        assert signal is not None
        assert signal.type is SignalType.BULLISH
        assert signal.pattern == "W"
        assert signal.source is SignalSource.WM
        assert signal.strength == pytest.approx((40 - 28) / 20)
        assert signal.confidence == pytest.approx(0.8)

    def test_m_pattern(self):
        signal = detect_wm_pattern([50, 60, 66, 72, 70, 65])
        assert signal is not None
        assert signal.type is SignalType.BEARISH
        assert signal.pattern == "M"
        assert signal.strength == pytest.approx((72 - 60) / 20)

    def test_trough_above_level_ignored(self):
        assert detect_wm_pattern([60, 55, 50, 45, 50, 55]) is None

    def test_leading_none_stripped(self):
        signal = detect_wm_pattern([None, None, 50, 40, 32, 28, 30, 35])
        assert signal is not None
        assert signal.pattern == "W"

    def test_too_short(self):
        assert detect_wm_pattern([20, 30]) is None

    def test_order_one_uses_previous_bar(self):
        signal = detect_wm_pattern([50, 40, 32, 28, 30], order=1)
        assert signal is not None
        assert signal.pattern == "W"
        assert signal.strength == pytest.approx((40 - 28) / 20)

    def test_older_trough_ignored(self):
        # Trough three bars back is no longer the freshest confirmable bar.
        assert detect_wm_pattern([50, 40, 28, 32, 35, 38]) is None


# ── Volume spike ─────────────────────────────────────────────────────────


class TestVolumeSpike:

    def test_bullish_spike(self):
        candles = _flat(4) + [_make_candle(4, 100.0, 101.5, 99.8, 101.0, 300.0)]
        signal = detect_volume_spike(candles)
        assert signal is not None
        assert signal.type is SignalType.BULLISH
        assert signal.pattern == "vol+"
        assert signal.strength == pytest.approx(0.8)
        assert signal.confidence == pytest.approx(0.7)

    def test_bearish_spike(self):
        candles = _flat(4) + [_make_candle(4, 100.0, 100.2, 98.5, 99.0, 300.0)]
        signal = detect_volume_spike(candles)
        assert signal is not None
        assert signal.type is SignalType.BEARISH
        assert signal.pattern == "vol-"

    def test_no_spike(self):
        candles = _flat(4) + [_make_candle(4, 100.0, 101.5, 99.8, 101.0, 120.0)]
        assert detect_volume_spike(candles) is None

    def test_chasing_momentum_rejected(self):
        candles = _flat(4)
        candles[2] = _make_candle(2, 95.0, 95.5, 94.5, 95.0)
        candles.append(_make_candle(4, 100.0, 101.5, 99.8, 101.0, 300.0))
        assert detect_volume_spike(candles) is None

    def test_insufficient_candles(self):
        assert detect_volume_spike(_flat(3)) is None


# ── Candlestick ──────────────────────────────────────────────────────────


class TestCandlestick:

    def test_hammer(self):
        signal = detect_candlestick(_with_last(100.0, 101.2, 96.0, 101.0))
        assert signal.pattern == "hammer"
        assert signal.type is SignalType.BULLISH
        assert signal.strength == pytest.approx(0.6)

    def test_shooting_star(self):
        signal = detect_candlestick(_with_last(101.0, 105.0, 99.8, 100.0))
        assert signal.pattern == "shooting_star"
        assert signal.type is SignalType.BEARISH

    def test_doji_is_neutral(self):
        signal = detect_candlestick(_with_last(100.0, 102.0, 98.0, 100.05))
        assert signal.pattern == "doji"
        assert signal.type is SignalType.NEUTRAL
        assert not signal.is_directional

    def test_bullish_engulfing(self):
        signal = detect_candlestick(
            _with_last(99.8, 101.6, 99.7, 101.5, prev=(101.0, 101.1, 99.9, 100.0))
        )
        assert signal.pattern == "bullish_engulfing"
        assert signal.strength == pytest.approx(0.8)

    def test_bearish_engulfing(self):
        signal = detect_candlestick(
            _with_last(101.2, 101.3, 99.4, 99.5, prev=(100.0, 101.1, 99.9, 101.0))
        )
        assert signal.pattern == "bearish_engulfing"
        assert signal.type is SignalType.BEARISH

    def test_insufficient_candles(self):
        assert detect_candlestick(_flat(2)) is None


# ── Trend ────────────────────────────────────────────────────────────────


def _trend(closes):
    return [_make_candle(i, c, c + 0.5, c - 0.5, c) for i, c in enumerate(closes)]


class TestTrendSignal:

    def test_bullish_trend_with_oversold_rsi(self):
        candles = _trend([100.0] * 5 + [101.0, 102.0, 103.0, 104.0, 105.0])
        signal = detect_trend_signal(candles, 25.0)
        assert signal is not None
        assert signal.type is SignalType.BULLISH
        assert signal.pattern == "trend_up"
        assert signal.strength == pytest.approx(0.15)

    def test_bearish_trend_with_overbought_rsi(self):
        candles = _trend([100.0] * 5 + [99.0, 98.0, 97.0, 96.0, 95.0])
        signal = detect_trend_signal(candles, 75.0)
        assert signal is not None
        assert signal.type is SignalType.BEARISH
        assert signal.pattern == "trend_down"

    def test_neutral_rsi_gives_nothing(self):
        candles = _trend([100.0] * 5 + [101.0, 102.0, 103.0, 104.0, 105.0])
        assert detect_trend_signal(candles, 50.0) is None

    def test_missing_rsi(self):
        assert detect_trend_signal(_trend([100.0] * 10), None) is None


# ── RSI extremes ─────────────────────────────────────────────────────────


class TestRSIExtreme:

    def test_overbought_is_bearish(self):
        signal = detect_rsi_extreme(85.0)
        assert signal.type is SignalType.BEARISH
        assert signal.strength == pytest.approx(0.4)
        assert signal.confidence == pytest.approx(0.32)

    def test_oversold_is_bullish(self):
        signal = detect_rsi_extreme(15.0)
        assert signal.type is SignalType.BULLISH
        assert signal.pattern == "rsi_oversold"

    def test_below_min_strength(self):
        assert detect_rsi_extreme(70.5) is None

    def test_neutral_and_missing(self):
        assert detect_rsi_extreme(50.0) is None
        assert detect_rsi_extreme(None) is None
