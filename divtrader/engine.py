"""divtrader — live signal engine.

Keeps a bounded candle buffer per pair, re-runs the signal analysis on
every new closed candle and publishes a trade ``Suggestion`` whenever the
combined signal fires.  Nothing here places orders: suggestions are for
manual trading.
"""

import asyncio
import logging
import sqlite3
import time
import uuid
from collections import deque
from typing import Callable, Optional

from divtrader.backtest.engine import MIN_CANDLES
from divtrader.broker.bingx_client import BingXClient
from divtrader.events import DIVERGENCE_CHANNEL, SIGNALS_CHANNEL, EventBus
from divtrader.models.backtest_params import BacktestParams
from divtrader.models.suggestion import Suggestion
from divtrader.repos.suggestion_repo import SuggestionRepo
from divtrader.risk.governor import RiskGovernor
from divtrader.risk.position_sizer import calculate_position_size
from divtrader.strategy.analysis import (
    IndicatorSet,
    SignalSet,
    check_prices,
    compute_indicators,
    generate_signals,
)
from divtrader.strategy.models import Candle, Signal, SignalType

logger = logging.getLogger("divtrader.engine")

STOP_ATR_MULTIPLIER = 1.5
TARGET_ATR_MULTIPLIER = 2.0
UPDATE_LIMIT = 5


def _now_ms() -> int:
    return int(time.time() * 1000)


class LiveSignalEngine:
    """Per-pair event-driven signal generation.

    ``on_candle`` calls for one pair are serialised by that pair's lock;
    different pairs are analysed concurrently.

    Args:
        client: Kline source used by :meth:`run`.
        bus: Bus the suggestions are published on.
        params: Indicator and detector settings shared with the backtest.
        governor: Optional ``RiskGovernor`` whose decision is attached to
            every suggestion.
        repo: Optional ``SuggestionRepo`` for persistence.
        timeframe: Kline interval polled by :meth:`run`.
        max_candles: Per-pair buffer capacity.
        ttl_minutes: Suggestion lifetime, counted from analysis time.
        account_balance: Balance used for sizing when no governor is set.
        stop_loss_pct: Fixed stop distance used when ATR is unavailable.
        take_profit_pct: Fixed target distance used when ATR is unavailable.
        clock: Epoch-ms time source; suggestions are stamped with it.
    """

    def __init__(
        self,
        client: BingXClient,
        bus: EventBus,
        params: BacktestParams = BacktestParams(),
        *,
        governor: Optional[RiskGovernor] = None,
        repo: Optional[SuggestionRepo] = None,
        timeframe: str = "1h",
        max_candles: int = 1000,
        ttl_minutes: int = 30,
        account_balance: float = 10_000.0,
        stop_loss_pct: float = 0.015,
        take_profit_pct: float = 0.04,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._client = client
        self._bus = bus
        self._params = params
        self._governor = governor
        self._repo = repo
        self._timeframe = timeframe
        self._max_candles = max_candles
        self._ttl_ms = ttl_minutes * 60 * 1000
        self._account_balance = account_balance
        self._stop_loss_pct = stop_loss_pct
        self._take_profit_pct = take_profit_pct
        self._clock = clock
        self._min_candles = max(MIN_CANDLES, params.warmup + 1)
        self._buffers: dict[str, deque] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._recent: deque = deque(maxlen=100)
        self._cycle_counts: dict[str, int] = {}
        self._running: bool = False

    # ── Buffers ──────────────────────────────────────────────────────────

    def _buffer(self, pair: str) -> deque:
        if pair not in self._buffers:
            self._buffers[pair] = deque(maxlen=self._max_candles)
            self._locks[pair] = asyncio.Lock()
        return self._buffers[pair]

    def candles(self, pair: str) -> list[Candle]:
        return list(self._buffers.get(pair, ()))

    def recent_suggestions(self, pair: Optional[str] = None) -> list[Suggestion]:
        """Suggestions produced since start, newest first."""
        found = [s for s in reversed(self._recent) if pair is None or s.pair == pair]
        return found

    # ── Candle handling ──────────────────────────────────────────────────

    def _accept(self, pair: str, buffer: deque, candle: Candle) -> bool:
        """Append *candle* unless it is out of order or malformed."""
        if buffer and candle.timestamp <= buffer[-1].timestamp:
            logger.debug(
                "%s: dropped candle at %d (last %d)",
                pair, candle.timestamp, buffer[-1].timestamp,
            )
            return False
        try:
            check_prices([candle])
        except ValueError as exc:
            logger.warning("%s: dropped malformed candle: %s", pair, exc)
            return False
        buffer.append(candle)
        return True

    async def prime(self, pair: str, candles: list[Candle]) -> int:
        """Load history into the buffer without analysing it.

        Returns the number of candles accepted.
        """
        buffer = self._buffer(pair)
        async with self._locks[pair]:
            accepted = sum(1 for c in candles if self._accept(pair, buffer, c))
        logger.debug("%s: primed %d candles", pair, accepted)
        return accepted

    async def on_candle(self, pair: str, candle: Candle) -> Optional[Suggestion]:
        """Append a closed candle and analyse the updated buffer.

        Duplicate, out-of-order and malformed candles are dropped.

        Returns:
            The published ``Suggestion``, or ``None`` if nothing fired.
        """
        buffer = self._buffer(pair)
        async with self._locks[pair]:
            if not self._accept(pair, buffer, candle):
                return None
            if len(buffer) < self._min_candles:
                return None

            candles = list(buffer)
            indicators = compute_indicators(candles, self._params)
            signals = generate_signals(candles, indicators, len(candles) - 1, self._params)
            if signals.combined is None:
                return None
            suggestion = self._build_suggestion(pair, candle, indicators, signals.combined)

        if suggestion is None:
            return None
        self._publish(suggestion, signals)
        return suggestion

    def _balance(self) -> float:
        if self._governor is not None:
            return self._governor.get_risk_status()["account_balance"]
        return self._account_balance

    def levels(
        self,
        price: float,
        is_long: bool,
        atr_value: Optional[float],
    ) -> tuple[float, float]:
        """Stop-loss and take-profit prices for an entry at *price*.

        ATR multiples when ATR is known, otherwise the fixed percentages.
        """
        if atr_value is not None and atr_value > 0:
            stop_dist = STOP_ATR_MULTIPLIER * atr_value
            target_dist = TARGET_ATR_MULTIPLIER * atr_value
        else:
            stop_dist = price * self._stop_loss_pct
            target_dist = price * self._take_profit_pct
        if is_long:
            return price - stop_dist, price + target_dist
        return price + stop_dist, price - target_dist

    def _build_suggestion(
        self,
        pair: str,
        candle: Candle,
        indicators: IndicatorSet,
        signal: Signal,
    ) -> Optional[Suggestion]:
        price = candle.close
        atr_value = indicators.atr[-1]
        rsi_value = indicators.rsi[-1]
        is_long = signal.type is SignalType.BULLISH
        if atr_value is None or atr_value <= 0:
            logger.info("%s: no ATR available, using fixed stop and target", pair)
        stop_loss, take_profit = self.levels(price, is_long, atr_value)
        if stop_loss <= 0 or take_profit <= 0:
            logger.warning("%s: ATR too large for price %.8f, suggestion skipped", pair, price)
            return None

        size = calculate_position_size(
            self._balance(),
            signal,
            rsi_value,
            price,
            risk_per_trade=self._params.risk_per_trade,
            base_leverage=self._params.base_leverage,
            min_leverage=self._params.min_leverage,
            max_leverage=self._params.max_leverage,
        )
        if size is None:
            return None

        side = "buy" if is_long else "sell"
        if self._governor is not None:
            decision = self._governor.validate_trade(pair, side, price, stop_loss).to_dict()
        else:
            decision = {"approved": True, "reason": None, "risk_level": "LOW",
                        "position": None, "warnings": []}
        adx_value = indicators.adx[-1]
        now = self._clock()

        return Suggestion(
            id=uuid.uuid4().hex,
            pair=pair,
            timeframe=self._timeframe,
            action="BUY" if is_long else "SELL",
            signal=signal.to_dict(),
            entry_price=price,
            stop_loss=round(stop_loss, 8),
            take_profit=round(take_profit, 8),
            risk_reward_ratio=round(abs(take_profit - price) / abs(price - stop_loss), 4),
            suggested_size=round(size, 8),
            technical_analysis={
                "rsi": rsi_value,
                "atr": atr_value,
                "adx": adx_value,
                "strength": signal.strength,
                "confidence": signal.confidence,
                "confirmations": signal.confirmations,
            },
            risk_decision=decision,
            created_at=now,
            expires_at=now + self._ttl_ms,
            candle_time=candle.timestamp,
        )

    def _publish(self, suggestion: Suggestion, signals: SignalSet) -> None:
        self._recent.append(suggestion)
        logger.info(
            "%s %s suggestion @ %.8f (SL %.8f, TP %.8f, approved=%s)",
            suggestion.pair, suggestion.action, suggestion.entry_price,
            suggestion.stop_loss, suggestion.take_profit, suggestion.approved,
        )
        self._bus.publish(SIGNALS_CHANNEL, suggestion.to_dict())
        if signals.divergence is not None:
            self._bus.publish(DIVERGENCE_CHANNEL, {
                "pair": suggestion.pair,
                "timestamp": suggestion.candle_time,
                "signal": signals.divergence.to_dict(),
            })
        if self._repo is not None:
            try:
                self._repo.insert(suggestion)
            except sqlite3.Error as exc:
                logger.error("Failed to persist suggestion %s: %s", suggestion.id, exc)

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Signal every polling loop to stop after its current cycle."""
        self._running = False

    def status(self) -> dict:
        return {
            "running": self._running,
            "pairs": {
                pair: {
                    "candles": len(buffer),
                    "last_timestamp": buffer[-1].timestamp if buffer else None,
                    "cycle_count": self._cycle_counts.get(pair, 0),
                }
                for pair, buffer in self._buffers.items()
            },
            "recent_suggestions": len(self._recent),
        }

    # ── Polling loop ─────────────────────────────────────────────────────

    async def poll_once(self, pair: str) -> list[Suggestion]:
        """Fetch the latest klines for *pair* and analyse the newest closed one.

        Older unseen candles only extend the buffer, so a first poll primes
        the history instead of replaying a suggestion for every past bar.
        The newest kline is still forming and is left for the next poll.
        """
        limit = UPDATE_LIMIT if self._buffers.get(pair) else self._max_candles
        klines = await self._client.fetch_klines(pair, self._timeframe, limit)
        buffer = self._buffer(pair)
        last = buffer[-1].timestamp if buffer else None
        closed = [c for c in klines[:-1] if last is None or c.timestamp > last]
        if not closed:
            return []
        await self.prime(pair, closed[:-1])
        suggestion = await self.on_candle(pair, closed[-1])
        return [suggestion] if suggestion is not None else []

    async def run(
        self,
        pair: str,
        poll_interval: int = 60,
        max_cycles: int = 0,
    ) -> list[Suggestion]:
        """Poll *pair* until stopped.

        Args:
            pair: e.g. ``"BTC-USDT"``.
            poll_interval: Seconds between polls.
            max_cycles: Stop after this many polls (0 = unlimited).

        Returns:
            Every suggestion produced by this loop.
        """
        self._running = True
        self._buffer(pair)
        produced: list[Suggestion] = []
        cycle = 0
        logger.info("Live engine started for %s (%s)", pair, self._timeframe)

        while self._running:
            cycle += 1
            self._cycle_counts[pair] = self._cycle_counts.get(pair, 0) + 1
            try:
                produced.extend(await self.poll_once(pair))
            except Exception as exc:
                logger.error("%s cycle %d error: %s", pair, cycle, exc)

            if max_cycles > 0 and cycle >= max_cycles:
                break

            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        logger.info("Live engine stopped for %s after %d cycles", pair, cycle)
        return produced
