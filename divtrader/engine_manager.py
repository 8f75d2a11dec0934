"""EngineManager — runs the live signal engine for every configured pair.

Each pair gets its own polling task on a shared ``LiveSignalEngine``; one
more task runs the event-bus dispatcher.  Pairs can be stopped together
or awaited to completion.
"""

import asyncio
import logging
from typing import Optional

from divtrader.engine import LiveSignalEngine
from divtrader.events import EventBus
from divtrader.models.suggestion import Suggestion

logger = logging.getLogger("divtrader.engine_manager")


class EngineManager:
    """Lifecycle manager for the per-pair live tasks.

    Args:
        engine: Shared ``LiveSignalEngine``.
        bus:    The ``EventBus`` the engine publishes on.
        pairs:  Pairs to poll, e.g. ``["BTC-USDT", "ETH-USDT"]``.
        poll_interval: Seconds between polls per pair.
    """

    def __init__(
        self,
        engine: LiveSignalEngine,
        bus: EventBus,
        pairs: list[str],
        poll_interval: int = 60,
    ) -> None:
        self._engine = engine
        self._bus = bus
        self._pairs = list(dict.fromkeys(pairs))
        self._poll_interval = poll_interval
        self._tasks: dict[str, asyncio.Task] = {}
        self._bus_task: Optional[asyncio.Task] = None

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def engine(self) -> LiveSignalEngine:
        return self._engine

    @property
    def pairs(self) -> list[str]:
        return list(self._pairs)

    def start(self, max_cycles: int = 0) -> None:
        """Launch the dispatcher and one polling task per pair."""
        if self._bus_task is None or self._bus_task.done():
            self._bus_task = asyncio.create_task(self._bus.run())
        for pair in self._pairs:
            task = self._tasks.get(pair)
            if task is not None and not task.done():
                continue
            self._tasks[pair] = asyncio.create_task(
                self._engine.run(pair, self._poll_interval, max_cycles)
            )
            logger.info("Started live task for %s", pair)

    async def run_all(self, max_cycles: int = 0) -> dict[str, list[Suggestion]]:
        """Start every pair and wait for all polling tasks to finish.

        Returns:
            ``{pair: [suggestions]}``; a crashed pair maps to ``[]``.
        """
        self.start(max_cycles)
        results: dict[str, list[Suggestion]] = {}
        for pair, task in self._tasks.items():
            try:
                results[pair] = await task
            except Exception as exc:  # pragma: no cover
                logger.error("Live task for %s crashed: %s", pair, exc)
                results[pair] = []
        await self.stop_bus()
        return results

    def stop_all(self) -> None:
        """Signal every polling loop and the dispatcher to stop."""
        self._engine.stop()
        self._bus.stop()
        logger.info("Stop signal sent to %d live task(s)", len(self._tasks))

    async def stop_bus(self) -> None:
        if self._bus_task is None:
            return
        self._bus.stop()
        await self._bus_task
        self._bus_task = None

    def get_status(self) -> dict:
        status = self._engine.status()
        status["tasks"] = {
            pair: ("running" if not task.done() else "finished")
            for pair, task in self._tasks.items()
        }
        status["bus_running"] = self._bus.running
        return status
