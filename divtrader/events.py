"""In-process publish/subscribe bus for signals and risk events.

Publishers never block: ``publish`` drops the event (and logs) when the
ingress queue is full.  A single dispatcher task (:meth:`EventBus.run`)
fans events out to per-subscriber bounded queues; a subscriber that falls
behind loses its oldest undelivered event rather than stalling the others.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

logger = logging.getLogger("divtrader.events")

SIGNALS_CHANNEL = "signals"
DIVERGENCE_CHANNEL = "divergence-signals"


@dataclass(frozen=True)
class Event:
    channel: str
    payload: Any
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


class EventBus:
    """Bounded fan-out bus.

    Args:
        maxsize: Capacity of the shared ingress queue.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._ingress: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._running = False
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._running

    # ── Publishing ───────────────────────────────────────────────────────

    def publish(self, channel: str, payload: Any) -> bool:
        """Queue an event for dispatch.  Returns ``False`` if the bus is full."""
        try:
            self._ingress.put_nowait(Event(channel, payload))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event bus full, dropped event on '%s'", channel)
            return False
        return True

    # ── Subscriptions ────────────────────────────────────────────────────

    async def subscribe(
        self,
        channels: Union[str, Iterable[str]],
        maxsize: int = 100,
    ) -> asyncio.Queue:
        """Register a new queue receiving every event on *channels*."""
        if isinstance(channels, str):
            channels = [channels]
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        async with self._lock:
            for channel in channels:
                self._subscribers.setdefault(channel, []).append(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        async with self._lock:
            for channel in list(self._subscribers):
                queues = [q for q in self._subscribers[channel] if q is not queue]
                if queues:
                    self._subscribers[channel] = queues
                else:
                    del self._subscribers[channel]

    # ── Dispatch ─────────────────────────────────────────────────────────

    async def dispatch(self, event: Event) -> int:
        """Deliver *event* to every subscriber of its channel.

        Returns the number of queues it was delivered to.
        """
        async with self._lock:
            queues = list(self._subscribers.get(event.channel, ()))

        for queue in queues:
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("Slow subscriber on '%s', dropped oldest event", event.channel)
            queue.put_nowait(event)
        return len(queues)

    async def run(self) -> None:
        """Dispatch events until :meth:`stop` is called."""
        self._running = True
        logger.info("Event bus dispatcher started")
        try:
            while self._running:
                try:
                    event = await asyncio.wait_for(self._ingress.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                await self.dispatch(event)
        finally:
            self._running = False
            logger.info("Event bus dispatcher stopped")

    async def drain(self) -> int:
        """Dispatch everything currently queued without the background task."""
        count = 0
        while not self._ingress.empty():
            await self.dispatch(self._ingress.get_nowait())
            count += 1
        return count

    def stop(self) -> None:
        self._running = False
