"""Drawdown tracking — pure math, no I/O.

Tracks peak equity, the current drawdown and the worst drawdown seen, all
as percentages of the running peak.
"""

from typing import Iterable


class DrawdownTracker:
    """Tracks equity peaks and computes drawdown metrics.

    Args:
        initial_equity: Starting account equity; seeds the peak.
    """

    def __init__(self, initial_equity: float) -> None:
        if initial_equity <= 0:
            raise ValueError(
                f"initial_equity must be positive, got {initial_equity}"
            )
        self._peak_equity: float = initial_equity
        self._current_equity: float = initial_equity
        self._max_drawdown_pct: float = 0.0

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, equity: float) -> None:
        """Record the latest equity value, raising the peak if exceeded."""
        self._current_equity = equity
        if equity > self._peak_equity:
            self._peak_equity = equity
        current = self.drawdown_pct
        if current > self._max_drawdown_pct:
            self._max_drawdown_pct = current

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def peak_equity(self) -> float:
        return self._peak_equity

    @property
    def current_equity(self) -> float:
        return self._current_equity

    @property
    def drawdown_pct(self) -> float:
        """Current drawdown as a percentage of peak equity, within [0, 100]."""
        if self._peak_equity <= 0:
            return 0.0
        pct = (self._peak_equity - self._current_equity) / self._peak_equity * 100.0
        return min(100.0, max(0.0, pct))

    @property
    def max_drawdown_pct(self) -> float:
        """Largest drawdown recorded so far."""
        return self._max_drawdown_pct


def max_drawdown(values: Iterable[float], initial_equity: float) -> float:
    """Largest peak-to-trough decline (percent) of an equity curve."""
    tracker = DrawdownTracker(initial_equity)
    for value in values:
        tracker.update(value)
    return tracker.max_drawdown_pct
