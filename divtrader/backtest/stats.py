"""Backtest statistics — pure functions over trades and the equity curve."""

import math
from typing import Optional

from divtrader.backtest.models import EquityPoint, Trade
from divtrader.risk.drawdown import max_drawdown


def compute_metrics(
    initial_balance: float,
    final_balance: float,
    trades: list[Trade],
    equity: list[EquityPoint],
) -> dict:
    """Summary metrics of one simulation run.

    ``total_return`` and ``win_rate`` are fractions (0.05 = 5 %);
    ``max_drawdown`` is a percentage in [0, 100].

    Returns:
        Dict with ``total_return``, ``win_rate``, ``max_drawdown``,
        ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``profit_factor``, ``sharpe_ratio``, ``net_pnl`` and
        ``final_balance``.
    """
    pnls = [t.pnl for t in trades]
    total = len(pnls)
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor: Optional[float] = (
        gross_profit / gross_loss if gross_loss > 0 else None
    )

    return {
        "total_return": round((final_balance - initial_balance) / initial_balance, 8),
        "win_rate": round(len(winners) / total, 4) if total else 0.0,
        "max_drawdown": round(
            max_drawdown((p.value for p in equity), initial_balance), 4
        ),
        "total_trades": total,
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "profit_factor": round(profit_factor, 4) if profit_factor is not None else None,
        "sharpe_ratio": round(_sharpe(pnls), 4),
        "net_pnl": round(sum(pnls), 2),
        "final_balance": round(final_balance, 2),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _sharpe(pnls: list[float]) -> float:
    """Annualised Sharpe ratio from a per-trade P&L series.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(pnls)
    if n < 2:
        return 0.0
    mean = sum(pnls) / n
    variance = sum((p - mean) ** 2 for p in pnls) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(252)
