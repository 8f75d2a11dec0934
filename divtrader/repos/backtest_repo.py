"""Backtest run repository — persists full backtest results to SQLite."""

import json
from typing import Optional

from divtrader.backtest.models import BacktestResult
from divtrader.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_runs`` table.

    The complete ``BacktestResult.to_dict()`` is stored verbatim in
    ``result_json``; headline metrics are copied into columns for listing.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_result(self, result: BacktestResult) -> int:
        """Persist a backtest result.  Returns the row id."""
        metrics = result.metrics
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (pair, timeframe, start_time, end_time, total_trades,
                     win_rate, total_return, max_drawdown, synthetic,
                     result_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.pair,
                    result.timeframe,
                    result.start_time,
                    result.end_time,
                    metrics.get("total_trades", len(result.trades)),
                    metrics.get("win_rate", 0.0),
                    metrics.get("total_return", 0.0),
                    metrics.get("max_drawdown", 0.0),
                    int(result.synthetic),
                    json.dumps(result.to_dict()),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent run summaries (without the full result)."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT id, pair, timeframe, start_time, end_time, total_trades,
                       win_rate, total_return, max_drawdown, synthetic, created_at
                FROM backtest_runs ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
            runs = [dict(r) for r in rows]
            for run in runs:
                run["synthetic"] = bool(run["synthetic"])
            return runs
        finally:
            conn.close()

    def get_result(self, run_id: int) -> Optional[BacktestResult]:
        """Load one stored result, or ``None`` if *run_id* is unknown."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT result_json FROM backtest_runs WHERE id = ?",
                (run_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return BacktestResult.from_dict(json.loads(row["result_json"]))
