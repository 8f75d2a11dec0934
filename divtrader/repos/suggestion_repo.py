"""Suggestion repository — SQLite storage for live trade suggestions."""

import json
from typing import Optional

from divtrader.models.suggestion import Suggestion
from divtrader.repos.db import get_connection


class SuggestionRepo:
    """Data access layer for the ``suggestions`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert(self, suggestion: Suggestion) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO suggestions
                    (id, pair, timeframe, action, entry_price, stop_loss,
                     take_profit, approved, created_at, expires_at,
                     payload_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    suggestion.id,
                    suggestion.pair,
                    suggestion.timeframe,
                    suggestion.action,
                    suggestion.entry_price,
                    suggestion.stop_loss,
                    suggestion.take_profit,
                    int(suggestion.approved),
                    suggestion.created_at,
                    suggestion.expires_at,
                    json.dumps(suggestion.to_dict()),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_expired(self, now_ms: int) -> int:
        """Remove suggestions that expired before *now_ms*.  Returns the count."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute("DELETE FROM suggestions WHERE expires_at <= ?", (now_ms,))
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_active(
        self,
        now_ms: int,
        pair: Optional[str] = None,
        limit: int = 20,
    ) -> list[Suggestion]:
        """Unexpired suggestions, newest first."""
        query = "SELECT payload_json FROM suggestions WHERE expires_at > ?"
        args: list = [now_ms]
        if pair is not None:
            query += " AND pair = ?"
            args.append(pair)
        query += " ORDER BY created_at DESC LIMIT ?"
        args.append(limit)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(query, args).fetchall()
        finally:
            conn.close()
        return [Suggestion(**json.loads(r["payload_json"])) for r in rows]
