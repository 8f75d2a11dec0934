"""Database initialization and connection management.

Runs migrations on first boot, provides connection factory.
"""

import logging
import pathlib
import sqlite3

logger = logging.getLogger("divtrader.db")

_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent.parent.parent / "db" / "migrations"


def init_db(db_path: str) -> None:
    """Initialize the database by running every migration script in order.

    Each script is idempotent (``CREATE ... IF NOT EXISTS``), so calling
    this on an existing database is safe.

    Args:
        db_path: Path to the SQLite database file.
    """
    parent = pathlib.Path(db_path).parent
    if db_path != ":memory:" and not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        for migration_file in sorted(_MIGRATION_DIR.glob("*.sql")):
            conn.executescript(migration_file.read_text(encoding="utf-8"))
            logger.debug("Applied migration %s", migration_file.name)
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn
