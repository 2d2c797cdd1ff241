"""SQLite connections for the usage ledger, limits, keys and audit tables."""

import sqlite3
from pathlib import Path

BUSY_TIMEOUT_SECONDS = 30


def get_connection(db_path: str = "pockity.db") -> sqlite3.Connection:
    """Open ``db_path``, creating its parent directory on first use.

    Writers wait up to BUSY_TIMEOUT_SECONDS for the database lock.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
