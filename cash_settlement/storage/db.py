"""
Database connection management.

Connections run in autocommit mode; every multi-statement write goes
through write_transaction so its boundaries are explicit in the code.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

DEFAULT_DB_PATH = "cash_settlement.db"

# Seconds to wait on another cashier's write lock before failing
BUSY_TIMEOUT = 5.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection for the settlement ledger.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Autocommit connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block as one write transaction, rolled back on any error.

    BEGIN IMMEDIATE takes the write lock up front, so two commits against
    the same drawer serialize instead of both reading the old counts.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
