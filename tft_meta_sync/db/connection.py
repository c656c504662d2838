"""
SQLite connection management for the cache database.

``get_connection()`` yields a connection with foreign keys on, WAL journaling
(readers never block on the single writer), a busy timeout, and
``sqlite3.Row`` rows.  It commits on clean exit and rolls back on exception,
which is what makes a ``CacheStore.put`` atomic: the entry swap and the
backup trim share one transaction.

Usage::

    from tft_meta_sync.db.connection import get_connection

    with get_connection("data/db/tft_meta_sync.db") as conn:
        conn.execute("SELECT COUNT(*) FROM cache_entries;")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    The database file and its parent directories are created on first use.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.
            Note that every ``get_connection(":memory:")`` call opens a fresh,
            empty database, so the cache store needs a real file.
        wal_mode: Enable WAL journal mode.
        busy_timeout_ms: Milliseconds to wait on a locked database before
            raising ``OperationalError``.

    Yields:
        An open, configured ``sqlite3.Connection``.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or is locked.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
        if wal_mode and db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")

        yield conn
        conn.commit()

    except Exception:
        logger.debug("Rolling back transaction on %s", db_path)
        conn.rollback()
        raise

    finally:
        conn.close()
