"""
Base repository providing shared SQLite execution helpers.

Repositories receive an open ``sqlite3.Connection`` (from ``get_connection()``)
and never commit themselves: the caller's ``with get_connection(...)`` block
is the transaction boundary.  All SQL is explicit and lives in repository
methods; rows come back as ``sqlite3.Row``.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement and return its cursor."""
        logger.debug("SQL: %s | params: %s", " ".join(sql.split()), _summarize(params))
        return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        """Execute a query and return the first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        return self.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Params = ()) -> Any:
        """Execute a query and return the first column of the first row."""
        row = self.fetchone(sql, params)
        return row[0] if row is not None else None

    def last_insert_rowid(self) -> int:
        """Return the rowid of the last successful INSERT."""
        row = self.fetchone("SELECT last_insert_rowid() AS rowid;")
        assert row is not None
        return int(row["rowid"])


def _summarize(params: Params) -> Any:
    # Cache payloads are whole JSON documents; keep debug lines readable.
    if isinstance(params, tuple):
        return tuple(
            f"<{len(p)} chars>" if isinstance(p, str) and len(p) > 200 else p
            for p in params
        )
    return params
