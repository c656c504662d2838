"""
SQLite schema DDL for the metagame cache.

Every statement uses ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent and
runs on every ``CacheStore.initialize()``.

Tables:
  1. cache_entries   — current canonical model per (domain, source, patch)
  2. cache_backups   — superseded entries, newest ``backup_retention_count`` kept
  3. sync_runs       — refresh cycle audit log

``cache_entries.patch`` is the key patch (a concrete patch or ``"latest"``);
``data_patch`` is the patch the provider reported inside the payload.  The
two differ for entries stored under the ``"latest"`` alias.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_CACHE_ENTRIES = """
CREATE TABLE IF NOT EXISTS cache_entries (
    domain          TEXT    NOT NULL,
    source          TEXT    NOT NULL,
    patch           TEXT    NOT NULL,
    data_patch      TEXT,
    payload         TEXT    NOT NULL,
    record_count    INTEGER NOT NULL DEFAULT 0,
    schema_version  TEXT    NOT NULL,
    fetched_at      TEXT    NOT NULL,
    stored_at       TEXT    NOT NULL,
    PRIMARY KEY (domain, source, patch),
    CHECK (domain IN ('team_comps', 'items', 'augments'))
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_patch
    ON cache_entries(patch);

CREATE INDEX IF NOT EXISTS idx_cache_entries_data_patch
    ON cache_entries(data_patch)
    WHERE data_patch IS NOT NULL;
"""

_DDL_CACHE_BACKUPS = """
CREATE TABLE IF NOT EXISTS cache_backups (
    backup_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    domain          TEXT    NOT NULL,
    source          TEXT    NOT NULL,
    patch           TEXT    NOT NULL,
    data_patch      TEXT,
    payload         TEXT    NOT NULL,
    schema_version  TEXT    NOT NULL,
    fetched_at      TEXT    NOT NULL,
    backed_up_at    TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_backups_key
    ON cache_backups(domain, source, patch, backup_id DESC);
"""

_DDL_SYNC_RUNS = """
CREATE TABLE IF NOT EXISTS sync_runs (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    trigger         TEXT    NOT NULL DEFAULT 'cli',
    source          TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    domain_outcomes TEXT,
    records_stored  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT,
    CHECK (status IN ('started', 'success', 'partial', 'failed'))
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_started
    ON sync_runs(started_at DESC);
"""

_ALL_DDL: list[str] = [
    _DDL_CACHE_ENTRIES,
    _DDL_CACHE_BACKUPS,
    _DDL_SYNC_RUNS,
]

ALL_TABLE_NAMES = [
    "cache_entries",
    "cache_backups",
    "sync_runs",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.  Safe to call repeatedly.

    Args:
        conn: An open ``sqlite3.Connection``.
    """
    logger.debug("Applying cache schema...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.debug("Schema applied: %d tables verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the table names present in the database, sorted."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return the index names present in the database, sorted."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
