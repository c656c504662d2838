"""
Repository for the ``cache_entries`` and ``cache_backups`` tables.

One row in ``cache_entries`` per ``(domain, source, patch)`` holds the current
serialized ``DataModel``.  Replacing an entry first copies the old row into
``cache_backups``; ``trim_backups`` then deletes all but the newest ``keep``
backups for the key.  ``CacheStore.put`` runs that sequence inside a single
connection so it commits or rolls back as a unit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from tft_meta_sync.db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntryRow:
    """A row of ``cache_entries``.

    Attributes:
        domain: ``team_comps`` / ``items`` / ``augments``.
        source: Provider id or ``combined``.
        patch: Key patch (concrete or ``"latest"``).
        data_patch: Patch reported inside the payload, if any.
        payload: ``DataModel.model_dump_json()`` text.
        record_count: ``len(model.data)``.
        schema_version: ``metadata.schema_version`` of the payload.
        fetched_at: ISO timestamp from ``metadata.timestamp``.
        stored_at: ISO timestamp of the write.
    """

    domain: str
    source: str
    patch: str
    data_patch: Optional[str]
    payload: str
    record_count: int
    schema_version: str
    fetched_at: str
    stored_at: str


@dataclass(frozen=True)
class CacheBackupRow:
    """A superseded entry kept in ``cache_backups``."""

    backup_id: int
    domain: str
    source: str
    patch: str
    data_patch: Optional[str]
    payload: str
    schema_version: str
    fetched_at: str
    backed_up_at: str


class CacheRepository(BaseRepository):
    """Read/write access to ``cache_entries`` and ``cache_backups``."""

    # ── Entries ───────────────────────────────────────────────────────────────

    def get_entry(self, domain: str, source: str, patch: str) -> Optional[CacheEntryRow]:
        row = self.fetchone(
            """
            SELECT * FROM cache_entries
            WHERE domain = ? AND source = ? AND patch = ?;
            """,
            (domain, source, patch),
        )
        return _row_to_entry(row) if row else None

    def upsert_entry(self, entry: CacheEntryRow) -> None:
        """Insert or overwrite the entry for ``entry``'s key."""
        self.execute(
            """
            INSERT INTO cache_entries (
                domain, source, patch, data_patch, payload,
                record_count, schema_version, fetched_at, stored_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (domain, source, patch) DO UPDATE SET
                data_patch     = excluded.data_patch,
                payload        = excluded.payload,
                record_count   = excluded.record_count,
                schema_version = excluded.schema_version,
                fetched_at     = excluded.fetched_at,
                stored_at      = excluded.stored_at;
            """,
            (
                entry.domain,
                entry.source,
                entry.patch,
                entry.data_patch,
                entry.payload,
                entry.record_count,
                entry.schema_version,
                entry.fetched_at,
                entry.stored_at,
            ),
        )

    def list_entries(self, patch: Optional[str] = None) -> list[CacheEntryRow]:
        """Return entries, newest ``fetched_at`` first.

        Args:
            patch: When given, only entries whose key patch or data patch
                equals it.
        """
        if patch is None:
            rows = self.fetchall("SELECT * FROM cache_entries ORDER BY fetched_at DESC;")
        else:
            rows = self.fetchall(
                """
                SELECT * FROM cache_entries
                WHERE patch = ? OR data_patch = ?
                ORDER BY fetched_at DESC;
                """,
                (patch, patch),
            )
        return [_row_to_entry(r) for r in rows]

    def list_patches(self) -> list[str]:
        """Return every concrete patch with cached data, newest first."""
        rows = self.fetchall(
            """
            SELECT data_patch AS p, MAX(fetched_at) AS last_fetch
            FROM cache_entries
            WHERE data_patch IS NOT NULL
            GROUP BY data_patch
            ORDER BY last_fetch DESC;
            """
        )
        return [r["p"] for r in rows]

    def total_payload_bytes(self) -> int:
        return int(self.scalar("SELECT COALESCE(SUM(LENGTH(payload)), 0) FROM cache_entries;"))

    def count_entries(self) -> int:
        return int(self.scalar("SELECT COUNT(*) FROM cache_entries;"))

    # ── Backups ───────────────────────────────────────────────────────────────

    def backup_entry(self, domain: str, source: str, patch: str, backed_up_at: str) -> bool:
        """Copy the current entry for the key into ``cache_backups``.

        Returns:
            ``True`` if an entry existed and was copied.
        """
        cur = self.execute(
            """
            INSERT INTO cache_backups (
                domain, source, patch, data_patch, payload,
                schema_version, fetched_at, backed_up_at
            )
            SELECT domain, source, patch, data_patch, payload,
                   schema_version, fetched_at, ?
            FROM cache_entries
            WHERE domain = ? AND source = ? AND patch = ?;
            """,
            (backed_up_at, domain, source, patch),
        )
        return cur.rowcount > 0

    def trim_backups(self, domain: str, source: str, patch: str, keep: int) -> int:
        """Delete all but the newest ``keep`` backups for the key.

        Returns:
            Number of backups deleted.
        """
        cur = self.execute(
            """
            DELETE FROM cache_backups
            WHERE domain = ? AND source = ? AND patch = ?
              AND backup_id NOT IN (
                  SELECT backup_id FROM cache_backups
                  WHERE domain = ? AND source = ? AND patch = ?
                  ORDER BY backup_id DESC
                  LIMIT ?
              );
            """,
            (domain, source, patch, domain, source, patch, keep),
        )
        return cur.rowcount

    def list_backups(self, domain: str, source: str, patch: str) -> list[CacheBackupRow]:
        """Return backups for the key, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM cache_backups
            WHERE domain = ? AND source = ? AND patch = ?
            ORDER BY backup_id DESC;
            """,
            (domain, source, patch),
        )
        return [_row_to_backup(r) for r in rows]

    # ── Deletion ──────────────────────────────────────────────────────────────

    def delete_all(self) -> int:
        """Delete every entry and backup.  Returns the number of entries removed."""
        removed = self.execute("DELETE FROM cache_entries;").rowcount
        self.execute("DELETE FROM cache_backups;")
        return removed

    def delete_patch(self, patch: str) -> int:
        """Delete entries (and their backups) whose key or data patch is ``patch``.

        Returns:
            Number of entries removed.
        """
        self.execute(
            """
            DELETE FROM cache_backups
            WHERE patch = ? OR data_patch = ?
               OR (domain, source, patch) IN (
                   SELECT domain, source, patch FROM cache_entries
                   WHERE patch = ? OR data_patch = ?
               );
            """,
            (patch, patch, patch, patch),
        )
        return self.execute(
            "DELETE FROM cache_entries WHERE patch = ? OR data_patch = ?;",
            (patch, patch),
        ).rowcount


# ── Private helpers ────────────────────────────────────────────────────────────


def _row_to_entry(row) -> CacheEntryRow:
    return CacheEntryRow(
        domain=row["domain"],
        source=row["source"],
        patch=row["patch"],
        data_patch=row["data_patch"],
        payload=row["payload"],
        record_count=int(row["record_count"]),
        schema_version=row["schema_version"],
        fetched_at=row["fetched_at"],
        stored_at=row["stored_at"],
    )


def _row_to_backup(row) -> CacheBackupRow:
    return CacheBackupRow(
        backup_id=int(row["backup_id"]),
        domain=row["domain"],
        source=row["source"],
        patch=row["patch"],
        data_patch=row["data_patch"],
        payload=row["payload"],
        schema_version=row["schema_version"],
        fetched_at=row["fetched_at"],
        backed_up_at=row["backed_up_at"],
    )
