"""
Repository for the ``sync_runs`` audit table.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from tft_meta_sync.db.repositories.base import BaseRepository
from tft_meta_sync.models.sync_run import SyncRun
from tft_meta_sync.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class SyncRunRepository(BaseRepository):
    """Read/write access to ``sync_runs``."""

    def insert(self, run: SyncRun) -> int:
        """Insert a new run record.

        Returns:
            The newly assigned ``run_id``.
        """
        self.execute(
            """
            INSERT INTO sync_runs (
                run_slug, trigger, source, status, domain_outcomes,
                records_stored, error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.trigger,
                run.source,
                run.status,
                json.dumps(run.domain_outcomes),
                run.records_stored,
                run.error_message,
                to_iso(run.started_at),
                to_iso(run.finished_at) if run.finished_at else None,
            ),
        )
        return self.last_insert_rowid()

    def update(self, run: SyncRun) -> None:
        """Persist status, outcomes and finish time of an existing run."""
        if run.run_id is None:
            raise ValueError("Cannot update a SyncRun that has not been inserted.")
        self.execute(
            """
            UPDATE sync_runs
            SET status = ?, domain_outcomes = ?, records_stored = ?,
                error_message = ?, finished_at = ?
            WHERE run_id = ?;
            """,
            (
                run.status,
                json.dumps(run.domain_outcomes),
                run.records_stored,
                run.error_message,
                to_iso(run.finished_at) if run.finished_at else None,
                run.run_id,
            ),
        )

    def get_recent(self, limit: int = 10) -> list[SyncRun]:
        """Return the most recent runs, newest first."""
        rows = self.fetchall(
            "SELECT * FROM sync_runs ORDER BY started_at DESC, run_id DESC LIMIT ?;",
            (limit,),
        )
        return [_row_to_run(r) for r in rows]

    def get_by_slug(self, run_slug: str) -> Optional[SyncRun]:
        row = self.fetchone("SELECT * FROM sync_runs WHERE run_slug = ?;", (run_slug,))
        return _row_to_run(row) if row else None


def _row_to_run(row) -> SyncRun:
    return SyncRun(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        trigger=row["trigger"],
        source=row["source"],
        status=row["status"],
        domain_outcomes=json.loads(row["domain_outcomes"] or "{}"),
        records_stored=row["records_stored"],
        error_message=row["error_message"],
        started_at=from_iso(row["started_at"]),
        finished_at=from_iso(row["finished_at"]),
    )
