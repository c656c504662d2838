"""
CacheStore — SQLite persistence for ``DataModel`` entries keyed by ``CacheKey``.

Each ``put`` replaces the entry for its key and moves the previous version to
``cache_backups``, keeping at most ``backup_retention_count`` backups per key.
The backup copy, the trim and the overwrite run in one SQLite transaction, so
a concurrent reader sees either the old entry or the new one.  The trim is a
read-then-write on the backup list, so ``put`` calls for the same key are
additionally serialized with a per-key lock.

Every SQLite or filesystem failure surfaces as ``CacheIOError``; deciding
whether that is fatal is the caller's job (the orchestrator treats it as a
miss).

Usage::

    store = CacheStore.from_config(config)
    store.initialize()
    store.put(CacheKey(Domain.ITEMS, "metatft", "14.3"), model)
    store.is_valid(key, max_age_ms=config.cache.max_age_ms)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from tft_meta_sync.db.connection import get_connection
from tft_meta_sync.db.migrations import run_migrations
from tft_meta_sync.db.repositories.cache_repo import CacheEntryRow, CacheRepository
from tft_meta_sync.db.repositories.sync_run_repo import SyncRunRepository
from tft_meta_sync.db.schema import apply_schema
from tft_meta_sync.errors import CacheIOError
from tft_meta_sync.models.domain import CacheKey, DataModel, Domain, model_type_for
from tft_meta_sync.models.sync_run import SyncRun
from tft_meta_sync.utils.time_utils import age_ms, from_iso, to_iso, utcnow

if TYPE_CHECKING:
    from tft_meta_sync.config import AppConfig

logger = logging.getLogger(__name__)


# ── Result types ──────────────────────────────────────────────────────────────


def _no_data_types() -> dict[str, bool]:
    return {d.value: False for d in Domain}


@dataclass(frozen=True)
class CacheStatus:
    """Summary of what the cache holds, overall or for one patch.

    Attributes:
        is_available: ``True`` if at least one entry exists.  Distinguishes
            "never populated" from "populated with an empty dataset".
        last_updated: Newest ``metadata.timestamp`` among matching entries.
        patch: The requested patch, or the newest concrete patch cached.
        schema_version: Schema version of the newest entry.
        data_types: ``{domain: bool}`` for ``team_comps``/``items``/``augments``.
    """

    is_available: bool
    last_updated: Optional[datetime] = None
    patch: Optional[str] = None
    schema_version: Optional[str] = None
    data_types: dict[str, bool] = field(default_factory=_no_data_types)


@dataclass(frozen=True)
class CacheBackup:
    """A superseded entry, as returned by ``CacheStore.backups``."""

    backup_id: int
    backed_up_at: datetime
    model: DataModel


@dataclass(frozen=True)
class CacheSize:
    entry_count: int
    total_bytes: int


# ── Store ─────────────────────────────────────────────────────────────────────


class CacheStore:
    """Patch-aware SQLite cache of canonical models.

    Args:
        db_path: SQLite database file.  Must be a real file path: every
            operation opens its own connection.
        backup_retention_count: Backups kept per key (oldest trimmed first).
        wal_mode: Enable WAL journaling.
        busy_timeout_ms: SQLite busy timeout.
        clock: Returns "now" as an aware UTC datetime; injectable for tests.
    """

    def __init__(
        self,
        db_path: str,
        backup_retention_count: int = 5,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db_path = db_path
        self.backup_retention_count = backup_retention_count
        self._wal_mode = wal_mode
        self._busy_timeout_ms = busy_timeout_ms
        self._clock = clock
        self._initialized = False
        self._key_locks: dict[CacheKey, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config: "AppConfig") -> "CacheStore":
        return cls(
            db_path=config.database.db_path,
            backup_retention_count=config.cache.backup_retention_count,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Create tables and apply pending migrations.  Idempotent."""
        with self._transaction("initialize") as conn:
            apply_schema(conn)
            run_migrations(conn)
        self._initialized = True
        logger.debug("Cache store ready at %s", self.db_path)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with get_connection(
                self.db_path,
                wal_mode=self._wal_mode,
                busy_timeout_ms=self._busy_timeout_ms,
            ) as conn:
                yield conn
        except (sqlite3.Error, OSError) as exc:
            raise CacheIOError(f"Cache {action} failed on {self.db_path}: {exc}") from exc

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault(key, threading.Lock())

    # ── Read / write ──────────────────────────────────────────────────────────

    def put(self, key: CacheKey, model: DataModel) -> None:
        """Store ``model`` under ``key``, demoting the current entry to a backup.

        Raises:
            CacheIOError: If the write fails; nothing is changed in that case.
        """
        self._ensure_initialized()
        now = self._clock()
        entry = CacheEntryRow(
            domain=Domain(key.domain).value,
            source=key.source,
            patch=key.patch,
            data_patch=model.metadata.patch,
            payload=model.model_dump_json(),
            record_count=len(model.data),
            schema_version=model.metadata.schema_version,
            fetched_at=to_iso(model.metadata.timestamp or now),
            stored_at=to_iso(now),
        )

        with self._lock_for(key):
            with self._transaction("put") as conn:
                repo = CacheRepository(conn)
                trimmed = 0
                if repo.backup_entry(entry.domain, entry.source, entry.patch, to_iso(now)):
                    trimmed = repo.trim_backups(
                        entry.domain, entry.source, entry.patch, self.backup_retention_count
                    )
                repo.upsert_entry(entry)

        logger.debug(
            "Cached %d record(s) under %s (%d old backup(s) trimmed)",
            entry.record_count, key, trimmed,
        )

    def get(self, key: CacheKey) -> Optional[DataModel]:
        """Return the stored model for ``key`` regardless of age, or ``None``.

        Raises:
            CacheIOError: On SQLite failure or an undecodable stored payload.
        """
        self._ensure_initialized()
        with self._transaction("get") as conn:
            row = CacheRepository(conn).get_entry(
                Domain(key.domain).value, key.source, key.patch
            )
        if row is None:
            return None
        return self._decode(key.domain, row.payload, key)

    def is_valid(self, key: CacheKey, max_age_ms: float) -> bool:
        """``True`` iff an entry exists for ``key`` and is at most ``max_age_ms`` old."""
        self._ensure_initialized()
        with self._transaction("freshness check") as conn:
            row = CacheRepository(conn).get_entry(
                Domain(key.domain).value, key.source, key.patch
            )
        if row is None:
            return False
        fetched_at = from_iso(row.fetched_at)
        return age_ms(fetched_at, self._clock()) <= max_age_ms

    def backups(self, key: CacheKey) -> list[CacheBackup]:
        """Return superseded versions of ``key``, newest first."""
        self._ensure_initialized()
        with self._transaction("backup listing") as conn:
            rows = CacheRepository(conn).list_backups(
                Domain(key.domain).value, key.source, key.patch
            )
        return [
            CacheBackup(
                backup_id=r.backup_id,
                backed_up_at=from_iso(r.backed_up_at),
                model=self._decode(key.domain, r.payload, key),
            )
            for r in rows
        ]

    # ── Status ────────────────────────────────────────────────────────────────

    def status(self, patch: Optional[str] = None) -> CacheStatus:
        """Describe the cache contents, overall or for one patch.

        Args:
            patch: Restrict to entries whose key patch or data patch matches.
        """
        self._ensure_initialized()
        with self._transaction("status") as conn:
            entries = CacheRepository(conn).list_entries(patch)

        if not entries:
            return CacheStatus(is_available=False, patch=patch)

        newest = entries[0]
        present = {e.domain for e in entries}
        resolved_patch = patch or next((e.data_patch for e in entries if e.data_patch), None)
        return CacheStatus(
            is_available=True,
            last_updated=from_iso(newest.fetched_at),
            patch=resolved_patch,
            schema_version=newest.schema_version,
            data_types={d.value: d.value in present for d in Domain},
        )

    def is_data_available(self, patch: Optional[str] = None) -> bool:
        return self.status(patch).is_available

    def available_patches(self) -> list[str]:
        """Concrete patches with cached data, most recently fetched first."""
        self._ensure_initialized()
        with self._transaction("patch listing") as conn:
            return CacheRepository(conn).list_patches()

    def latest_patch(self) -> Optional[str]:
        patches = self.available_patches()
        return patches[0] if patches else None

    def size(self) -> CacheSize:
        self._ensure_initialized()
        with self._transaction("size") as conn:
            repo = CacheRepository(conn)
            return CacheSize(
                entry_count=repo.count_entries(),
                total_bytes=repo.total_payload_bytes(),
            )

    # ── Clearing ──────────────────────────────────────────────────────────────

    def clear_all(self) -> int:
        """Delete every entry and backup.  Returns the number of entries removed."""
        self._ensure_initialized()
        with self._transaction("clear") as conn:
            removed = CacheRepository(conn).delete_all()
        logger.info("Cleared cache: %d entr(y/ies) removed", removed)
        return removed

    def clear_patch(self, patch: str) -> int:
        """Delete entries whose key patch or data patch is ``patch``, with backups."""
        self._ensure_initialized()
        with self._transaction("patch clear") as conn:
            removed = CacheRepository(conn).delete_patch(patch)
        logger.info("Cleared patch %s: %d entr(y/ies) removed", patch, removed)
        return removed

    # ── Sync run audit ────────────────────────────────────────────────────────

    def record_sync_run(self, run: SyncRun) -> SyncRun:
        """Insert ``run`` (first call) or update it (``run_id`` already set)."""
        self._ensure_initialized()
        with self._transaction("sync run write") as conn:
            repo = SyncRunRepository(conn)
            if run.run_id is None:
                run.run_id = repo.insert(run)
            else:
                repo.update(run)
        return run

    def recent_sync_runs(self, limit: int = 10) -> list[SyncRun]:
        self._ensure_initialized()
        with self._transaction("sync run listing") as conn:
            return SyncRunRepository(conn).get_recent(limit)

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _decode(domain: Domain, payload: str, key: CacheKey) -> DataModel:
        try:
            return model_type_for(domain).model_validate_json(payload)
        except ValidationError as exc:
            raise CacheIOError(f"Stored payload for {key} is unreadable: {exc}") from exc
