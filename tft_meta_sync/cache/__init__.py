"""
Persistent, patch-aware cache of canonical metagame models.

Modules:
    store — ``CacheStore`` (put / get / is_valid / status / clear) over the
            SQLite tables in ``tft_meta_sync.db``.
"""

from tft_meta_sync.cache.store import CacheBackup, CacheSize, CacheStatus, CacheStore

__all__ = ["CacheBackup", "CacheSize", "CacheStatus", "CacheStore"]
