"""
Sync layer — the orchestrator consumers talk to.

Modules:
    orchestrator — SyncOrchestrator (cache-first reads, single-flight fetch,
                   advisory validation, fallback chain) and build_orchestrator
"""

from tft_meta_sync.sync.orchestrator import (
    SyncOptions,
    SyncOrchestrator,
    SyncOutcome,
    SyncReport,
    SyncState,
    build_orchestrator,
)

__all__ = [
    "SyncOptions",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncReport",
    "SyncState",
    "build_orchestrator",
]
