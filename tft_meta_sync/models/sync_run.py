"""
Sync run audit record.

Every ``refresh_all`` (CLI ``sync --all`` or a scheduler tick) writes one
``SyncRun`` row to ``sync_runs`` so the history of refreshes, their outcome
per domain, and any failure can be inspected after the fact.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_TRIGGERS = frozenset({"cli", "scheduler", "api"})
VALID_RUN_STATUSES = frozenset({"started", "success", "partial", "failed"})


class SyncRun(BaseModel):
    """Audit row for one refresh cycle.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        trigger: What started the run (``cli``, ``scheduler``, ``api``).
        source: Source the run refreshed (provider id or ``combined``).
        status: ``success`` when every domain came from a fresh fetch,
            ``partial`` when at least one fell back, ``failed`` when all did.
        domain_outcomes: ``{domain: outcome}``; outcome is one of the
            ``SyncOutcome`` values.
        records_stored: Total canonical records written to the cache.
        error_message: Summary of failures, if any.
        started_at: UTC datetime when the run began.
        finished_at: UTC datetime when the run completed.
    """

    # Not frozen: status and counts are filled in as the run progresses.
    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    trigger: str = "cli"
    source: str
    status: str = "started"
    domain_outcomes: dict[str, Any] = {}
    records_stored: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("trigger")
    @classmethod
    def validate_trigger(cls, v: str) -> str:
        if v not in VALID_TRIGGERS:
            raise ValueError(
                f"Unknown trigger '{v}'. Must be one of {sorted(VALID_TRIGGERS)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v
