"""
Error taxonomy for the sync pipeline.

Fetch errors (``NetworkError``, ``ProviderError``) are retried inside the
provider client and then converted to a failed ``FetchResult``; callers of
``ProviderClient.fetch()`` never see them.  ``NormalizationError`` means a
provider payload did not match its asserted shape and is treated like a
failed fetch.  ``CacheIOError`` wraps SQLite failures in the cache store; the
orchestrator logs it and degrades to a cache miss.

Validation problems are NOT exceptions: see ``ValidationResult``.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by this package."""


# ── Fetch ─────────────────────────────────────────────────────────────────────


class FetchError(SyncError):
    """A single provider request failed.  Retryable.

    Attributes:
        source: Provider id that produced the failure.
        status: HTTP status code, or ``None`` when no response was received.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        self.source = source
        self.status = status
        super().__init__(message)


class NetworkError(FetchError):
    """Transport-level failure: DNS, connect, timeout, reset."""


class ProviderError(FetchError):
    """The provider answered, but with a non-2xx status or an unreadable body."""


# ── Transform / persistence ───────────────────────────────────────────────────


class NormalizationError(SyncError):
    """A raw payload did not match the provider's asserted shape.

    Attributes:
        source: Provider id of the payload.
        domain: Domain that was being normalized.
    """

    def __init__(self, message: str, source: str, domain: str) -> None:
        self.source = source
        self.domain = domain
        super().__init__(f"[{source}/{domain}] {message}")


class CacheIOError(SyncError):
    """Reading from or writing to the cache database failed."""
