"""
SyncOrchestrator — the single entry point consumers use to read metagame data.

Per request the orchestrator walks this state machine (each transition is
logged at DEBUG)::

    IDLE → CACHE_CHECK ─hit──────────────────────────────────────────→ DONE
                       └miss/stale→ FETCHING ─ok→ TRANSFORMING → VALIDATING → STORING → DONE
                                            └failed→ FALLBACK ──────────────────────→ DONE

Fallback order: stored entry for the key regardless of age → the ``latest``
alias (unpinned requests only) → last data held in memory for the domain →
``[]``.  Provider failures never reach the caller.

Concurrent cold requests for the same key share one in-flight task
(single-flight).  Callers await it through ``asyncio.shield`` so a caller
that gives up does not cancel the fetch; the result still lands in the cache.

Usage::

    async with build_orchestrator(config) as orch:
        comps = await orch.get_team_comps()
        items = await orch.get_items(SyncOptions(source="metatft", patch="14.3"))
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, Optional

from tft_meta_sync.cache.store import CacheStatus, CacheStore
from tft_meta_sync.errors import CacheIOError, NormalizationError
from tft_meta_sync.ingestion.base import ProviderClient
from tft_meta_sync.models.domain import (
    LATEST_PATCH,
    Augment,
    CacheKey,
    DataModel,
    Domain,
    Item,
    Source,
    TeamComp,
)
from tft_meta_sync.models.sync_run import SyncRun
from tft_meta_sync.normalization.merge import merge_models
from tft_meta_sync.normalization.normalizer import Normalizer
from tft_meta_sync.normalization.validator import ValidationResult, Validator
from tft_meta_sync.utils.time_utils import utcnow

if TYPE_CHECKING:
    import httpx

    from tft_meta_sync.config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS = 24 * 60 * 60 * 1000

# Items first so the comps of the same cycle can be checked against them.
REFRESH_ORDER: tuple[Domain, ...] = (Domain.ITEMS, Domain.AUGMENTS, Domain.TEAM_COMPS)


class SyncState(StrEnum):
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    VALIDATING = "validating"
    STORING = "storing"
    FALLBACK = "fallback"
    DONE = "done"


class SyncOutcome(StrEnum):
    """Where the data returned for a request came from."""

    CACHE_HIT = "cache_hit"
    FETCHED = "fetched"
    FALLBACK_CACHE = "fallback_cache"
    FALLBACK_MEMORY = "fallback_memory"
    EMPTY = "empty"


@dataclass(frozen=True)
class SyncOptions:
    """Per-request options.

    Attributes:
        source: Provider id or ``combined``; ``None`` uses the default source.
        patch: Pin a concrete patch; ``None`` follows the latest patch.
        force_refresh: Skip the freshness check and always fetch.
    """

    source: Optional[str] = None
    patch: Optional[str] = None
    force_refresh: bool = False


@dataclass(frozen=True)
class SyncReport:
    """What happened on the most recent request for a key."""

    key: CacheKey
    outcome: SyncOutcome
    record_count: int
    finished_at: datetime
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None


class _FetchFailed(Exception):
    """Internal signal: no usable model could be produced for the key."""


class SyncOrchestrator:
    """Coordinates cache, providers, normalization and validation.

    Args:
        providers: ``{source_id: ProviderClient}`` for the enabled providers.
        store: Cache store (lazily initialized on first use).
        normalizer: Defaults to ``Normalizer()``.
        validator: Defaults to ``Validator()``.
        default_source: Source used when a request names none.
        cache_max_age_ms: Freshness limit for cache hits.
        merge_precedence: Provider tie-break order for ``combined``.
        clock: UTC clock for run bookkeeping.
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderClient],
        store: CacheStore,
        normalizer: Optional[Normalizer] = None,
        validator: Optional[Validator] = None,
        default_source: str = Source.COMBINED.value,
        cache_max_age_ms: float = DEFAULT_MAX_AGE_MS,
        merge_precedence: Sequence[str] = (Source.METATFT.value, Source.TACTICS_TOOLS.value),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._providers = dict(providers)
        self._store = store
        self._normalizer = normalizer or Normalizer()
        self._validator = validator or Validator()
        self.default_source = default_source
        self.cache_max_age_ms = cache_max_age_ms
        self.merge_precedence = list(merge_precedence)
        self._clock = clock

        # Most recent concrete patch seen from any source; keys resolve per source.
        self.current_patch: Optional[str] = None
        self._source_patches: dict[str, str] = {}
        self._memory: dict[Domain, DataModel] = {}
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        self._states: dict[CacheKey, SyncState] = {}
        self._outcomes: dict[CacheKey, SyncReport] = {}

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Close every provider's HTTP client."""
        for provider in self._providers.values():
            await provider.aclose()

    async def __aenter__(self) -> "SyncOrchestrator":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def providers(self) -> dict[str, ProviderClient]:
        return dict(self._providers)

    @property
    def store(self) -> CacheStore:
        return self._store

    # ── Keys and state ────────────────────────────────────────────────────────

    def resolve_key(self, domain: Domain, options: Optional[SyncOptions] = None) -> CacheKey:
        options = options or SyncOptions()
        source = options.source or self.default_source
        return CacheKey(
            domain=Domain(domain),
            source=source,
            patch=options.patch or self._source_patches.get(source) or LATEST_PATCH,
        )

    def current_patch_for(self, source: str) -> Optional[str]:
        """Concrete patch unpinned requests for ``source`` currently resolve to."""
        return self._source_patches.get(source)

    def _note_patch(self, source: str, patch: Optional[str], overwrite: bool = True) -> None:
        if not patch:
            return
        if overwrite or source not in self._source_patches:
            self._source_patches[source] = patch
        if overwrite or self.current_patch is None:
            self.current_patch = patch

    def state(self, key: CacheKey) -> SyncState:
        return self._states.get(key, SyncState.IDLE)

    def last_outcome(self, key: CacheKey) -> Optional[SyncReport]:
        """Report for the most recent completed request on ``key``."""
        return self._outcomes.get(key)

    def _transition(self, key: CacheKey, new: SyncState) -> None:
        old = self._states.get(key, SyncState.IDLE)
        self._states[key] = new
        logger.debug("[%s] %s -> %s", key, old, new)

    def _finish(
        self,
        key: CacheKey,
        outcome: SyncOutcome,
        data: list,
        validation: Optional[ValidationResult] = None,
        error: Optional[str] = None,
    ) -> list:
        self._transition(key, SyncState.DONE)
        self._outcomes[key] = SyncReport(
            key=key,
            outcome=outcome,
            record_count=len(data),
            finished_at=self._clock(),
            validation=validation,
            error=error,
        )
        return list(data)

    # ── Public reads ──────────────────────────────────────────────────────────

    async def get_team_comps(self, options: Optional[SyncOptions] = None) -> list[TeamComp]:
        return await self.get_data(Domain.TEAM_COMPS, options)

    async def get_items(self, options: Optional[SyncOptions] = None) -> list[Item]:
        return await self.get_data(Domain.ITEMS, options)

    async def get_augments(self, options: Optional[SyncOptions] = None) -> list[Augment]:
        return await self.get_data(Domain.AUGMENTS, options)

    async def get_data(self, domain: Domain, options: Optional[SyncOptions] = None) -> list:
        """Return canonical records for ``domain``, fetching only when needed.

        Never raises for provider or cache failures; the worst case is ``[]``.
        """
        _, data = await self._get(Domain(domain), options or SyncOptions())
        return data

    async def _get(self, domain: Domain, options: SyncOptions) -> tuple[CacheKey, list]:
        key = self.resolve_key(domain, options)

        self._transition(key, SyncState.CACHE_CHECK)
        if not options.force_refresh:
            cached = self._fresh_entry(key)
            if cached is not None:
                if not options.patch:
                    self._note_patch(key.source, cached.metadata.patch, overwrite=False)
                self._memory.setdefault(domain, cached)
                logger.debug("[%s] cache hit (%d records)", key, len(cached.data))
                return key, self._finish(key, SyncOutcome.CACHE_HIT, cached.data)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._sync(key, options))
            self._inflight[key] = task
            task.add_done_callback(partial(self._release_inflight, key))
        else:
            logger.debug("[%s] joining in-flight fetch", key)
        return key, list(await asyncio.shield(task))

    def _release_inflight(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error("[%s] sync task crashed", key, exc_info=task.exception())

    # ── Sync pipeline ─────────────────────────────────────────────────────────

    async def _sync(self, key: CacheKey, options: SyncOptions) -> list:
        pinned = bool(options.patch)
        self._transition(key, SyncState.FETCHING)
        try:
            model = await self._fetch_model(key, options)
        except _FetchFailed as exc:
            return self._fallback(key, pinned, str(exc))
        except Exception as exc:
            logger.error("[%s] unexpected fetch failure", key, exc_info=exc)
            return self._fallback(key, pinned, f"{type(exc).__name__}: {exc}")

        self._transition(key, SyncState.VALIDATING)
        result = self._validator.validate(model, self._item_catalog(key.domain))
        if not result.is_valid:
            logger.warning(
                "[%s] validation reported %d issue(s); storing anyway: %s",
                key, len(result.errors), result.summary(),
                extra={"domain": key.domain.value, "source": key.source},
            )

        self._transition(key, SyncState.STORING)
        for store_key in self._store_keys(key, model, pinned):
            try:
                self._store.put(store_key, model)
            except CacheIOError as exc:
                logger.error("[%s] cache write failed: %s", store_key, exc)

        self._memory[key.domain] = model
        if not pinned:
            self._note_patch(key.source, model.metadata.patch)

        logger.info(
            "[%s] synced %d record(s) (patch=%s)",
            key, len(model.data), model.metadata.patch,
            extra={"domain": key.domain.value, "source": key.source},
        )
        return self._finish(key, SyncOutcome.FETCHED, model.data, validation=result)

    async def _fetch_model(self, key: CacheKey, options: SyncOptions) -> DataModel:
        """Fetch and normalize; raises ``_FetchFailed`` when nothing usable came back."""
        if key.source == Source.COMBINED.value:
            return await self._fetch_combined(key, options)

        provider = self._providers.get(key.source)
        if provider is None:
            raise _FetchFailed(f"no enabled provider for source '{key.source}'")

        result = await provider.fetch(key.domain, options.patch)
        if not result.success or result.payload is None:
            raise _FetchFailed(f"{key.source}: {result.error}")

        self._transition(key, SyncState.TRANSFORMING)
        try:
            return self._normalizer.normalize(
                key.domain, result.payload, source=key.source, item_names=self._item_names()
            )
        except NormalizationError as exc:
            logger.warning("[%s] %s", key, exc)
            raise _FetchFailed(str(exc)) from exc

    async def _fetch_combined(self, key: CacheKey, options: SyncOptions) -> DataModel:
        if not self._providers:
            raise _FetchFailed("no providers enabled")

        names = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[n].fetch(key.domain, options.patch) for n in names),
            return_exceptions=True,
        )

        self._transition(key, SyncState.TRANSFORMING)
        models: dict[str, DataModel] = {}
        failures: list[str] = []
        item_names = self._item_names()
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error("[%s] %s fetch crashed", key, name, exc_info=result)
                failures.append(f"{name}: {type(result).__name__}: {result}")
                continue
            if not result.success or result.payload is None:
                failures.append(f"{name}: {result.error}")
                continue
            try:
                models[name] = self._normalizer.normalize(
                    key.domain, result.payload, source=name, item_names=item_names
                )
            except NormalizationError as exc:
                logger.warning("[%s] %s", key, exc)
                failures.append(f"{name}: {exc}")

        if not models:
            raise _FetchFailed("; ".join(failures) or "no provider returned data")
        if failures:
            logger.warning("[%s] merging without %s", key, "; ".join(failures))
        return merge_models(key.domain, models, self.merge_precedence, clock=self._clock)

    def _fallback(self, key: CacheKey, pinned: bool, error: str) -> list:
        self._transition(key, SyncState.FALLBACK)
        log_extra = {"domain": key.domain.value, "source": key.source}

        candidates = [key]
        if not pinned and key.patch != LATEST_PATCH:
            candidates.append(key.with_patch(LATEST_PATCH))
        for candidate in candidates:
            cached = self._safe_get(candidate)
            if cached is not None:
                logger.warning(
                    "[%s] fetch failed (%s); serving cached data from %s",
                    key, error, cached.metadata.timestamp, extra=log_extra,
                )
                self._memory.setdefault(key.domain, cached)
                return self._finish(key, SyncOutcome.FALLBACK_CACHE, cached.data, error=error)

        remembered = self._memory.get(key.domain)
        if remembered is not None:
            logger.warning(
                "[%s] fetch failed (%s); serving in-memory data", key, error, extra=log_extra
            )
            return self._finish(key, SyncOutcome.FALLBACK_MEMORY, remembered.data, error=error)

        logger.warning("[%s] fetch failed (%s) and nothing is cached", key, error, extra=log_extra)
        return self._finish(key, SyncOutcome.EMPTY, [], error=error)

    @staticmethod
    def _store_keys(key: CacheKey, model: DataModel, pinned: bool) -> list[CacheKey]:
        keys = [key]
        if pinned:
            return keys
        for patch in (LATEST_PATCH, model.metadata.patch):
            if patch and key.with_patch(patch) not in keys:
                keys.append(key.with_patch(patch))
        return keys

    # ── Cache helpers ─────────────────────────────────────────────────────────

    def _fresh_entry(self, key: CacheKey) -> Optional[DataModel]:
        try:
            if not self._store.is_valid(key, self.cache_max_age_ms):
                return None
            return self._store.get(key)
        except CacheIOError as exc:
            logger.error("[%s] cache read failed; treating as miss: %s", key, exc)
            return None

    def _safe_get(self, key: CacheKey) -> Optional[DataModel]:
        try:
            return self._store.get(key)
        except CacheIOError as exc:
            logger.error("[%s] cache read failed: %s", key, exc)
            return None

    def _item_names(self) -> dict[str, str]:
        items = self._memory.get(Domain.ITEMS)
        return {item.id: item.name for item in items.data} if items else {}

    def _item_catalog(self, domain: Domain) -> Optional[set[str]]:
        if domain != Domain.TEAM_COMPS:
            return None
        items = self._memory.get(Domain.ITEMS)
        return {item.id for item in items.data} if items else None

    # ── Maintenance ───────────────────────────────────────────────────────────

    def revalidate(
        self, domain: Domain, options: Optional[SyncOptions] = None
    ) -> Optional[ValidationResult]:
        """Re-run validation on the stored model for a key without fetching.

        Returns:
            The ``ValidationResult``, or ``None`` if nothing is stored or held
            in memory for the key.
        """
        domain = Domain(domain)
        key = self.resolve_key(domain, options)
        model = self._safe_get(key) or self._memory.get(domain)
        if model is None:
            return None
        result = self._validator.validate(model, self._item_catalog(domain))
        if result.is_valid:
            logger.info("[%s] revalidated: no issues", key)
        else:
            logger.warning("[%s] revalidated: %d issue(s): %s", key, len(result.errors), result.summary())
        return result

    async def refresh_all(
        self, options: Optional[SyncOptions] = None, trigger: str = "cli"
    ) -> SyncRun:
        """Force-refresh every domain (items, augments, then team comps).

        Returns:
            The ``SyncRun`` audit record, also written to ``sync_runs``.
        """
        options = replace(options or SyncOptions(), force_refresh=True)
        run = SyncRun(
            run_slug=str(uuid.uuid4()),
            trigger=trigger,
            source=options.source or self.default_source,
            started_at=self._clock(),
        )
        self._record_run(run)
        logger.info("Refresh %s started (source=%s)", run.run_slug[:8], run.source)

        outcomes: dict[str, str] = {}
        errors: list[str] = []
        for domain in REFRESH_ORDER:
            key, data = await self._get(domain, options)
            report = self.last_outcome(key)
            outcome = report.outcome if report else SyncOutcome.EMPTY
            outcomes[domain.value] = outcome.value
            if outcome == SyncOutcome.FETCHED:
                run.records_stored += len(data)
            elif report and report.error:
                errors.append(f"{domain}: {report.error}")

        fetched = sum(1 for o in outcomes.values() if o == SyncOutcome.FETCHED)
        if fetched == len(REFRESH_ORDER):
            run.status = "success"
        elif fetched == 0:
            run.status = "failed"
        else:
            run.status = "partial"
        run.domain_outcomes = outcomes
        run.error_message = "; ".join(errors) or None
        run.finished_at = self._clock()
        self._record_run(run)

        logger.info(
            "Refresh %s finished: %s (%d records stored)",
            run.run_slug[:8], run.status, run.records_stored,
        )
        return run

    def _record_run(self, run: SyncRun) -> None:
        try:
            self._store.record_sync_run(run)
        except CacheIOError as exc:
            logger.error("Could not record sync run %s: %s", run.run_slug, exc)

    def get_cache_status(self, patch: Optional[str] = None) -> CacheStatus:
        try:
            return self._store.status(patch)
        except CacheIOError as exc:
            logger.error("Cache status unavailable: %s", exc)
            return CacheStatus(is_available=False, patch=patch)

    def is_offline_data_available(self, patch: Optional[str] = None) -> bool:
        return self.get_cache_status(patch).is_available

    def clear_cache(self) -> None:
        """Drop every stored entry, backup and in-memory model."""
        try:
            self._store.clear_all()
        except CacheIOError as exc:
            logger.error("Cache clear failed: %s", exc)
        self._memory.clear()
        self._outcomes.clear()
        self._source_patches.clear()
        self.current_patch = None

    def clear_patch_cache(self, patch: str) -> None:
        """Drop stored entries for ``patch`` and any in-memory model of it."""
        try:
            self._store.clear_patch(patch)
        except CacheIOError as exc:
            logger.error("Cache clear for patch %s failed: %s", patch, exc)
        for domain, model in list(self._memory.items()):
            if model.metadata.patch == patch:
                del self._memory[domain]
        for source, current in list(self._source_patches.items()):
            if current == patch:
                del self._source_patches[source]
        if self.current_patch == patch:
            self.current_patch = None


# ── Factory ───────────────────────────────────────────────────────────────────


def build_orchestrator(
    config: "AppConfig",
    transport: Optional["httpx.AsyncBaseTransport"] = None,
) -> SyncOrchestrator:
    """Wire an orchestrator from ``AppConfig``.

    Args:
        config: Loaded application config.
        transport: Optional HTTP transport shared by every provider client
            (``httpx.MockTransport`` in tests).
    """
    from tft_meta_sync.ingestion import PROVIDER_CLASSES

    providers = {
        name: PROVIDER_CLASSES[name](cfg, transport=transport)
        for name, cfg in config.providers.enabled().items()
    }
    return SyncOrchestrator(
        providers=providers,
        store=CacheStore.from_config(config),
        normalizer=Normalizer(normalize_names=config.sync.normalize_names),
        default_source=config.sync.default_source,
        cache_max_age_ms=config.cache.max_age_ms,
        merge_precedence=config.sync.merge_precedence,
    )
