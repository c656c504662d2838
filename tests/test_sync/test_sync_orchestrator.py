"""Tests for SyncOrchestrator — cache-first reads, single-flight, fallback, merge, audit."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from tft_meta_sync.cache.store import CacheStore
from tft_meta_sync.errors import CacheIOError
from tft_meta_sync.ingestion import PROVIDER_CLASSES
from tft_meta_sync.models.domain import CacheKey, Domain
from tft_meta_sync.normalization.normalizer import Normalizer
from tft_meta_sync.sync.orchestrator import (
    SyncOptions,
    SyncOrchestrator,
    SyncOutcome,
    SyncState,
)

FORCE = SyncOptions(force_refresh=True)


@pytest.fixture
def build(store, provider_config, clock):
    """Factory: ``build({"metatft": router, ...}, **kwargs) -> SyncOrchestrator``."""

    def _build(routers, cache_store=None, **kwargs):
        providers = {
            name: PROVIDER_CLASSES[name](provider_config(), transport=router.transport)
            for name, router in routers.items()
        }
        kwargs.setdefault("default_source", next(iter(routers)) if len(routers) == 1 else "combined")
        return SyncOrchestrator(
            providers,
            cache_store or store,
            normalizer=Normalizer(clock=clock),
            clock=clock,
            **kwargs,
        )

    return _build


def _run(orch, *calls):
    """Run coroutine factories sequentially inside one loop; return their results."""

    async def main():
        async with orch:
            return [await call() for call in calls]

    return asyncio.run(main())


class TestCacheFirst:
    def test_second_read_is_a_cache_hit(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        first, second = _run(orch, orch.get_items, orch.get_items)

        assert router.hits("items") == 1
        assert first == second
        assert [i.name for i in first] == ["BF Sword", "Infinity Edge"]
        report = orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "14.3"))
        assert report.outcome == SyncOutcome.CACHE_HIT

    def test_unpinned_fetch_stored_under_latest_and_patch(self, build, make_router, store, metatft_items_body):
        orch = build({"metatft": make_router({"items": metatft_items_body})})

        _run(orch, orch.get_items)

        assert store.get(CacheKey(Domain.ITEMS, "metatft", "latest")) is not None
        assert store.get(CacheKey(Domain.ITEMS, "metatft", "14.3")) is not None
        assert orch.current_patch == "14.3"
        assert orch.state(CacheKey(Domain.ITEMS, "metatft", "latest")) == SyncState.DONE

    def test_pinned_fetch_stored_only_under_its_patch(self, build, make_router, store, metatft_items_body):
        orch = build({"metatft": make_router({"items": metatft_items_body})})

        _run(orch, lambda: orch.get_items(SyncOptions(patch="14.2")))

        assert store.get(CacheKey(Domain.ITEMS, "metatft", "14.2")) is not None
        assert store.get(CacheKey(Domain.ITEMS, "metatft", "latest")) is None
        assert orch.current_patch is None

    def test_sources_on_different_patches_each_fetch_once(
        self, build, make_router, store, metatft_items_body, tactics_items_body,
    ):
        tactics_items_body["patch"] = "14.2"
        metatft = make_router({"items": metatft_items_body})
        tactics = make_router({"items": tactics_items_body})
        orch = build({"metatft": metatft, "tactics_tools": tactics})
        mt = SyncOptions(source="metatft")
        tt = SyncOptions(source="tactics_tools")

        _run(orch, *[lambda o=o: orch.get_items(o) for o in (mt, tt) * 3])

        assert metatft.hits("items") == 1
        assert tactics.hits("items") == 1
        assert orch.current_patch_for("metatft") == "14.3"
        assert orch.current_patch_for("tactics_tools") == "14.2"
        assert store.is_valid(orch.resolve_key(Domain.ITEMS, tt), orch.cache_max_age_ms)

    def test_refetch_is_stored_under_the_requested_key(self, build, make_router, store, metatft_items_body):
        router = make_router({"items": dict(metatft_items_body, patch="14.2")})
        orch = build({"metatft": router})

        async def new_patch_released():
            router.routes["items"] = metatft_items_body
            return await orch.get_items(FORCE)

        _run(orch, orch.get_items, new_patch_released)

        requested = store.get(CacheKey(Domain.ITEMS, "metatft", "14.2"))
        assert requested.metadata.patch == "14.3"
        assert store.get(CacheKey(Domain.ITEMS, "metatft", "14.3")) is not None
        assert orch.current_patch_for("metatft") == "14.3"

    def test_empty_patch_counts_as_unpinned(self, build, make_router, store, metatft_items_body):
        orch = build({"metatft": make_router({"items": metatft_items_body})})

        _run(orch, lambda: orch.get_items(SyncOptions(patch="")))

        assert store.get(CacheKey(Domain.ITEMS, "metatft", "14.3")) is not None
        assert orch.current_patch == "14.3"

    def test_force_refresh_bypasses_fresh_cache(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        _run(orch, orch.get_items, lambda: orch.get_items(FORCE))
        assert router.hits("items") == 2

    def test_stale_entry_triggers_fetch(self, build, make_router, clock, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router}, cache_max_age_ms=60_000)

        async def later():
            clock.advance(minutes=2)
            return await orch.get_items()

        _run(orch, orch.get_items, later)
        assert router.hits("items") == 2


class TestSingleFlight:
    def test_concurrent_cold_reads_share_one_fetch(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        async def main():
            async with orch:
                return await asyncio.gather(orch.get_items(), orch.get_items())

        first, second = asyncio.run(main())

        assert router.hits("items") == 1
        assert first == second
        assert len(first) == 2

    def test_abandoned_caller_does_not_cancel_fetch(self, build, make_router, metatft_items_body):
        router = make_router()
        orch = build({"metatft": router})

        async def main():
            gate = asyncio.Event()

            async def slow(request):
                await gate.wait()
                return httpx.Response(200, json=metatft_items_body)

            router.routes["items"] = slow
            async with orch:
                caller = asyncio.ensure_future(orch.get_items())
                await asyncio.sleep(0.01)
                caller.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await caller
                gate.set()
                return await orch.get_items()

        data = asyncio.run(main())

        assert router.hits("items") == 1
        assert len(data) == 2


class TestFallback:
    def test_forced_refresh_failure_returns_cached_data(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        async def fail_then_refresh():
            router.routes["items"] = 500
            return await orch.get_items(FORCE)

        fresh, fallback = _run(orch, orch.get_items, fail_then_refresh)

        assert fallback == fresh
        report = orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "14.3"))
        assert report.outcome == SyncOutcome.FALLBACK_CACHE
        assert "HTTP 500" in report.error

    def test_corrupt_compressed_body_returns_cached_data(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        async def corrupt_then_refresh():
            router.routes["items"] = lambda request: httpx.Response(
                200, headers={"Content-Encoding": "gzip"}, content=b"not gzip at all"
            )
            return await orch.get_items(FORCE)

        fresh, fallback = _run(orch, orch.get_items, corrupt_then_refresh)

        assert len(fallback) == 2
        assert fallback == fresh
        report = orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "14.3"))
        assert report.outcome == SyncOutcome.FALLBACK_CACHE
        assert "DecodingError" in report.error

    def test_unexpected_client_exception_still_falls_back(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        async def crash_then_refresh():
            router.routes["items"] = RuntimeError("handler bug")
            return await orch.get_items(FORCE)

        fresh, fallback = _run(orch, orch.get_items, crash_then_refresh)

        assert fallback == fresh
        report = orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "14.3"))
        assert report.outcome == SyncOutcome.FALLBACK_CACHE
        assert "RuntimeError" in report.error

    def test_memory_used_when_store_has_nothing(self, build, make_router, store, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        async def wipe_and_refresh():
            store.clear_all()
            router.routes["items"] = httpx.ConnectError("offline")
            return await orch.get_items(FORCE)

        fresh, fallback = _run(orch, orch.get_items, wipe_and_refresh)

        assert fallback == fresh
        report = orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "14.3"))
        assert report.outcome == SyncOutcome.FALLBACK_MEMORY

    def test_cold_failure_returns_empty(self, build, make_router):
        orch = build({"metatft": make_router({"items": 503})})

        (data,) = _run(orch, orch.get_items)

        assert data == []
        assert orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "latest")).outcome == SyncOutcome.EMPTY
        assert orch.is_offline_data_available() is False
        assert orch.get_cache_status().is_available is False

    def test_malformed_payload_treated_as_failed_fetch(self, build, make_router):
        orch = build({"metatft": make_router({"comps": {"patch": "14.3", "unexpected": []}})})

        (data,) = _run(orch, orch.get_team_comps)
        assert data == []

    def test_unknown_source_falls_back(self, build, make_router, metatft_items_body):
        orch = build({"metatft": make_router({"items": metatft_items_body})})

        (data,) = _run(orch, lambda: orch.get_items(SyncOptions(source="tactics_tools")))

        report = orch.last_outcome(CacheKey(Domain.ITEMS, "tactics_tools", "latest"))
        assert data == []
        assert "no enabled provider" in report.error

    def test_cache_errors_degrade_to_miss(self, build, make_router, metatft_items_body):
        broken = MagicMock(spec=CacheStore)
        broken.is_valid.side_effect = CacheIOError("disk gone")
        broken.get.side_effect = CacheIOError("disk gone")
        broken.put.side_effect = CacheIOError("disk gone")
        orch = build({"metatft": make_router({"items": metatft_items_body})}, cache_store=broken)

        (data,) = _run(orch, orch.get_items)

        assert len(data) == 2
        assert orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "latest")).outcome == SyncOutcome.FETCHED


class TestValidationIsAdvisory:
    def test_invalid_record_is_returned_and_stored(self, build, make_router, store, metatft_comps_body):
        metatft_comps_body["comps"][0]["avgPlacement"] = 9
        orch = build({"metatft": make_router({"comps": metatft_comps_body})})

        (comps,) = _run(orch, orch.get_team_comps)

        assert comps[0].avg_placement == 9
        assert store.get(CacheKey(Domain.TEAM_COMPS, "metatft", "14.3")) is not None
        report = orch.last_outcome(CacheKey(Domain.TEAM_COMPS, "metatft", "latest"))
        assert report.outcome == SyncOutcome.FETCHED
        issue = next(e for e in report.validation.errors if e.field == "data[0].avg_placement")
        assert issue.value == 9

    def test_revalidate_reads_stored_model(self, build, make_router, metatft_comps_body):
        metatft_comps_body["comps"][0]["avgPlacement"] = 9
        orch = build({"metatft": make_router({"comps": metatft_comps_body})})

        _run(orch, orch.get_team_comps)
        result = orch.revalidate(Domain.TEAM_COMPS)

        assert result is not None and not result.is_valid
        assert orch.revalidate(Domain.AUGMENTS) is None


class TestCombined:
    def test_merge_prefers_higher_play_rate(self, build, make_router, store):
        metatft = make_router({"items": {"patch": "14.3", "items": [
            {"id": "X", "name": "Old", "playRate": 10.0},
            {"id": "Only-MT", "name": "Mt"},
        ]}})
        tactics = make_router({"items": {"patch": "14.3", "items": [
            {"id": "X", "name": "New", "frequency": 20.0},
            {"id": "Only-TT", "name": "Tt"},
        ]}})
        orch = build({"metatft": metatft, "tactics_tools": tactics})

        (items,) = _run(orch, orch.get_items)

        by_id = {i.id: i for i in items}
        assert by_id["X"].name == "New"
        assert set(by_id) == {"X", "Only-MT", "Only-TT"}
        cached = store.get(CacheKey(Domain.ITEMS, "combined", "14.3"))
        assert cached.metadata.source == "combined"

    def test_one_provider_down_still_fetches(self, build, make_router, metatft_items_body):
        orch = build({
            "metatft": make_router({"items": metatft_items_body}),
            "tactics_tools": make_router({"items": 502}),
        })

        (items,) = _run(orch, orch.get_items)

        assert len(items) == 2
        assert orch.last_outcome(CacheKey(Domain.ITEMS, "combined", "latest")).outcome == SyncOutcome.FETCHED

    def test_crashing_provider_does_not_discard_the_other(self, build, make_router, metatft_items_body):
        orch = build({
            "metatft": make_router({"items": metatft_items_body}),
            "tactics_tools": make_router({"items": RuntimeError("handler bug")}),
        })

        (items,) = _run(orch, orch.get_items)

        assert len(items) == 2
        assert orch.last_outcome(CacheKey(Domain.ITEMS, "combined", "latest")).outcome == SyncOutcome.FETCHED

    def test_all_providers_down_falls_back(self, build, make_router):
        orch = build({
            "metatft": make_router({"items": 500}),
            "tactics_tools": make_router({"items": 500}),
        })
        (items,) = _run(orch, orch.get_items)
        assert items == []


class TestRefreshAll:
    def test_successful_run_is_recorded(
        self, build, make_router, store,
        metatft_items_body, metatft_augments_body, metatft_comps_body,
    ):
        router = make_router({
            "items": metatft_items_body,
            "augments": metatft_augments_body,
            "comps": metatft_comps_body,
        })
        orch = build({"metatft": router})

        (run,) = _run(orch, orch.refresh_all)

        assert run.status == "success"
        assert run.domain_outcomes == {"items": "fetched", "augments": "fetched", "team_comps": "fetched"}
        assert run.records_stored == 5
        assert run.finished_at is not None
        (stored,) = store.recent_sync_runs()
        assert stored.run_slug == run.run_slug
        assert stored.status == "success"

    def test_items_fetched_first_name_comp_items(
        self, build, make_router,
        metatft_items_body, metatft_augments_body, metatft_comps_body,
    ):
        router = make_router({
            "items": metatft_items_body,
            "augments": metatft_augments_body,
            "comps": metatft_comps_body,
        })
        orch = build({"metatft": router})

        _run(orch, orch.refresh_all)
        (comps,) = _run(orch, orch.get_team_comps)

        assert [r.url.path.rsplit("/", 1)[-1] for r in router.calls] == ["items", "augments", "comps"]
        assert comps[0].units[0].items[0].name == "Infinity Edge"

    def test_partial_run(self, build, make_router, metatft_items_body):
        router = make_router({"items": metatft_items_body, "augments": 500, "comps": 500})
        orch = build({"metatft": router})

        (run,) = _run(orch, lambda: orch.refresh_all(trigger="scheduler"))

        assert run.status == "partial"
        assert run.trigger == "scheduler"
        assert run.domain_outcomes["augments"] == "empty"
        assert "augments" in run.error_message

    def test_failed_run(self, build, make_router):
        orch = build({"metatft": make_router({"items": 500, "augments": 500, "comps": 500})})

        (run,) = _run(orch, orch.refresh_all)

        assert run.status == "failed"
        assert run.records_stored == 0


class TestMaintenance:
    def test_clear_cache_resets_everything(self, build, make_router, store, metatft_items_body):
        router = make_router({"items": metatft_items_body})
        orch = build({"metatft": router})

        _run(orch, orch.get_items)
        orch.clear_cache()

        assert orch.current_patch is None
        assert store.status().is_available is False
        assert orch.last_outcome(CacheKey(Domain.ITEMS, "metatft", "14.3")) is None

    def test_clear_patch_cache(self, build, make_router, store, metatft_items_body):
        orch = build({"metatft": make_router({"items": metatft_items_body})})

        _run(orch, orch.get_items)
        orch.clear_patch_cache("14.3")

        assert orch.current_patch is None
        assert store.available_patches() == []
        assert orch.is_offline_data_available("14.3") is False

    def test_status_reflects_cached_domains(self, build, make_router, metatft_items_body):
        orch = build({"metatft": make_router({"items": metatft_items_body})})

        _run(orch, orch.get_items)
        status = orch.get_cache_status()

        assert status.is_available
        assert status.patch == "14.3"
        assert status.data_types["items"] is True
        assert status.data_types["team_comps"] is False
