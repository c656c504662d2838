"""
Shared pytest fixtures for the TFT Meta Sync test suite.

Provides:
  - ``db_path`` / ``store``: a file-backed SQLite cache under ``tmp_path``
    (every store operation opens its own connection, so ``:memory:`` won't do).
  - ``FakeClock``: a settable UTC clock for freshness tests.
  - ``Router``: an ``httpx.MockTransport`` handler that routes by endpoint and
    records every request.
  - Provider-shaped sample payloads for both providers.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import pytest

from tft_meta_sync.cache.store import CacheStore
from tft_meta_sync.config import ProviderConfig
from tft_meta_sync.models.domain import (
    Augment,
    Champion,
    DataMetadata,
    DataModel,
    Domain,
    Item,
    TeamComp,
    model_type_for,
)

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Clock / sleep fakes ───────────────────────────────────────────────────────

class FakeClock:
    """Returns a fixed UTC datetime until advanced."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Async sleep that returns immediately and remembers the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# ── Cache store ───────────────────────────────────────────────────────────────

@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "db" / "cache.db")


@pytest.fixture
def store(db_path, clock) -> CacheStore:
    """An initialized CacheStore keeping 3 backups per key, driven by ``clock``."""
    s = CacheStore(db_path, backup_retention_count=3, clock=clock)
    s.initialize()
    return s


# ── HTTP mocking ──────────────────────────────────────────────────────────────

class Router:
    """``httpx.MockTransport`` handler keyed by the last path segment.

    Route values:
      - ``dict``       → 200 with that JSON body
      - ``int``        → that status with a short error body
      - ``Exception``  → raised (use ``httpx.ConnectError`` for network failures)
      - callable       → called with the request, must return ``httpx.Response``
    """

    def __init__(self, routes: Optional[dict[str, Any]] = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        endpoint = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        route = self.routes.get(endpoint)
        if route is None:
            return httpx.Response(404, json={"error": f"no route for {endpoint}"})
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return httpx.Response(route, text=f"upstream said {route}")
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def hits(self, endpoint: str) -> int:
        return sum(1 for r in self.calls if r.url.path.endswith("/" + endpoint))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def make_router() -> type[Router]:
    return Router


def make_provider_config(**overrides: Any) -> ProviderConfig:
    """Provider config with no retries, no backoff and a generous rate limit."""
    values: dict[str, Any] = {
        "base_url": "https://provider.test/tft",
        "api_key_env": None,
        "requests_per_minute": 1000,
        "max_retries": 0,
        "retry_delay_ms": 0,
        "timeout_seconds": 5.0,
    }
    values.update(overrides)
    return ProviderConfig(**values)


@pytest.fixture
def provider_config() -> Callable[..., ProviderConfig]:
    return make_provider_config


# ── Provider-shaped payloads ──────────────────────────────────────────────────

@pytest.fixture
def metatft_items_body() -> dict:
    return {
        "patch": "14.3",
        "items": [
            {"id": "TFT_Item_BFSword", "name": "TFT_Item_BF_Sword", "isComponent": True,
             "components": [], "playRate": 40.0},
            {"id": "TFT_Item_InfinityEdge", "name": "TFT_Item_Infinity_Edge", "isComponent": False,
             "components": ["TFT_Item_BFSword", "TFT_Item_SparringGloves"], "playRate": 12.5},
        ],
    }


@pytest.fixture
def metatft_augments_body() -> dict:
    return {
        "patch": "14.3",
        "augments": [
            {"id": "TFT9_Augment_ThrillOfTheHunt", "name": "TFT9_Augment_Thrill_of_the_hunt",
             "tier": 2, "description": "Heal on kill.", "synergies": ["Slayer"],
             "frequency": 8.0, "avgPlacement": 4.1},
            {"id": "TFT9_Augment_Prismatic", "name": "Pandoras Items", "tier": "Prismatic"},
        ],
    }


@pytest.fixture
def metatft_comps_body() -> dict:
    return {
        "patch": "14.3",
        "comps": [
            {
                "id": "comp-1",
                "name": "Reroll Ahri",
                "avgPlacement": 3.8,
                "playRate": 6.2,
                "winRate": 18.0,
                "units": [
                    {"id": "TFT11_Ahri", "name": "TFT11_Ahri", "cost": 2,
                     "items": ["TFT_Item_InfinityEdge"]},
                    {"id": "TFT11_Lux", "name": "TFT11_Lux", "cost": 4, "items": []},
                ],
                "traits": [{"name": "Arcanist"}],
                "items": [{"unitId": "TFT11_Ahri", "items": ["TFT_Item_InfinityEdge"]}],
            }
        ],
    }


@pytest.fixture
def tactics_items_body() -> dict:
    return {
        "patch": "14.3",
        "items": [
            {"id": "TFT_Item_BFSword", "name": "BF Sword", "recipe": None, "frequency": 55.0},
            {"id": "TFT_Item_Deathblade", "name": "Deathblade",
             "recipe": ["TFT_Item_BFSword", "TFT_Item_BFSword"], "frequency": 9.0},
            {"id": "TFT_Item_Mystery", "name": "Mystery"},
        ],
    }


@pytest.fixture
def tactics_comps_body() -> dict:
    return {
        "patch": "14.3",
        "comps": [
            {
                "id": "comp-2",
                "name": "Fast 8 Lux",
                "avgPlacement": 4.2,
                "frequency": 3.1,
                "winRate": 12.0,
                "champions": [
                    {"id": "TFT11_Lux", "name": "TFT11_Lux", "cost": 4,
                     "items": [{"id": "TFT_Item_Deathblade", "name": "TFT_Item_Deathblade"}]},
                ],
                "traits": [{"name": "Sorcerer"}],
            }
        ],
    }


# ── Canonical model builders ──────────────────────────────────────────────────

def build_items_model(
    items: list[Item],
    source: Optional[str] = "metatft",
    patch: Optional[str] = "14.3",
    timestamp: Optional[datetime] = T0,
) -> DataModel:
    return model_type_for(Domain.ITEMS)(
        data=items,
        metadata=DataMetadata(domain=Domain.ITEMS, source=source, timestamp=timestamp, patch=patch),
    )


def build_comp(**overrides: Any) -> TeamComp:
    values: dict[str, Any] = {
        "id": "comp-1",
        "name": "Reroll Ahri",
        "units": [Champion(id="TFT11_Ahri", name="Ahri", cost=2)],
        "traits": ["Arcanist"],
        "avg_placement": 3.8,
        "play_rate": 6.2,
        "win_rate": 18.0,
    }
    values.update(overrides)
    return TeamComp(**values)


def build_comps_model(
    comps: list[TeamComp],
    source: Optional[str] = "metatft",
    patch: Optional[str] = "14.3",
    timestamp: Optional[datetime] = T0,
) -> DataModel:
    return model_type_for(Domain.TEAM_COMPS)(
        data=comps,
        metadata=DataMetadata(domain=Domain.TEAM_COMPS, source=source, timestamp=timestamp, patch=patch),
    )


def build_augments_model(augments: list[Augment], source: str = "metatft") -> DataModel:
    return model_type_for(Domain.AUGMENTS)(
        data=augments,
        metadata=DataMetadata(domain=Domain.AUGMENTS, source=source, timestamp=T0, patch="14.3"),
    )


@pytest.fixture
def items_model() -> DataModel:
    return build_items_model([
        Item(id="TFT_Item_BFSword", name="BF Sword", is_component=True),
        Item(id="TFT_Item_Deathblade", name="Deathblade", is_component=False,
             components=["TFT_Item_BFSword", "TFT_Item_BFSword"]),
    ])


@pytest.fixture
def model_builders():
    """Access to the canonical model builders from test modules."""
    class _Builders:
        items = staticmethod(build_items_model)
        comp = staticmethod(build_comp)
        comps = staticmethod(build_comps_model)
        augments = staticmethod(build_augments_model)
    return _Builders
