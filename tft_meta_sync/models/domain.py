"""
Canonical metagame domain model — the only shape the pipeline passes around
after normalization.

Entities (``Item``, ``Champion``, ``Augment``, ``TeamComp``) are frozen Pydantic
models.  Range invariants (champion cost 1–5, average placement 1–8, rates
0–100, component/recipe consistency) are deliberately NOT enforced here:
validation is advisory, so out-of-range values must be representable for the
``Validator`` to report them.  Only types are coerced at construction.

``DataModel[T]`` is the unit of storage and transport: one domain's records
plus the ``DataMetadata`` describing where and when they came from.

``CacheKey`` partitions stored models by ``(domain, source, patch)``.  Requests
that do not pin a patch use the ``LATEST_PATCH`` alias.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "1.0.0"
LATEST_PATCH = "latest"


class Domain(StrEnum):
    """The three kinds of metagame data that are synchronized."""

    TEAM_COMPS = "team_comps"
    ITEMS = "items"
    AUGMENTS = "augments"


class Source(StrEnum):
    """Upstream provider (or the merged view over all of them)."""

    METATFT = "metatft"
    TACTICS_TOOLS = "tactics_tools"
    COMBINED = "combined"


class AugmentTier(StrEnum):
    """Augment rarity tiers, lowest to highest."""

    SILVER = "silver"
    GOLD = "gold"
    PRISMATIC = "prismatic"


# ── Entities ──────────────────────────────────────────────────────────────────


class Item(BaseModel):
    """An item, either from the item catalogue or referenced by a unit/comp.

    Attributes:
        id: Provider-stable item identifier (e.g. ``"TFT_Item_BFSword"``).
        name: Display name (normalized when name normalization is on).
        is_component: ``True`` for base components, ``False`` for completed
            items, ``None`` when the referencing payload does not say.
        components: Component ids a completed item is built from.
        play_rate: Provider-reported usage frequency, used to break ties when
            merging providers.  ``None`` when not reported.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_component: Optional[bool] = None
    components: list[str] = Field(default_factory=list)
    play_rate: Optional[float] = None


class Champion(BaseModel):
    """A unit placed on the board in a team composition."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    cost: int
    items: list[Item] = Field(default_factory=list)


class Augment(BaseModel):
    """An augment choice.

    ``tier`` is kept as a plain string so an unknown provider tier survives
    normalization and is reported by the validator instead of being dropped.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    tier: str
    description: Optional[str] = None
    synergies: list[str] = Field(default_factory=list)
    play_rate: Optional[float] = None
    avg_placement: Optional[float] = None


class TeamComp(BaseModel):
    """A team composition with its aggregate performance statistics.

    Attributes:
        avg_placement: Mean finishing position, 1.0 (best) to 8.0.
        play_rate: Percentage of sampled games using this comp (0–100).
        win_rate: Percentage of games won (0–100).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    units: list[Champion] = Field(default_factory=list)
    traits: list[str] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)
    avg_placement: float
    play_rate: float
    win_rate: float


T = TypeVar("T", TeamComp, Item, Augment)

ENTITY_TYPES: dict[Domain, type[BaseModel]] = {
    Domain.TEAM_COMPS: TeamComp,
    Domain.ITEMS: Item,
    Domain.AUGMENTS: Augment,
}


# ── Containers ────────────────────────────────────────────────────────────────


class DataMetadata(BaseModel):
    """Provenance for one ``DataModel``.

    ``source`` and ``timestamp`` are optional at the type level so that a model
    loaded from an external blob can still be handed to the validator, which
    reports them as missing.
    """

    model_config = ConfigDict(frozen=True)

    domain: Domain
    source: Optional[str] = None
    timestamp: Optional[datetime] = None
    patch: Optional[str] = None
    schema_version: str = SCHEMA_VERSION


class DataModel(BaseModel, Generic[T]):
    """One domain's canonical records plus their metadata."""

    model_config = ConfigDict(frozen=True)

    data: list[T] = Field(default_factory=list)
    metadata: DataMetadata


def model_type_for(domain: Domain) -> type[DataModel]:
    """Return the parametrized ``DataModel`` class for ``domain``.

    Used when deserializing stored JSON so entities come back as the right
    Pydantic class rather than plain dicts.
    """
    return DataModel[ENTITY_TYPES[Domain(domain)]]  # type: ignore[index]


@dataclass(frozen=True)
class CacheKey:
    """Composite cache partition key.

    Attributes:
        domain: Which data kind the entry holds.
        source: Provider id or ``"combined"``.
        patch: Concrete game patch (``"14.3"``) or ``LATEST_PATCH``.
    """

    domain: Domain
    source: str
    patch: str = LATEST_PATCH

    def with_patch(self, patch: str) -> "CacheKey":
        return CacheKey(domain=self.domain, source=self.source, patch=patch)

    def __str__(self) -> str:
        return f"{self.domain}:{self.source}:{self.patch}"
