"""
MetaTFT raw payload shapes and their mapping onto the canonical model.

Raw shapes (only the asserted fields are declared; extras are ignored)::

    comps:    {patch, comps: [{id, name, avgPlacement, playRate, winRate,
                               units: [{id, name, cost, items: [itemId]}],
                               traits: [{name}],
                               items: [{unitId, items: [itemId]}]}]}
    items:    {patch, items: [{id, name, isComponent?, components?, playRate?}]}
    augments: {patch, augments: [{id, name, tier, description?, synergies?,
                                  frequency?, avgPlacement?}]}

Comps carry item ids only.  Item names come from ``item_names`` (the item
catalogue of the same sync cycle) when available, otherwise they are derived
from the id with the item naming rule.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from tft_meta_sync.models.domain import Augment, Champion, Domain, Item, TeamComp
from tft_meta_sync.normalization.names import EntityKind, canonical_tier, display_name


class _RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


# ── Raw shapes ────────────────────────────────────────────────────────────────


class MetaTftUnit(_RawModel):
    id: str
    name: str
    cost: int
    items: list[str] = Field(default_factory=list)


class MetaTftTrait(_RawModel):
    name: str


class MetaTftUnitItems(_RawModel):
    unit_id: str = Field(alias="unitId")
    items: list[str] = Field(default_factory=list)


class MetaTftComp(_RawModel):
    id: str
    name: str
    avg_placement: float = Field(alias="avgPlacement")
    play_rate: float = Field(alias="playRate")
    win_rate: float = Field(alias="winRate")
    units: list[MetaTftUnit] = Field(default_factory=list)
    traits: list[MetaTftTrait] = Field(default_factory=list)
    items: list[MetaTftUnitItems] = Field(default_factory=list)


class MetaTftCompsResponse(_RawModel):
    comps: list[MetaTftComp]


class MetaTftItem(_RawModel):
    id: str
    name: str
    is_component: Optional[bool] = Field(default=None, alias="isComponent")
    components: Optional[list[str]] = None
    play_rate: Optional[float] = Field(default=None, alias="playRate")


class MetaTftItemsResponse(_RawModel):
    items: list[MetaTftItem]


class MetaTftAugment(_RawModel):
    id: str
    name: str
    tier: Union[int, str]
    description: Optional[str] = None
    synergies: list[str] = Field(default_factory=list)
    frequency: Optional[float] = None
    avg_placement: Optional[float] = Field(default=None, alias="avgPlacement")


class MetaTftAugmentsResponse(_RawModel):
    augments: list[MetaTftAugment]


# ── Mappers ───────────────────────────────────────────────────────────────────


def _item_ref(item_id: str, item_names: Mapping[str, str]) -> Item:
    return Item(id=item_id, name=item_names.get(item_id) or display_name(item_id, EntityKind.ITEM))


def map_comps(
    body: dict[str, Any],
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> list[TeamComp]:
    names = item_names or {}
    response = MetaTftCompsResponse.model_validate(body)
    comps: list[TeamComp] = []
    for comp in response.comps:
        units = [
            Champion(
                id=unit.id,
                name=display_name(unit.name, EntityKind.CHAMPION) if normalize_names else unit.name,
                cost=unit.cost,
                items=[_item_ref(i, names) for i in unit.items],
            )
            for unit in comp.units
        ]
        comps.append(
            TeamComp(
                id=comp.id,
                name=comp.name,
                units=units,
                traits=[t.name for t in comp.traits],
                items=[_item_ref(i, names) for group in comp.items for i in group.items],
                avg_placement=comp.avg_placement,
                play_rate=comp.play_rate,
                win_rate=comp.win_rate,
            )
        )
    return comps


def map_items(
    body: dict[str, Any],
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> list[Item]:
    response = MetaTftItemsResponse.model_validate(body)
    return [
        Item(
            id=item.id,
            name=display_name(item.name, EntityKind.ITEM) if normalize_names else item.name,
            is_component=item.is_component,
            components=list(item.components or []),
            play_rate=item.play_rate,
        )
        for item in response.items
    ]


def map_augments(
    body: dict[str, Any],
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> list[Augment]:
    response = MetaTftAugmentsResponse.model_validate(body)
    return [
        Augment(
            id=aug.id,
            name=display_name(aug.name, EntityKind.AUGMENT) if normalize_names else aug.name,
            tier=canonical_tier(aug.tier),
            description=aug.description,
            synergies=list(aug.synergies),
            play_rate=aug.frequency,
            avg_placement=aug.avg_placement,
        )
        for aug in response.augments
    ]


MAPPERS = {
    Domain.TEAM_COMPS: map_comps,
    Domain.ITEMS: map_items,
    Domain.AUGMENTS: map_augments,
}
