"""
TacticsTools raw payload shapes and their mapping onto the canonical model.

Raw shapes::

    comps:    {patch, comps: [{id, name, avgPlacement, frequency, winRate,
                               champions: [{id, name, cost, items: [{id, name}]}],
                               traits: [{name}]}]}
    items:    {patch, items: [{id, name, recipe?: [id] | null, frequency?}]}
    augments: {patch, augments: [{id, name, tier, desc?, traits?, frequency?,
                                  avgPlacement?}]}

``frequency`` is the provider's play rate.  A comp's ``items`` are the items
of all its champions, in board order.  For items, an explicit ``recipe`` of
``null`` or ``[]`` marks a component; a missing ``recipe`` leaves
``is_component`` unknown.
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


class TacticsToolsItemRef(_RawModel):
    id: str
    name: str


class TacticsToolsChampion(_RawModel):
    id: str
    name: str
    cost: int
    items: list[TacticsToolsItemRef] = Field(default_factory=list)


class TacticsToolsTrait(_RawModel):
    name: str


class TacticsToolsComp(_RawModel):
    id: str
    name: str
    avg_placement: float = Field(alias="avgPlacement")
    frequency: float
    win_rate: float = Field(alias="winRate")
    champions: list[TacticsToolsChampion] = Field(default_factory=list)
    traits: list[TacticsToolsTrait] = Field(default_factory=list)


class TacticsToolsCompsResponse(_RawModel):
    comps: list[TacticsToolsComp]


class TacticsToolsItem(_RawModel):
    id: str
    name: str
    recipe: Optional[list[str]] = None
    frequency: Optional[float] = None


class TacticsToolsItemsResponse(_RawModel):
    items: list[TacticsToolsItem]


class TacticsToolsAugment(_RawModel):
    id: str
    name: str
    tier: Union[int, str]
    desc: Optional[str] = None
    traits: list[str] = Field(default_factory=list)
    frequency: Optional[float] = None
    avg_placement: Optional[float] = Field(default=None, alias="avgPlacement")


class TacticsToolsAugmentsResponse(_RawModel):
    augments: list[TacticsToolsAugment]


# ── Mappers ───────────────────────────────────────────────────────────────────


def _item(ref: TacticsToolsItemRef, normalize_names: bool) -> Item:
    return Item(
        id=ref.id,
        name=display_name(ref.name, EntityKind.ITEM) if normalize_names else ref.name,
    )


def map_comps(
    body: dict[str, Any],
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> list[TeamComp]:
    response = TacticsToolsCompsResponse.model_validate(body)
    comps: list[TeamComp] = []
    for comp in response.comps:
        units = [
            Champion(
                id=champ.id,
                name=display_name(champ.name, EntityKind.CHAMPION) if normalize_names else champ.name,
                cost=champ.cost,
                items=[_item(ref, normalize_names) for ref in champ.items],
            )
            for champ in comp.champions
        ]
        comps.append(
            TeamComp(
                id=comp.id,
                name=comp.name,
                units=units,
                traits=[t.name for t in comp.traits],
                items=[item for unit in units for item in unit.items],
                avg_placement=comp.avg_placement,
                play_rate=comp.frequency,
                win_rate=comp.win_rate,
            )
        )
    return comps


def _component_flag(item: TacticsToolsItem) -> Optional[bool]:
    if "recipe" not in item.model_fields_set:
        return None
    return not item.recipe


def map_items(
    body: dict[str, Any],
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> list[Item]:
    response = TacticsToolsItemsResponse.model_validate(body)
    return [
        Item(
            id=item.id,
            name=display_name(item.name, EntityKind.ITEM) if normalize_names else item.name,
            is_component=_component_flag(item),
            components=list(item.recipe or []),
            play_rate=item.frequency,
        )
        for item in response.items
    ]


def map_augments(
    body: dict[str, Any],
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> list[Augment]:
    response = TacticsToolsAugmentsResponse.model_validate(body)
    return [
        Augment(
            id=aug.id,
            name=display_name(aug.name, EntityKind.AUGMENT) if normalize_names else aug.name,
            tier=canonical_tier(aug.tier),
            description=aug.desc,
            synergies=list(aug.traits),
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
