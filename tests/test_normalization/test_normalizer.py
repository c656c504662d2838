"""Tests for Normalizer — provider dispatch, name rules, metadata stamping."""

from __future__ import annotations

import pytest

from tft_meta_sync.errors import NormalizationError
from tft_meta_sync.ingestion.base import RawPayload
from tft_meta_sync.models.domain import Augment, Domain, Item, TeamComp
from tft_meta_sync.normalization.normalizer import Normalizer, normalize


def _payload(source: str, domain: Domain, body: dict) -> RawPayload:
    return RawPayload(source=source, domain=domain, body=body, patch=body.get("patch"))


class TestMetaTft:
    def test_items(self, metatft_items_body, clock):
        model = Normalizer(clock=clock).normalize(
            Domain.ITEMS, _payload("metatft", Domain.ITEMS, metatft_items_body)
        )

        assert [i.name for i in model.data] == ["BF Sword", "Infinity Edge"]
        edge = model.data[1]
        assert isinstance(edge, Item)
        assert edge.is_component is False
        assert edge.components == ["TFT_Item_BFSword", "TFT_Item_SparringGloves"]
        assert edge.play_rate == 12.5

    def test_metadata_stamped(self, metatft_items_body, clock):
        model = Normalizer(clock=clock).normalize(
            Domain.ITEMS, _payload("metatft", Domain.ITEMS, metatft_items_body)
        )
        assert model.metadata.source == "metatft"
        assert model.metadata.timestamp == clock.now
        assert model.metadata.patch == "14.3"
        assert model.metadata.domain == Domain.ITEMS

    def test_augment_tiers_and_names(self, metatft_augments_body):
        model = normalize(Domain.AUGMENTS, _payload("metatft", Domain.AUGMENTS, metatft_augments_body))

        thrill, pandora = model.data
        assert isinstance(thrill, Augment)
        assert thrill.name == "Thrill Of The Hunt"
        assert thrill.tier == "gold"
        assert thrill.play_rate == 8.0
        assert thrill.avg_placement == 4.1
        assert thrill.synergies == ["Slayer"]
        assert pandora.tier == "prismatic"

    def test_comps_resolve_item_names_from_catalogue(self, metatft_comps_body):
        model = Normalizer().normalize(
            Domain.TEAM_COMPS,
            _payload("metatft", Domain.TEAM_COMPS, metatft_comps_body),
            item_names={"TFT_Item_InfinityEdge": "Infinity Edge (catalogue)"},
        )

        comp = model.data[0]
        assert isinstance(comp, TeamComp)
        ahri = comp.units[0]
        assert ahri.name == "Ahri"
        assert ahri.cost == 2
        assert ahri.items[0].name == "Infinity Edge (catalogue)"
        assert [i.id for i in comp.items] == ["TFT_Item_InfinityEdge"]
        assert comp.traits == ["Arcanist"]
        assert comp.play_rate == 6.2

    def test_comps_without_catalogue_derive_item_names(self, metatft_comps_body):
        model = Normalizer().normalize(
            Domain.TEAM_COMPS, _payload("metatft", Domain.TEAM_COMPS, metatft_comps_body)
        )
        assert model.data[0].units[0].items[0].name == "InfinityEdge"

    def test_names_kept_when_normalization_off(self, metatft_items_body):
        model = Normalizer(normalize_names=False).normalize(
            Domain.ITEMS, _payload("metatft", Domain.ITEMS, metatft_items_body)
        )
        assert model.data[0].name == "TFT_Item_BF_Sword"


class TestTacticsTools:
    def test_recipe_semantics(self, tactics_items_body):
        model = normalize(Domain.ITEMS, _payload("tactics_tools", Domain.ITEMS, tactics_items_body))

        sword, deathblade, mystery = model.data
        assert sword.is_component is True
        assert sword.components == []
        assert sword.play_rate == 55.0
        assert deathblade.is_component is False
        assert deathblade.components == ["TFT_Item_BFSword", "TFT_Item_BFSword"]
        assert mystery.is_component is None

    def test_comps_use_frequency_and_champion_items(self, tactics_comps_body):
        model = normalize(
            Domain.TEAM_COMPS, _payload("tactics_tools", Domain.TEAM_COMPS, tactics_comps_body)
        )

        comp = model.data[0]
        assert comp.play_rate == 3.1
        assert comp.units[0].name == "Lux"
        assert comp.units[0].items[0].name == "Deathblade"
        assert [i.id for i in comp.items] == ["TFT_Item_Deathblade"]

    def test_augment_field_renames(self):
        body = {
            "patch": "14.3",
            "augments": [{"id": "a1", "name": "Cybernetic Uplink", "tier": 1,
                          "desc": "Mana regen.", "traits": ["Cyber"], "frequency": 2.5}],
        }
        model = normalize(Domain.AUGMENTS, _payload("tactics_tools", Domain.AUGMENTS, body))

        aug = model.data[0]
        assert aug.tier == "silver"
        assert aug.description == "Mana regen."
        assert aug.synergies == ["Cyber"]
        assert aug.play_rate == 2.5


class TestPurity:
    def test_same_input_same_data(self, metatft_comps_body, clock):
        normalizer = Normalizer(clock=clock)
        payload = _payload("metatft", Domain.TEAM_COMPS, metatft_comps_body)

        first = normalizer.normalize(Domain.TEAM_COMPS, payload)
        clock.advance(minutes=5)
        second = normalizer.normalize(Domain.TEAM_COMPS, payload)

        assert first.data == second.data
        assert first.metadata.timestamp != second.metadata.timestamp

    def test_does_not_mutate_body(self, tactics_items_body):
        snapshot = repr(tactics_items_body)
        normalize(Domain.ITEMS, _payload("tactics_tools", Domain.ITEMS, tactics_items_body))
        assert repr(tactics_items_body) == snapshot


class TestErrors:
    def test_shape_mismatch_raises(self):
        payload = _payload("metatft", Domain.TEAM_COMPS, {"patch": "14.3", "teams": []})
        with pytest.raises(NormalizationError, match=r"\[metatft/team_comps\]"):
            normalize(Domain.TEAM_COMPS, payload)

    def test_wrong_field_type_raises(self):
        body = {"comps": [{"id": "c", "name": "n", "avgPlacement": "fourth",
                           "playRate": 1, "winRate": 1}]}
        with pytest.raises(NormalizationError, match="avgPlacement"):
            normalize(Domain.TEAM_COMPS, _payload("metatft", Domain.TEAM_COMPS, body))

    def test_unknown_source_raises(self):
        with pytest.raises(NormalizationError, match="no mapper"):
            normalize(Domain.ITEMS, _payload("blitz", Domain.ITEMS, {"items": []}))

    def test_supports(self):
        assert Normalizer.supports("metatft", Domain.ITEMS)
        assert not Normalizer.supports("blitz", Domain.ITEMS)
