"""Tests for the combined-source merge."""

from __future__ import annotations

import pytest

from tft_meta_sync.models.domain import Domain, Item
from tft_meta_sync.normalization.merge import merge_models, provider_order

PRECEDENCE = ["metatft", "tactics_tools"]


class TestMergeModels:
    def test_higher_play_rate_wins(self, model_builders, clock):
        models = {
            "metatft": model_builders.items([Item(id="X", name="Old", play_rate=10.0)]),
            "tactics_tools": model_builders.items(
                [Item(id="X", name="New", play_rate=20.0)], source="tactics_tools"
            ),
        }

        merged = merge_models(Domain.ITEMS, models, PRECEDENCE, clock=clock)

        assert [i.name for i in merged.data] == ["New"]
        assert merged.metadata.source == "combined"
        assert merged.metadata.timestamp == clock.now

    def test_tie_goes_to_precedence(self, model_builders):
        models = {
            "tactics_tools": model_builders.items([Item(id="X", name="TT", play_rate=5.0)], source="tactics_tools"),
            "metatft": model_builders.items([Item(id="X", name="MT", play_rate=5.0)]),
        }
        merged = merge_models(Domain.ITEMS, models, PRECEDENCE)
        assert merged.data[0].name == "MT"

        reversed_order = merge_models(Domain.ITEMS, models, list(reversed(PRECEDENCE)))
        assert reversed_order.data[0].name == "TT"

    def test_reported_rate_beats_missing(self, model_builders):
        models = {
            "metatft": model_builders.items([Item(id="X", name="MT")]),
            "tactics_tools": model_builders.items([Item(id="X", name="TT", play_rate=0.5)], source="tactics_tools"),
        }
        merged = merge_models(Domain.ITEMS, models, PRECEDENCE)
        assert merged.data[0].name == "TT"

    def test_unique_ids_never_dropped(self, model_builders):
        models = {
            "metatft": model_builders.items([Item(id="A", name="A"), Item(id="B", name="B")]),
            "tactics_tools": model_builders.items([Item(id="C", name="C")], source="tactics_tools"),
        }
        merged = merge_models(Domain.ITEMS, models, PRECEDENCE)
        assert [i.id for i in merged.data] == ["A", "B", "C"]

    def test_patch_from_first_provider_that_reports_one(self, model_builders):
        models = {
            "metatft": model_builders.items([], patch=None),
            "tactics_tools": model_builders.items([], source="tactics_tools", patch="14.4"),
        }
        assert merge_models(Domain.ITEMS, models, PRECEDENCE).metadata.patch == "14.4"

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            merge_models(Domain.ITEMS, {}, PRECEDENCE)


class TestProviderOrder:
    def test_unlisted_providers_follow_alphabetically(self):
        assert provider_order(["zeta", "tactics_tools", "alpha"], PRECEDENCE) == [
            "tactics_tools", "alpha", "zeta",
        ]
