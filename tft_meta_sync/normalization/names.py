"""
Display-name and tier rules applied while mapping provider payloads.

Providers ship internal identifiers as names (``TFT9_Augment_ThrillOfTheHunt``,
``TFT_Item_Infinity_Edge``, ``TFT11_Ahri``).  ``display_name`` strips the
kind-specific prefix, turns underscores into spaces and upper-cases the first
character of every word::

    >>> display_name("TFT_Item_infinity_edge", EntityKind.ITEM)
    'Infinity Edge'
    >>> display_name("TFT9_Augment_Thrill_of_the_hunt", EntityKind.AUGMENT)
    'Thrill Of The Hunt'

Every rule is idempotent: applying it to its own output changes nothing.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Union

from tft_meta_sync.models.domain import AugmentTier


class EntityKind(StrEnum):
    CHAMPION = "champion"
    ITEM = "item"
    AUGMENT = "augment"


_PREFIXES: dict[EntityKind, re.Pattern[str]] = {
    EntityKind.CHAMPION: re.compile(r"^TFT\d+_"),
    EntityKind.ITEM: re.compile(r"^TFT_Item_"),
    EntityKind.AUGMENT: re.compile(r"^TFT\d+_Augment_"),
}

_WORD_START = re.compile(r"\b\w")

_NUMERIC_TIERS: dict[int, AugmentTier] = {
    1: AugmentTier.SILVER,
    2: AugmentTier.GOLD,
    3: AugmentTier.PRISMATIC,
}


def strip_prefix(name: str, kind: EntityKind) -> str:
    """Remove the provider prefix for ``kind`` if present."""
    return _PREFIXES[kind].sub("", name, count=1)


def display_name(name: str, kind: EntityKind) -> str:
    """Turn a provider identifier into a human-readable name."""
    cleaned = strip_prefix(name, kind).replace("_", " ")
    return _WORD_START.sub(lambda m: m.group(0).upper(), cleaned)


def canonical_tier(tier: Union[int, str]) -> str:
    """Map a provider tier onto ``silver``/``gold``/``prismatic``.

    Numeric tiers 1–3 map in order; strings are lower-cased (so ``"Gold"``
    becomes ``"gold"``).  Anything else is returned as-is (stringified) so the
    validator can report it.
    """
    if isinstance(tier, bool):
        return str(tier)
    if isinstance(tier, int):
        mapped = _NUMERIC_TIERS.get(tier)
        return mapped.value if mapped else str(tier)
    lowered = tier.strip().lower()
    if lowered.isdigit() and int(lowered) in _NUMERIC_TIERS:
        return _NUMERIC_TIERS[int(lowered)].value
    return lowered
