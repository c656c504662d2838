"""
MetaTFT-shaped provider client.

API:   https://api.metatft.com/tft
Routes: /comps, /items, /augments  (optional ``patch`` and ``apiKey`` query)

Comps reference items by id only (``units[].items`` is a list of ids, and
comp-level ``items`` groups ids per unit), so item names are resolved from
the item catalogue during normalization.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from tft_meta_sync.ingestion.base import ProviderClient, RawPayload
from tft_meta_sync.models.domain import Source


@dataclass(frozen=True)
class MetaTftPayload(RawPayload):
    """Raw MetaTFT response body."""


class MetaTftClient(ProviderClient):
    """Client for the MetaTFT statistics API."""

    source: ClassVar[str] = Source.METATFT.value
    payload_type: ClassVar[type[RawPayload]] = MetaTftPayload
