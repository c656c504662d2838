"""
TacticsTools-shaped provider client.

API:   https://api.tactics.tools/tft
Routes: /comps, /items, /augments  (optional ``patch`` and ``apiKey`` query)

Comps embed full item objects on each champion and report ``frequency``
rather than a play rate; items describe their build with ``recipe``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from tft_meta_sync.ingestion.base import ProviderClient, RawPayload
from tft_meta_sync.models.domain import Source


@dataclass(frozen=True)
class TacticsToolsPayload(RawPayload):
    """Raw TacticsTools response body."""


class TacticsToolsClient(ProviderClient):
    """Client for the TacticsTools statistics API."""

    source: ClassVar[str] = Source.TACTICS_TOOLS.value
    payload_type: ClassVar[type[RawPayload]] = TacticsToolsPayload
