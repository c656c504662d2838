"""
Combined-source merge.

Records from several providers are merged by ``id``.  When more than one
provider reports the same id, the record with the larger ``play_rate`` wins;
a reported rate beats a missing one, and ties (or no rates at all) go to the
provider listed first in ``merge_precedence``.  An id reported by only one
provider is always kept.  Output order is first appearance when walking the
providers in precedence order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime

from tft_meta_sync.models.domain import DataMetadata, DataModel, Domain, Source, model_type_for
from tft_meta_sync.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def provider_order(available: Sequence[str], precedence: Sequence[str]) -> list[str]:
    """Providers in ``precedence`` order, then any unlisted ones alphabetically."""
    ranked = [p for p in precedence if p in available]
    return ranked + sorted(p for p in available if p not in ranked)


def _prefer(candidate, current) -> bool:
    cand_rate = getattr(candidate, "play_rate", None)
    cur_rate = getattr(current, "play_rate", None)
    if cand_rate is None:
        return False
    return cur_rate is None or cand_rate > cur_rate


def merge_records(per_provider: Mapping[str, Sequence], precedence: Sequence[str]) -> list:
    """Merge record lists keyed by provider id.  See module docstring."""
    chosen: dict[str, object] = {}
    for provider in provider_order(list(per_provider), precedence):
        for record in per_provider[provider]:
            current = chosen.get(record.id)
            if current is None or _prefer(record, current):
                chosen[record.id] = record
    return list(chosen.values())


def merge_models(
    domain: Domain,
    models: Mapping[str, DataModel],
    precedence: Sequence[str],
    clock: Callable[[], datetime] = utcnow,
) -> DataModel:
    """Merge per-provider models for one domain into a ``combined`` model.

    Args:
        domain: Domain of every input model.
        models: ``{provider_id: DataModel}``; at least one entry.
        precedence: Provider ids in tie-break order.
        clock: Source of the merged ``metadata.timestamp``.

    Raises:
        ValueError: If ``models`` is empty.
    """
    if not models:
        raise ValueError("merge_models needs at least one provider model")

    order = provider_order(list(models), precedence)
    merged = merge_records({p: models[p].data for p in order}, precedence)

    patches = {models[p].metadata.patch for p in order if models[p].metadata.patch}
    if len(patches) > 1:
        logger.warning("Providers disagree on patch for %s: %s", domain, sorted(patches))
    patch = next((models[p].metadata.patch for p in order if models[p].metadata.patch), None)

    logger.debug(
        "Merged %s from %s: %d record(s)",
        domain, ", ".join(f"{p}={len(models[p].data)}" for p in order), len(merged),
    )
    return model_type_for(domain)(
        data=merged,
        metadata=DataMetadata(
            domain=Domain(domain),
            source=Source.COMBINED.value,
            timestamp=clock(),
            patch=patch,
        ),
    )
