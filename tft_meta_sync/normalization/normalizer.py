"""
Normalizer — provider payload → canonical ``DataModel``.

Dispatches on ``(payload.source, domain)`` to the provider's mapper, then
wraps the records with ``DataMetadata`` (source, UTC timestamp, patch).
Apart from the timestamp the output depends only on the inputs, so
normalizing the same payload twice yields identical ``data``.

A payload that does not match its provider's asserted shape raises
``NormalizationError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from tft_meta_sync.errors import NormalizationError
from tft_meta_sync.ingestion.base import RawPayload
from tft_meta_sync.models.domain import DataMetadata, DataModel, Domain, Source, model_type_for
from tft_meta_sync.normalization import metatft, tactics_tools
from tft_meta_sync.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

_MAPPERS: dict[str, dict[Domain, Callable]] = {
    Source.METATFT.value: metatft.MAPPERS,
    Source.TACTICS_TOOLS.value: tactics_tools.MAPPERS,
}


class Normalizer:
    """Maps raw provider payloads onto the canonical model.

    Args:
        normalize_names: Default for the display-name rules.
        clock: Source of ``metadata.timestamp``.
    """

    def __init__(
        self,
        normalize_names: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.normalize_names = normalize_names
        self._clock = clock

    @staticmethod
    def supports(source: str, domain: Domain) -> bool:
        return Domain(domain) in _MAPPERS.get(source, {})

    def normalize(
        self,
        domain: Domain,
        payload: RawPayload,
        source: Optional[str] = None,
        normalize_names: Optional[bool] = None,
        item_names: Optional[Mapping[str, str]] = None,
    ) -> DataModel:
        """Map ``payload`` onto a ``DataModel`` for ``domain``.

        Args:
            domain: Domain being normalized.
            payload: Tagged provider payload.
            source: Value stamped into ``metadata.source``; defaults to the
                payload's provider.
            normalize_names: Overrides the instance default.
            item_names: ``{item_id: display name}`` used to name item
                references that carry only an id.

        Raises:
            NormalizationError: Unknown provider/domain or a payload shape
                mismatch.
        """
        domain = Domain(domain)
        names = self.normalize_names if normalize_names is None else normalize_names

        mapper = _MAPPERS.get(payload.source, {}).get(domain)
        if mapper is None:
            raise NormalizationError("no mapper registered", payload.source, domain.value)

        try:
            records = mapper(payload.body, normalize_names=names, item_names=item_names)
        except ValidationError as exc:
            raise NormalizationError(
                f"payload does not match the expected shape ({exc.error_count()} error(s)): "
                f"{_first_error(exc)}",
                payload.source,
                domain.value,
            ) from exc

        metadata = DataMetadata(
            domain=domain,
            source=source or payload.source,
            timestamp=self._clock(),
            patch=payload.patch,
        )
        logger.debug("Normalized %d %s record(s) from %s", len(records), domain, payload.source)
        return model_type_for(domain)(data=records, metadata=metadata)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err["loc"])
    return f"{loc}: {err['msg']}"


def normalize(
    domain: Domain,
    payload: RawPayload,
    source: Optional[str] = None,
    normalize_names: bool = True,
    item_names: Optional[Mapping[str, str]] = None,
) -> DataModel:
    """Module-level shortcut for ``Normalizer().normalize(...)``."""
    return Normalizer(normalize_names=normalize_names).normalize(
        domain, payload, source=source, item_names=item_names
    )
