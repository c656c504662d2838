"""
Advisory validation of canonical models.

``validate(model)`` walks every record and reports invariant violations as
``ValidationIssue`` entries with bracket paths (``data[2].units[0].cost``).
It never mutates its input and never raises: the orchestrator logs the issues
and stores the model anyway.

Checks:
  - metadata: ``source`` and ``timestamp`` present
  - all entities: non-empty ``id`` and ``name``
  - team comps: at least one unit; unit cost 1–5; avg placement 1–8;
    play/win rate 0–100; unit item ids present in the item catalogue (only
    when a catalogue is supplied)
  - items: components ⇔ not a component; play rate 0–100
  - augments: tier is silver/gold/prismatic; play rate 0–100; avg placement 1–8
"""

from __future__ import annotations

import logging
import math
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any, Optional

from tft_meta_sync.models.domain import Augment, AugmentTier, DataModel, Item, TeamComp

logger = logging.getLogger(__name__)

MIN_COST, MAX_COST = 1, 5
MIN_PLACEMENT, MAX_PLACEMENT = 1.0, 8.0
MIN_RATE, MAX_RATE = 0.0, 100.0

_VALID_TIERS = frozenset(t.value for t in AugmentTier)


@dataclass(frozen=True)
class ValidationIssue:
    """One invariant violation.

    Attributes:
        field: Bracket path to the offending value.
        message: Human-readable description.
        value: The offending value, when there is one.
    """

    field: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        if self.value is None:
            return f"{self.field}: {self.message}"
        return f"{self.field}: {self.message} (got {self.value!r})"


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)

    def summary(self, limit: int = 3) -> str:
        """First ``limit`` issues joined for a log line."""
        shown = "; ".join(str(e) for e in self.errors[:limit])
        more = len(self.errors) - limit
        return f"{shown}; +{more} more" if more > 0 else shown


def _out_of_range(value: Optional[float], low: float, high: float) -> bool:
    if value is None:
        return False
    return math.isnan(value) or not (low <= value <= high)


def _check_required(path: str, entity: Any, issues: list[ValidationIssue]) -> None:
    if not entity.id:
        issues.append(ValidationIssue(f"{path}.id", "id is required"))
    if not entity.name:
        issues.append(ValidationIssue(f"{path}.name", "name is required"))


def _check_rate(path: str, value: Optional[float], label: str, issues: list[ValidationIssue]) -> None:
    if _out_of_range(value, MIN_RATE, MAX_RATE):
        issues.append(ValidationIssue(path, f"{label} must be between 0 and 100", value))


def _check_placement(path: str, value: Optional[float], issues: list[ValidationIssue]) -> None:
    if _out_of_range(value, MIN_PLACEMENT, MAX_PLACEMENT):
        issues.append(ValidationIssue(path, "Average placement must be between 1 and 8", value))


# ── Per-entity checks ─────────────────────────────────────────────────────────


def _check_team_comp(
    path: str,
    comp: TeamComp,
    item_catalog: Optional[Collection[str]],
    issues: list[ValidationIssue],
) -> None:
    _check_required(path, comp, issues)

    if not comp.units:
        issues.append(ValidationIssue(f"{path}.units", "Team composition must have at least one unit"))
    for u, unit in enumerate(comp.units):
        unit_path = f"{path}.units[{u}]"
        _check_required(unit_path, unit, issues)
        if not (MIN_COST <= unit.cost <= MAX_COST):
            issues.append(
                ValidationIssue(f"{unit_path}.cost", "Unit cost must be between 1 and 5", unit.cost)
            )
        if item_catalog is not None:
            for i, item in enumerate(unit.items):
                if item.id not in item_catalog:
                    issues.append(
                        ValidationIssue(
                            f"{unit_path}.items[{i}].id",
                            "Item is not in the item catalogue",
                            item.id,
                        )
                    )

    _check_placement(f"{path}.avg_placement", comp.avg_placement, issues)
    _check_rate(f"{path}.play_rate", comp.play_rate, "Play rate", issues)
    _check_rate(f"{path}.win_rate", comp.win_rate, "Win rate", issues)


def _check_item(path: str, item: Item, issues: list[ValidationIssue]) -> None:
    _check_required(path, item, issues)
    if item.is_component is True and item.components:
        issues.append(
            ValidationIssue(f"{path}.components", "Component item must not have components", item.components)
        )
    elif item.is_component is False and not item.components:
        issues.append(ValidationIssue(f"{path}.components", "Completed item must list its components"))
    _check_rate(f"{path}.play_rate", item.play_rate, "Play rate", issues)


def _check_augment(path: str, augment: Augment, issues: list[ValidationIssue]) -> None:
    _check_required(path, augment, issues)
    if augment.tier not in _VALID_TIERS:
        issues.append(
            ValidationIssue(
                f"{path}.tier", f"Tier must be one of {sorted(_VALID_TIERS)}", augment.tier
            )
        )
    _check_rate(f"{path}.play_rate", augment.play_rate, "Play rate", issues)
    _check_placement(f"{path}.avg_placement", augment.avg_placement, issues)


# ── Entry point ───────────────────────────────────────────────────────────────


def validate(
    model: DataModel,
    item_catalog: Optional[Collection[str]] = None,
) -> ValidationResult:
    """Check ``model`` against the domain invariants.

    Args:
        model: Any ``DataModel``; records are dispatched on their type.
        item_catalog: Item ids known in the same sync cycle.  When ``None``
            the item reference check is skipped.

    Returns:
        ``ValidationResult``; ``is_valid`` is ``True`` iff no issues were found.
    """
    issues: list[ValidationIssue] = []

    meta = model.metadata
    if not meta.source:
        issues.append(ValidationIssue("metadata.source", "Metadata must have source"))
    if meta.timestamp is None:
        issues.append(ValidationIssue("metadata.timestamp", "Metadata must have timestamp"))

    for idx, record in enumerate(model.data):
        path = f"data[{idx}]"
        if isinstance(record, TeamComp):
            _check_team_comp(path, record, item_catalog, issues)
        elif isinstance(record, Item):
            _check_item(path, record, issues)
        elif isinstance(record, Augment):
            _check_augment(path, record, issues)
        else:
            issues.append(ValidationIssue(path, f"Unexpected record type {type(record).__name__}"))

    return ValidationResult(is_valid=not issues, errors=issues)


class Validator:
    """Object form of ``validate`` for callers that inject collaborators."""

    def validate(
        self,
        model: DataModel,
        item_catalog: Optional[Collection[str]] = None,
    ) -> ValidationResult:
        return validate(model, item_catalog)
