"""
Normalization layer — provider payloads to the canonical model, and back-checks.

Modules:
    names          — display-name prefixes and augment tier mapping
    metatft        — MetaTFT raw shapes and mappers
    tactics_tools  — TacticsTools raw shapes and mappers
    normalizer     — Normalizer: dispatch on (source, domain), stamp metadata
    validator      — advisory invariant checks (ValidationResult)
    merge          — combined-source merge by id
"""

from tft_meta_sync.normalization.merge import merge_models
from tft_meta_sync.normalization.normalizer import Normalizer, normalize
from tft_meta_sync.normalization.validator import (
    ValidationIssue,
    ValidationResult,
    Validator,
    validate,
)

__all__ = [
    "Normalizer",
    "ValidationIssue",
    "ValidationResult",
    "Validator",
    "merge_models",
    "normalize",
    "validate",
]
