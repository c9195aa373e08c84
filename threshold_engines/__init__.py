"""
Module: threshold_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used by
    the threshold kernel and the caller-facing services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import threshold_kernel/domain/ and threshold_kernel.exceptions.
    MUST NOT import threshold_services.

Invariants enforced:
    - Purity: engines never read the clock.  Callers pass all inputs.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.
"""

from threshold_engines.dual_control import (
    APPROACHING_PERCENT,
    DualControlCheck,
    ThresholdProximity,
    approach_check,
    requires_dual_control,
)
from threshold_engines.magnitude import (
    MAGNITUDE_LIMIT_PERCENT,
    MagnitudeEvaluation,
    evaluate_change,
    magnitude_percent,
    requires_approval,
)

__all__ = [
    "APPROACHING_PERCENT",
    "DualControlCheck",
    "MAGNITUDE_LIMIT_PERCENT",
    "MagnitudeEvaluation",
    "ThresholdProximity",
    "approach_check",
    "evaluate_change",
    "magnitude_percent",
    "requires_approval",
    "requires_dual_control",
]
