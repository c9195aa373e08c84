"""
threshold_services -- Package init and public API.

Responsibility:
    Caller-facing orchestration over the threshold kernel.  This is the
    **only** layer that owns transaction boundaries, in-process locks and
    background threads.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        threshold_services/ -> threshold_engines/  (allowed)
        threshold_services/ -> threshold_kernel/   (allowed)
        threshold_services/ -> threshold_config/   (allowed)
        threshold_engines/  -> threshold_services/ (FORBIDDEN)
        threshold_kernel/   -> threshold_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: threshold_kernel and threshold_engines must never
      import from this package.

Audit relevance:
    - This package is the canonical import surface for external consumers.
      Changes to __all__ must be reviewed for backwards-compatibility.
"""

from threshold_kernel.logging_config import get_logger

logger = get_logger("services")

from threshold_services.control_service import (
    ControlError,
    ControlResult,
    SetThresholdResponse,
    ThresholdControlService,
    TransactionEvaluation,
    build_control_service,
)
from threshold_services.expiry_sweeper import ExpirySweeper

__all__ = [
    "ControlError",
    "ControlResult",
    "ExpirySweeper",
    "SetThresholdResponse",
    "ThresholdControlService",
    "TransactionEvaluation",
    "build_control_service",
]
