"""
Pure domain layer.

This module contains pure value objects and domain logic with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.  Time enters only
through an injected ``Clock``.
"""

from threshold_kernel.domain.authority import (
    Capability,
    CapabilityOracle,
    StaticCapabilityOracle,
)
from threshold_kernel.domain.change_request import (
    CHANGE_TRANSITIONS,
    REQUEST_TTL,
    TERMINAL_CHANGE_STATUSES,
    Approved,
    ChangeRequestStatus,
    Expired,
    Rejected,
    Requested,
    ThresholdChangeRequest,
)
from threshold_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from threshold_kernel.domain.events import (
    ExecutionMode,
    NotificationFilter,
    NotificationType,
    TargetRole,
    ThresholdChangeEvent,
    ThresholdEventType,
    ThresholdNotification,
)
from threshold_kernel.domain.threshold import (
    CATEGORY_WIDE,
    DEFAULT_THRESHOLDS,
    ThresholdCategory,
    ThresholdConfig,
    ThresholdHistoryEntry,
    resolve_effective_threshold,
)

__all__ = [
    "Approved",
    "CATEGORY_WIDE",
    "CHANGE_TRANSITIONS",
    "Capability",
    "CapabilityOracle",
    "ChangeRequestStatus",
    "Clock",
    "DEFAULT_THRESHOLDS",
    "DeterministicClock",
    "ExecutionMode",
    "Expired",
    "NotificationFilter",
    "NotificationType",
    "REQUEST_TTL",
    "Rejected",
    "Requested",
    "StaticCapabilityOracle",
    "SystemClock",
    "TERMINAL_CHANGE_STATUSES",
    "TargetRole",
    "ThresholdCategory",
    "ThresholdChangeEvent",
    "ThresholdChangeRequest",
    "ThresholdConfig",
    "ThresholdEventType",
    "ThresholdHistoryEntry",
    "ThresholdNotification",
    "resolve_effective_threshold",
]
