"""
Audit and notification value objects (``threshold_kernel.domain.events``).

Audit events are the immutable record of every lifecycle transition;
notifications are the user-facing signals derived from them.  Both are
frozen here; persistence lives in ``models/``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from threshold_kernel.domain.threshold import ThresholdCategory


class ThresholdEventType(str, Enum):
    """One audit event type per lifecycle transition."""

    THRESHOLD_CHANGED = "THRESHOLD_CHANGED"
    THRESHOLD_CHANGE_REQUESTED = "THRESHOLD_CHANGE_REQUESTED"
    THRESHOLD_CHANGE_APPROVED = "THRESHOLD_CHANGE_APPROVED"
    THRESHOLD_CHANGE_REJECTED = "THRESHOLD_CHANGE_REJECTED"
    THRESHOLD_CHANGE_EXPIRED = "THRESHOLD_CHANGE_EXPIRED"


class ExecutionMode(str, Enum):
    DEMO = "DEMO"
    LIVE = "LIVE"


class NotificationType(str, Enum):
    THRESHOLD_APPROACHING = "THRESHOLD_APPROACHING"
    THRESHOLD_EXCEEDED = "THRESHOLD_EXCEEDED"
    THRESHOLD_CHANGED = "THRESHOLD_CHANGED"
    THRESHOLD_CHANGE_PENDING = "THRESHOLD_CHANGE_PENDING"
    THRESHOLD_CHANGE_APPROVED = "THRESHOLD_CHANGE_APPROVED"
    THRESHOLD_CHANGE_REJECTED = "THRESHOLD_CHANGE_REJECTED"
    THRESHOLD_CHANGE_EXPIRED = "THRESHOLD_CHANGE_EXPIRED"


class TargetRole(str, Enum):
    """Notification audiences. Visibility only, never an authority check."""

    SUPERVISOR = "SUPERVISOR"
    COMPLIANCE = "COMPLIANCE"


DUAL_CONTROL_AUDIENCE: frozenset[TargetRole] = frozenset({
    TargetRole.SUPERVISOR,
    TargetRole.COMPLIANCE,
})

EVENT_NOTIFICATION_TYPES: dict[ThresholdEventType, NotificationType] = {
    ThresholdEventType.THRESHOLD_CHANGED: NotificationType.THRESHOLD_CHANGED,
    ThresholdEventType.THRESHOLD_CHANGE_REQUESTED: NotificationType.THRESHOLD_CHANGE_PENDING,
    ThresholdEventType.THRESHOLD_CHANGE_APPROVED: NotificationType.THRESHOLD_CHANGE_APPROVED,
    ThresholdEventType.THRESHOLD_CHANGE_REJECTED: NotificationType.THRESHOLD_CHANGE_REJECTED,
    ThresholdEventType.THRESHOLD_CHANGE_EXPIRED: NotificationType.THRESHOLD_CHANGE_EXPIRED,
}


@dataclass(frozen=True)
class ThresholdChangeEvent:
    """Immutable audit record. Total order by ``seq``."""

    seq: int
    event_type: ThresholdEventType
    tenant_id: str
    threshold_id: str
    request_id: UUID | None
    category: ThresholdCategory
    currency_or_asset: str
    previous_amount: Decimal | None
    new_amount: Decimal
    magnitude_percent: Decimal | None
    actor: str
    actor_authorities: tuple[str, ...]
    execution_mode: ExecutionMode
    occurred_at: datetime
    idempotency_key: str
    hash: str
    rejection_reason: str | None = None


@dataclass(frozen=True)
class ThresholdNotification:
    """User-facing signal. Only ``is_read`` ever changes after creation."""

    notification_id: UUID
    notification_type: NotificationType
    tenant_id: str
    category: ThresholdCategory
    currency_or_asset: str
    threshold: Decimal
    actor: str
    created_at: datetime
    target_roles: frozenset[TargetRole]
    is_read: bool = False
    request_id: UUID | None = None
    transaction_amount: Decimal | None = None
    percent_of_threshold: Decimal | None = None
    message: str = ""


@dataclass(frozen=True)
class NotificationFilter:
    """Query parameters for listing notifications."""

    tenant_id: str | None = None
    unread_only: bool = False
    types: tuple[NotificationType, ...] = ()
    target_role: TargetRole | None = None
    limit: int | None = None
